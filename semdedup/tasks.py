"""Celery tasks for scheduled semantic dedup runs.

The pipeline itself holds no cross-run lock. Two runs for the same tenant that
overlap could each form a cluster for near-duplicate messages before either
commits, so scheduled runs are serialized per tenant here, by the caller:

- run_for_org takes a non-blocking Redis lock ``semdedup:lock:<org_id>``;
  if another run holds it, the task returns ``{"status": "skipped"}``
- run_scheduled fans out one run_for_org per configured tenant

**Design:**
- Celery broker and result backend are both Redis (same instance as the lock)
- Serialization is JSON; task results are the report dicts
- No automatic retries: a failed or partial run is repeated by the next beat,
  which is idempotent because clustered digests are skipped

Beat schedule:
- semantic-dedup-hourly: run_scheduled at minute ``settings.schedule_cron_minute``
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator

from celery import Celery
from celery.signals import after_setup_logger

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Celery application
# ---------------------------------------------------------------------------

celery_app = Celery("semdedup")

LOCK_KEY_TEMPLATE = "semdedup:lock:{org_id}"


def configure_celery(redis_url: str, cron_minute: str = "15") -> None:
    """Configure Celery broker, result backend and the beat schedule.

    Args:
        redis_url:   Redis connection URL (e.g. "redis://localhost:6379/0").
        cron_minute: Minute field of the hourly crontab for run_scheduled.
    """
    from celery.schedules import crontab  # noqa: PLC0415

    celery_app.conf.broker_url = redis_url
    celery_app.conf.result_backend = redis_url
    celery_app.conf.task_serializer = "json"
    celery_app.conf.accept_content = ["json"]

    celery_app.conf.beat_schedule = {
        "semantic-dedup-hourly": {
            "task": "semdedup.run_scheduled",
            "schedule": crontab(minute=cron_minute),
        },
    }


# ---------------------------------------------------------------------------
# Per-tenant lock
# ---------------------------------------------------------------------------


@contextmanager
def tenant_lock(org_id: str, redis_url: str, timeout: int) -> Iterator[None]:
    """Hold the per-tenant run lock for the duration of the block.

    The lock expires after *timeout* seconds so a crashed worker cannot block
    a tenant forever.

    Raises:
        TenantBusyError: If another run already holds the lock.
    """
    import redis  # noqa: PLC0415

    from semdedup.errors import TenantBusyError  # noqa: PLC0415

    client = redis.Redis.from_url(redis_url)
    lock = client.lock(LOCK_KEY_TEMPLATE.format(org_id=org_id), timeout=timeout)
    if not lock.acquire(blocking=False):
        client.close()
        raise TenantBusyError(org_id)
    try:
        yield
    finally:
        try:
            lock.release()
        except redis.exceptions.LockError:
            logger.warning("tenant lock for org=%s expired before release", org_id)
        client.close()


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@celery_app.task(name="semdedup.run_for_org")
def run_for_org_task(org_id: str, source: str = "raw_messages", limit: int | None = None) -> dict:
    """Run one semantic dedup pass for *org_id* under the per-tenant lock.

    Uses lazy imports so the worker does not load the pipeline, database
    driver or HTTP client before the Celery app is configured.

    Returns:
        The report dict with an added ``status`` key: "ok", "skipped" (lock
        held by another run) or "failed" (configuration or source error).
    """
    from semdedup.config import settings  # noqa: PLC0415
    from semdedup.dedup.pipeline import run_semantic_dedup  # noqa: PLC0415
    from semdedup.errors import DedupError, TenantBusyError  # noqa: PLC0415

    try:
        with tenant_lock(org_id, settings.redis_url, settings.tenant_lock_timeout_seconds):
            report = asyncio.run(_run_and_dispose(run_semantic_dedup(org_id, source, limit)))
    except TenantBusyError as exc:
        logger.info("%s, skipping", exc)
        return {"status": "skipped", "org_id": org_id}
    except DedupError as exc:
        logger.error("semantic dedup failed for org=%s: %s", org_id, exc)
        return {"status": "failed", "org_id": org_id, "error": str(exc)}

    return {"status": "ok", "org_id": org_id, **report.as_dict()}


@celery_app.task(name="semdedup.run_scheduled")
def run_scheduled_task() -> dict:
    """Enqueue run_for_org for every tenant in ``settings.scheduled_org_ids``."""
    from semdedup.config import settings  # noqa: PLC0415

    for org_id in settings.scheduled_org_ids:
        run_for_org_task.delay(org_id)
    logger.info("scheduled semantic dedup for %d tenants", len(settings.scheduled_org_ids))
    return {"dispatched": len(settings.scheduled_org_ids)}


async def _run_and_dispose(coro):
    # Each asyncio.run() gets a fresh loop; pooled connections must not outlive it
    from semdedup.db.session import engine  # noqa: PLC0415
    from semdedup.pipeline.embedder import close_embedder  # noqa: PLC0415

    try:
        return await coro
    finally:
        await close_embedder()
        await engine.dispose()


@after_setup_logger.connect
def _apply_log_level(**kwargs) -> None:
    from semdedup.config import settings  # noqa: PLC0415

    kwargs["logger"].setLevel(settings.log_level)


def _configure_from_settings() -> None:
    from semdedup.config import settings  # noqa: PLC0415

    configure_celery(settings.redis_url, settings.schedule_cron_minute)


_configure_from_settings()
