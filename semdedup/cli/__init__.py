"""Semantic dedup CLI — run dedup passes and inspect clusters.

Entry point registered in pyproject.toml:
    semdedup = "semdedup.cli:app"

Commands:
    semdedup run       — run one dedup pass for a tenant
    semdedup clusters  — list a tenant's newest clusters

Usage:
    semdedup --help
    semdedup run --org-id <org_id> [--source segments] [--limit 2000]
    SEMDEDUP_ORG_ID=school-42 semdedup clusters
"""

import typer

from semdedup.cli.commands import clusters, run

app = typer.Typer(
    name="semdedup",
    help="Semantic dedup CLI — cluster near-duplicate client messages",
    no_args_is_help=True,
)

app.command()(run)
app.command()(clusters)
