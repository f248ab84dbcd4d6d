"""REST route modules, one APIRouter per resource."""
