# dispatch/models/registry.py
# Importing this module registers every table on Base.metadata
# (alembic env, tests and create_all rely on it).
from dispatch.models.base import Base  # noqa: F401
from dispatch.models.organization import Organization, Warehouse, WarehouseManager  # noqa: F401
from dispatch.models.user import User  # noqa: F401
from dispatch.models.route import Route  # noqa: F401
from dispatch.models.assignment import Assignment  # noqa: F401
from dispatch.models.shift import Shift  # noqa: F401
from dispatch.models.bid_window import BidWindow  # noqa: F401
from dispatch.models.bid import Bid  # noqa: F401
from dispatch.models.driver_metrics import DriverHealthState, DriverMetrics  # noqa: F401
from dispatch.models.driver_preference import DriverPreference, RouteCompletion  # noqa: F401
from dispatch.models.notification import Notification  # noqa: F401
from dispatch.models.audit_log import AuditLog  # noqa: F401
