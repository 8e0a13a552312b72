"""Central model registry: import all models so Alembic autodiscover works."""

from procurement.database import Base  # noqa: F401

from procurement.models.user import Store, User  # noqa: F401
from procurement.models.rfq import Rfq, RfqItem  # noqa: F401
from procurement.models.quote import Quote, QuoteItem  # noqa: F401
from procurement.models.award import Award  # noqa: F401
from procurement.models.notification import AppNotification  # noqa: F401
from procurement.models.audit_log import AuditLog  # noqa: F401
