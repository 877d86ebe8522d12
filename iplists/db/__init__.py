from iplists.db.base import Base
from iplists.db.models import AccessAuditLog, IPList, IPListMember, IPRule

__all__ = [
    "Base",
    "IPList",
    "IPListMember",
    "IPRule",
    "AccessAuditLog",
]
