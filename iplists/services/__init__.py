from __future__ import annotations

from iplists.services.audit_service import AuditService, CompositeAuditSink, DatabaseAuditSink, LoggingAuditSink
from iplists.services.ip_list_service import IPListService
from iplists.services.rule_store import CachedRuleStore, DatabaseRuleStore, InMemoryRuleStore

__all__ = [
    "AuditService",
    "CachedRuleStore",
    "CompositeAuditSink",
    "DatabaseAuditSink",
    "DatabaseRuleStore",
    "InMemoryRuleStore",
    "IPListService",
    "LoggingAuditSink",
]
