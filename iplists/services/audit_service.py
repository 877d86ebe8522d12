from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from iplists.core.engine import AuditEvent, AuditSink, Outcome
from iplists.db import models

audit_logger = logging.getLogger("iplists.audit")


class LoggingAuditSink:
    """Write one log line per decision: DEBUG when allowed, WARNING when denied."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or audit_logger

    def record(self, event: AuditEvent) -> None:
        verb = "allowed to access" if event.outcome is Outcome.ALLOWED else "denied access to"
        level = logging.DEBUG if event.outcome is Outcome.ALLOWED else logging.WARNING
        self.logger.log(
            level,
            "IP %s %s route %s by IP list %s (%s), IP rule %s (IP %s, type %s)",
            event.ip or "<no ip>",
            verb,
            event.route,
            event.list_id if event.list_id is not None else "-",
            event.list_title or "no list",
            event.rule_id if event.rule_id is not None else "-",
            event.rule_value or "no ip",
            event.rule_kind or "no ip type",
            extra={
                "outcome": event.outcome.value,
                "client_ip": event.ip,
                "route": event.route,
                "list_id": event.list_id,
                "rule_id": event.rule_id,
            },
        )


class DatabaseAuditSink:
    """Persist each decision as an :class:`AccessAuditLog` row."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def record(self, event: AuditEvent) -> None:
        with self.session_factory() as session:
            AuditService(session).log_decision(event)
            session.commit()


class CompositeAuditSink:
    """Fan a decision out to several sinks; one failing sink does not stop the rest."""

    def __init__(self, sinks: Iterable[AuditSink]) -> None:
        self.sinks = list(sinks)

    def record(self, event: AuditEvent) -> None:
        for sink in self.sinks:
            try:
                sink.record(event)
            except Exception:
                audit_logger.exception(
                    "Audit sink failed",
                    extra={"sink": type(sink).__name__, "client_ip": event.ip, "route": event.route},
                )


class AuditService:
    """Persistence and queries for access decision records."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def log_decision(self, event: AuditEvent) -> models.AccessAuditLog:
        log = models.AccessAuditLog(
            outcome=event.outcome.value,
            client_ip=self._normalize_text(event.ip),
            route=event.route,
            list_id=event.list_id,
            list_title=self._normalize_text(event.list_title),
            rule_id=event.rule_id,
            rule_value=self._normalize_text(event.rule_value),
            rule_kind=self._normalize_text(event.rule_kind),
        )
        self.db.add(log)
        return log

    def list_logs(
        self,
        *,
        outcome: Optional[Outcome | str] = None,
        client_ip: Optional[str] = None,
        list_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[models.AccessAuditLog], int]:
        """List decision records with optional filters and return (items, total)."""

        if limit <= 0:
            limit = 50
        limit = min(limit, 200)
        offset = max(offset, 0)

        conditions: list[Any] = []
        if outcome:
            value = outcome.value if isinstance(outcome, Outcome) else self._normalize_key(outcome)
            conditions.append(models.AccessAuditLog.outcome == value)
        if client_ip:
            conditions.append(models.AccessAuditLog.client_ip == client_ip.strip())
        if list_id is not None:
            conditions.append(models.AccessAuditLog.list_id == list_id)
        if start:
            conditions.append(models.AccessAuditLog.created_at >= start)
        if end:
            conditions.append(models.AccessAuditLog.created_at <= end)

        stmt = select(models.AccessAuditLog)
        if conditions:
            stmt = stmt.where(and_(*conditions))

        total = self.db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        stmt = (
            stmt.order_by(models.AccessAuditLog.created_at.desc(), models.AccessAuditLog.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.db.scalars(stmt).all()), int(total)

    @staticmethod
    def _normalize_key(value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        normalized = value.strip().lower()
        return normalized or None

    @staticmethod
    def _normalize_text(value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


__all__ = [
    "AuditService",
    "CompositeAuditSink",
    "DatabaseAuditSink",
    "LoggingAuditSink",
]
