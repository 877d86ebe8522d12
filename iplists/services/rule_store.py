from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterable, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from iplists.core.rules import AddressRuleSnapshot, RuleListSnapshot, order_for_evaluation
from iplists.db.models import IPList, IPListMember, IPRule

logger = logging.getLogger("iplists.rules")


class RuleStore(Protocol):
    def load_enabled_lists(self) -> Sequence[RuleListSnapshot]:
        """Return enabled lists sorted by ``(priority desc, id asc)``."""
        ...


def rule_to_snapshot(rule: IPRule) -> AddressRuleSnapshot:
    return AddressRuleSnapshot(
        id=rule.id,
        kind=rule.address_type,
        value=rule.value,
        label=rule.title,
    )


def list_to_snapshot(ip_list: IPList) -> RuleListSnapshot:
    return RuleListSnapshot.build(
        id=ip_list.id,
        title=ip_list.title,
        description=ip_list.description,
        enabled=bool(ip_list.enabled),
        policy=ip_list.list_type,
        deny_method=ip_list.deny_method,
        priority=ip_list.priority or 0,
        protected_routes=ip_list.protected_routes or "",
        members=[rule_to_snapshot(member.rule) for member in ip_list.members],
    )


class InMemoryRuleStore:
    """Serve a fixed set of lists; disabled lists are dropped and the rest sorted."""

    def __init__(self, lists: Iterable[RuleListSnapshot] = ()) -> None:
        self._lists = tuple(order_for_evaluation(lists))

    def load_enabled_lists(self) -> Sequence[RuleListSnapshot]:
        return self._lists


class DatabaseRuleStore:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def load_enabled_lists(self) -> Sequence[RuleListSnapshot]:
        stmt = (
            select(IPList)
            .where(IPList.enabled.is_(True))
            .options(selectinload(IPList.members).selectinload(IPListMember.rule))
            .order_by(IPList.priority.desc(), IPList.id.asc())
        )
        with self.session_factory() as session:
            lists = session.scalars(stmt).all()
            return tuple(list_to_snapshot(item) for item in lists)


class CachedRuleStore:
    """Keep the last snapshot for ``ttl_seconds`` before asking the inner store again.

    A TTL of zero or less reloads on every call.
    """

    def __init__(
        self,
        inner: RuleStore,
        *,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[Sequence[RuleListSnapshot]] = None
        self._expires_at = 0.0

    def load_enabled_lists(self) -> Sequence[RuleListSnapshot]:
        if self.ttl_seconds <= 0:
            return self.inner.load_enabled_lists()

        with self._lock:
            now = self._clock()
            if self._snapshot is None or now >= self._expires_at:
                self._snapshot = tuple(self.inner.load_enabled_lists())
                self._expires_at = now + self.ttl_seconds
                logger.debug("Refreshed IP list snapshot", extra={"lists": len(self._snapshot)})
            return self._snapshot

    def invalidate(self) -> None:
        with self._lock:
            self._snapshot = None
            self._expires_at = 0.0


__all__ = [
    "RuleStore",
    "InMemoryRuleStore",
    "DatabaseRuleStore",
    "CachedRuleStore",
    "list_to_snapshot",
    "rule_to_snapshot",
]
