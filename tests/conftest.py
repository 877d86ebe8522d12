from __future__ import annotations

import os
import tempfile
from pathlib import Path

os.environ.setdefault("IPLISTS_SQLITE_PATH", str(Path(tempfile.gettempdir()) / "iplists-tests" / "iplists.db"))

import pytest

from iplists.core.rules import AddressKind, AddressRuleSnapshot, DenyMethod, ListPolicy, RuleListSnapshot
from iplists.db.base import Base
from iplists.db.session import engine
import iplists.db.models  # noqa: F401  # ensure models are registered


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


def ip_rule(rule_id: int, value: str, kind: AddressKind = AddressKind.IP) -> AddressRuleSnapshot:
    return AddressRuleSnapshot(id=rule_id, kind=kind, value=value)


def rule_list(
    list_id: int,
    policy: ListPolicy | str,
    routes: str,
    members=(),
    *,
    priority: int = 100,
    deny_method: DenyMethod | int = DenyMethod.NOT_FOUND,
    enabled: bool = True,
    title: str | None = None,
) -> RuleListSnapshot:
    return RuleListSnapshot.build(
        id=list_id,
        title=title or f"list-{list_id}",
        policy=policy,
        protected_routes=routes,
        members=members,
        priority=priority,
        deny_method=deny_method,
        enabled=enabled,
    )


class RecordingSink:
    def __init__(self) -> None:
        self.events = []

    def record(self, event) -> None:
        self.events.append(event)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
