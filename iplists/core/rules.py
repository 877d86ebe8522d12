from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Tuple, Union


def parse_protected_routes(raw: Optional[str]) -> Tuple[str, ...]:
    """Split newline-delimited routes, trimming each line and dropping blanks."""
    if not raw:
        return tuple()
    routes: list[str] = []
    for line in raw.splitlines():
        route = line.strip()
        if not route or route in routes:
            continue
        routes.append(route)
    return tuple(routes)


class AddressKind(str, Enum):
    IP = "IP"
    CIDR = "CIDR"


class ListPolicy(str, Enum):
    ALLOW = "Allow"
    DENY = "Deny"


class DenyMethod(int, Enum):
    NOT_FOUND = 404
    BAD_REQUEST = 400


def coerce_kind(value: Union[AddressKind, str, None]) -> Union[AddressKind, str, None]:
    """Map a stored value onto :class:`AddressKind`, keeping unknown values as-is."""
    if isinstance(value, AddressKind) or value is None:
        return value
    try:
        return AddressKind(str(value).strip())
    except ValueError:
        return value


def coerce_policy(value: Union[ListPolicy, str, None]) -> Union[ListPolicy, str, None]:
    if isinstance(value, ListPolicy) or value is None:
        return value
    try:
        return ListPolicy(str(value).strip())
    except ValueError:
        return value


def coerce_deny_method(value: Union[DenyMethod, int, str, None]) -> Union[DenyMethod, int, str, None]:
    if isinstance(value, DenyMethod) or value is None:
        return value
    try:
        return DenyMethod(int(value))
    except (TypeError, ValueError):
        return value


@dataclass(frozen=True)
class AddressRuleSnapshot:
    """Read-only view of a single IP or CIDR rule."""

    id: int
    kind: Union[AddressKind, str]
    value: str
    label: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", coerce_kind(self.kind))


@dataclass(frozen=True)
class RuleListSnapshot:
    """Read-only view of an IP list, ready for evaluation.

    ``policy`` and ``deny_method`` normally hold enum members. Values that do not
    map onto an enum are kept verbatim so the engine can report them.
    """

    id: int
    title: str
    policy: Union[ListPolicy, str]
    protected_routes: Tuple[str, ...]
    members: Tuple[AddressRuleSnapshot, ...] = field(default_factory=tuple)
    deny_method: Union[DenyMethod, int, str] = DenyMethod.NOT_FOUND
    priority: int = 100
    enabled: bool = True
    description: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "policy", coerce_policy(self.policy))
        object.__setattr__(self, "deny_method", coerce_deny_method(self.deny_method))
        object.__setattr__(self, "protected_routes", tuple(self.protected_routes))
        object.__setattr__(self, "members", tuple(self.members))

    @classmethod
    def build(
        cls,
        *,
        id: int,
        title: str,
        policy: Union[ListPolicy, str],
        protected_routes: Union[str, Iterable[str]],
        members: Iterable[AddressRuleSnapshot] = (),
        deny_method: Union[DenyMethod, int, str] = DenyMethod.NOT_FOUND,
        priority: int = 100,
        enabled: bool = True,
        description: Optional[str] = None,
    ) -> "RuleListSnapshot":
        if isinstance(protected_routes, str):
            routes = parse_protected_routes(protected_routes)
        else:
            routes = parse_protected_routes("\n".join(protected_routes))
        return cls(
            id=id,
            title=title,
            policy=policy,
            protected_routes=routes,
            members=tuple(members),
            deny_method=deny_method,
            priority=int(priority),
            enabled=bool(enabled),
            description=description,
        )


def sort_key(rule_list: RuleListSnapshot) -> Tuple[int, int]:
    """Evaluation order: highest priority first, then oldest list first."""
    return (-rule_list.priority, rule_list.id)


def order_for_evaluation(lists: Iterable[RuleListSnapshot]) -> list[RuleListSnapshot]:
    return sorted((item for item in lists if item.enabled), key=sort_key)


__all__ = [
    "AddressKind",
    "ListPolicy",
    "DenyMethod",
    "AddressRuleSnapshot",
    "RuleListSnapshot",
    "coerce_kind",
    "coerce_policy",
    "coerce_deny_method",
    "order_for_evaluation",
    "parse_protected_routes",
    "sort_key",
]
