from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, NoReturn, Optional, Protocol

from iplists.core.exceptions import DenialContractError, InvalidDenyMethodError, InvalidPolicyError
from iplists.core.ip_access import address_matches, normalize_route, route_matches
from iplists.core.rules import AddressRuleSnapshot, DenyMethod, ListPolicy, RuleListSnapshot

logger = logging.getLogger("iplists.access")


class Outcome(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    NO_MATCH = "no_match"


@dataclass(frozen=True)
class Decision:
    outcome: Outcome
    ip: Optional[str]
    route: str
    matched_list: Optional[RuleListSnapshot] = None
    matched_rule: Optional[AddressRuleSnapshot] = None

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOWED

    @property
    def denied(self) -> bool:
        return self.outcome is Outcome.DENIED

    @property
    def implicit(self) -> bool:
        """True when access was granted because no list claimed the request."""
        return self.outcome is Outcome.ALLOWED and self.matched_list is None


@dataclass(frozen=True)
class AuditEvent:
    """Structured record of a terminal access decision."""

    ip: Optional[str]
    route: str
    outcome: Outcome
    list_id: Optional[int] = None
    list_title: Optional[str] = None
    rule_id: Optional[int] = None
    rule_value: Optional[str] = None
    rule_kind: Optional[str] = None

    @classmethod
    def from_decision(cls, decision: Decision) -> "AuditEvent":
        rule_list = decision.matched_list
        rule = decision.matched_rule
        return cls(
            ip=decision.ip,
            route=decision.route,
            outcome=decision.outcome,
            list_id=rule_list.id if rule_list else None,
            list_title=rule_list.title if rule_list else None,
            rule_id=rule.id if rule else None,
            rule_value=rule.value if rule else None,
            rule_kind=_enum_text(rule.kind) if rule else None,
        )


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None:
        ...


@dataclass(frozen=True)
class DenialDescriptor:
    method: DenyMethod
    status_code: int
    detail: str
    list_id: Optional[int] = None


_DENIAL_DETAILS = {
    DenyMethod.NOT_FOUND: "not_found",
    DenyMethod.BAD_REQUEST: "bad_request",
}


def _enum_text(value: object) -> str:
    return str(value.value) if isinstance(value, Enum) else str(value)


class AccessDecisionEngine:
    """Evaluate a client IP and request path against prioritized IP lists.

    Lists must already be filtered and sorted by ``(priority desc, id asc)``;
    the engine trusts that order. The first list whose routes match and whose
    policy reaches a verdict decides the request. A Deny list that does not
    contain the client IP is ambivalent and evaluation moves on. When no list
    decides, access is allowed.
    """

    def __init__(self, audit_sink: Optional[AuditSink] = None) -> None:
        self.audit_sink = audit_sink

    def evaluate(self, ip: Optional[str], path: str, lists: Iterable[RuleListSnapshot]) -> Decision:
        route = normalize_route(path)
        for rule_list in lists:
            decision = self._evaluate_list(rule_list, ip, route)
            if decision.outcome is not Outcome.NO_MATCH:
                self._emit(decision)
                return decision

        decision = Decision(outcome=Outcome.ALLOWED, ip=ip, route=route)
        self._emit(decision)
        return decision

    def evaluate_list(self, rule_list: RuleListSnapshot, ip: Optional[str], path: str) -> Decision:
        """Evaluate one list on its own; ambivalent lists yield ``NO_MATCH``."""
        return self._evaluate_list(rule_list, ip, normalize_route(path))

    def would_deny(self, rule_list: RuleListSnapshot, ip: Optional[str], path: str) -> bool:
        """Would saving ``rule_list`` as-is deny ``ip`` on ``path``?"""
        return self.evaluate_list(rule_list, ip, path).outcome is Outcome.DENIED

    def denial_for(self, decision: Decision) -> DenialDescriptor:
        if decision.outcome is not Outcome.DENIED or decision.matched_list is None:
            raise DenialContractError(
                f"denial requested for a decision with outcome {decision.outcome.value!r}"
            )

        rule_list = decision.matched_list
        method = rule_list.deny_method
        if not isinstance(method, DenyMethod):
            logger.error(
                "Invalid deny method on IP list",
                extra={"list_id": rule_list.id, "deny_method": str(method)},
            )
            raise InvalidDenyMethodError(
                f"Invalid deny method {method!r} for IP list {rule_list.id}",
                list_id=rule_list.id,
                value=method,
            )
        return DenialDescriptor(
            method=method,
            status_code=method.value,
            detail=_DENIAL_DETAILS[method],
            list_id=rule_list.id,
        )

    def _evaluate_list(self, rule_list: RuleListSnapshot, ip: Optional[str], route: str) -> Decision:
        if not rule_list.enabled:
            return Decision(outcome=Outcome.NO_MATCH, ip=ip, route=route)

        if not route_matches(rule_list.protected_routes, route):
            return Decision(outcome=Outcome.NO_MATCH, ip=ip, route=route)

        for rule in rule_list.members:
            if not address_matches(rule, ip):
                continue
            if rule_list.policy is ListPolicy.ALLOW:
                return Decision(Outcome.ALLOWED, ip, route, rule_list, rule)
            if rule_list.policy is ListPolicy.DENY:
                return Decision(Outcome.DENIED, ip, route, rule_list, rule)
            self._invalid_policy(rule_list)

        if rule_list.policy is ListPolicy.ALLOW:
            return Decision(Outcome.DENIED, ip, route, rule_list, None)
        if rule_list.policy is ListPolicy.DENY:
            return Decision(Outcome.NO_MATCH, ip, route)
        self._invalid_policy(rule_list)

    def _invalid_policy(self, rule_list: RuleListSnapshot) -> NoReturn:
        logger.error(
            "Invalid list type on IP list",
            extra={"list_id": rule_list.id, "policy": str(rule_list.policy)},
        )
        raise InvalidPolicyError(
            f"IP list {rule_list.id} has invalid type {rule_list.policy!r}",
            list_id=rule_list.id,
            value=rule_list.policy,
        )

    def _emit(self, decision: Decision) -> None:
        if self.audit_sink is None:
            return
        try:
            self.audit_sink.record(AuditEvent.from_decision(decision))
        except Exception:
            logger.exception(
                "Failed to record access decision",
                extra={"ip": decision.ip, "route": decision.route},
            )


__all__ = [
    "AccessDecisionEngine",
    "AuditEvent",
    "AuditSink",
    "Decision",
    "DenialDescriptor",
    "Outcome",
]
