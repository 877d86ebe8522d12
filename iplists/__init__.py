"""IP address based access control for HTTP routes."""

from iplists.core.engine import AccessDecisionEngine, AuditEvent, Decision, DenialDescriptor, Outcome
from iplists.core.exceptions import (
    DenialContractError,
    InvalidDenyMethodError,
    InvalidPolicyError,
    IPListConsistencyError,
    IPListError,
)
from iplists.core.rules import AddressKind, AddressRuleSnapshot, DenyMethod, ListPolicy, RuleListSnapshot

__version__ = "0.1.0"

__all__ = [
    "AccessDecisionEngine",
    "AddressKind",
    "AddressRuleSnapshot",
    "AuditEvent",
    "Decision",
    "DenialContractError",
    "DenialDescriptor",
    "DenyMethod",
    "IPListConsistencyError",
    "IPListError",
    "InvalidDenyMethodError",
    "InvalidPolicyError",
    "ListPolicy",
    "Outcome",
    "RuleListSnapshot",
]
