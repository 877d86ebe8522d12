from __future__ import annotations

import ipaddress
import logging
from functools import lru_cache
from typing import Iterable, Optional, Union

from iplists.core.rules import AddressKind, AddressRuleSnapshot

logger = logging.getLogger("iplists.access")

AddressType = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
NetworkType = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


@lru_cache(maxsize=1024)
def _compile_network(entry: str) -> Optional[NetworkType]:
    try:
        return ipaddress.ip_network(entry, strict=False)
    except ValueError:
        logger.debug("Skipping unparseable CIDR rule value", extra={"entry": entry})
        return None


def _parse_address(value: Optional[str]) -> Optional[AddressType]:
    if value is None:
        return None
    try:
        return ipaddress.ip_address(str(value).strip())
    except ValueError:
        return None


def is_valid_value(kind: Union[AddressKind, str], value: Optional[str]) -> bool:
    """Return True when ``value`` parses under the grammar of ``kind``."""
    raw = (value or "").strip()
    if not raw:
        return False
    if kind == AddressKind.IP:
        return _parse_address(raw) is not None
    if kind == AddressKind.CIDR:
        return _compile_network(raw) is not None
    return False


def address_matches(rule: AddressRuleSnapshot, candidate: Optional[str]) -> bool:
    """Check whether ``candidate`` is covered by ``rule``.

    Single addresses compare as trimmed strings, so ``::1`` and
    ``0:0:0:0:0:0:0:1`` are different addresses here. CIDR blocks use a prefix
    match within the same IP family. Unparseable input on either side means
    the rule does not match; this function never raises.
    """

    ip_obj = _parse_address(candidate)
    if ip_obj is None:
        logger.debug(
            "Client IP is not a valid address, rule does not match",
            extra={"ip": candidate, "rule_id": rule.id},
        )
        return False

    rule_value = (rule.value or "").strip()
    if not rule_value:
        return False

    if rule.kind == AddressKind.IP:
        if _parse_address(rule_value) is None:
            logger.debug("Invalid single address rule", extra={"rule_id": rule.id, "value": rule.value})
            return False
        return str(candidate).strip() == rule_value

    if rule.kind == AddressKind.CIDR:
        network = _compile_network(rule_value)
        if network is None:
            return False
        if network.version != ip_obj.version:
            return False
        return ip_obj in network

    logger.debug("Unknown address type on rule", extra={"rule_id": rule.id, "kind": str(rule.kind)})
    return False


def normalize_route(path: Optional[str]) -> str:
    """Strip query string and fragment and force a single leading slash."""
    raw = (path or "").strip()
    raw = raw.split("?", 1)[0].split("#", 1)[0]
    return "/" + raw.lstrip("/")


def route_matches(protected_routes: Iterable[str], request_path: str) -> bool:
    """Case-sensitive prefix match: ``/admin`` also covers ``/administrator``."""
    for route in protected_routes:
        if route and request_path.startswith(route):
            return True
    return False


__all__ = [
    "address_matches",
    "is_valid_value",
    "normalize_route",
    "route_matches",
]
