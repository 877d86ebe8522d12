from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from iplists.core.engine import AccessDecisionEngine
from iplists.core.ip_access import is_valid_value
from iplists.core.rules import AddressKind, DenyMethod, ListPolicy, parse_protected_routes
from iplists.db import IPList, IPListMember, IPRule
from iplists.services.rule_store import list_to_snapshot

logger = logging.getLogger("iplists.rules")

MAX_VALUE_LENGTH = 45


def describe_usage(lists: List[IPList]) -> str:
    """Summarise the lists an IP rule belongs to, e.g. ``2 lists (Office, VPN)``."""
    count = len(lists)
    titles = ", ".join(item.title for item in lists)
    suffix = f" ({titles})" if titles else ""
    return f"{count} list{'' if count == 1 else 's'}{suffix}"


class IPListService:
    """Create, edit and delete IP lists and the IP rules they contain.

    Every write that changes what a list protects is checked against the
    editing administrator's own IP (``actor_ip``) and the path they are
    working from (``actor_path``). A change that would deny that request is
    rolled back with ``ValueError("self_lockout")``.
    """

    def __init__(
        self,
        db: Session,
        *,
        engine: Optional[AccessDecisionEngine] = None,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.db = db
        self.engine = engine or AccessDecisionEngine()
        self.on_change = on_change

    # ------------------------------------------------------------------
    # Coercion helpers
    # ------------------------------------------------------------------
    def _coerce_kind(self, kind: Union[AddressKind, str]) -> AddressKind:
        try:
            return kind if isinstance(kind, AddressKind) else AddressKind(str(kind).strip().upper())
        except ValueError as exc:
            raise ValueError("address_type_invalid") from exc

    def _coerce_policy(self, policy: Union[ListPolicy, str]) -> ListPolicy:
        try:
            return policy if isinstance(policy, ListPolicy) else ListPolicy(str(policy).strip().capitalize())
        except ValueError as exc:
            raise ValueError("policy_invalid") from exc

    def _coerce_deny_method(self, method: Union[DenyMethod, int, str]) -> DenyMethod:
        try:
            return method if isinstance(method, DenyMethod) else DenyMethod(int(method))
        except (TypeError, ValueError) as exc:
            raise ValueError("deny_method_invalid") from exc

    def _normalize_value(self, kind: AddressKind, value: str) -> str:
        raw = (value or "").strip()
        if not raw:
            raise ValueError("value_required")
        if len(raw) > MAX_VALUE_LENGTH or not is_valid_value(kind, raw):
            raise ValueError("value_invalid")
        return raw

    def _normalize_routes(self, routes: Union[str, Iterable[str], None]) -> str:
        if routes is None:
            raise ValueError("routes_required")
        raw = routes if isinstance(routes, str) else "\n".join(routes)
        parsed = parse_protected_routes(raw)
        if not parsed:
            raise ValueError("routes_required")
        return "\n".join(parsed)

    def _normalize_title(self, title: Optional[str]) -> str:
        normalized = (title or "").strip()
        if not normalized:
            raise ValueError("title_required")
        return normalized

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_lists(self, *, enabled_only: bool = False) -> List[IPList]:
        stmt = select(IPList)
        if enabled_only:
            stmt = stmt.where(IPList.enabled.is_(True))
        stmt = stmt.order_by(IPList.priority.desc(), IPList.id.asc())
        return list(self.db.scalars(stmt).all())

    def list_rules(self) -> List[IPRule]:
        return list(self.db.scalars(select(IPRule).order_by(IPRule.id.asc())).all())

    def get_list(self, list_id: int) -> IPList:
        ip_list = self.db.get(IPList, list_id)
        if not ip_list:
            raise ValueError("list_not_found")
        return ip_list

    def get_rule(self, rule_id: int) -> IPRule:
        rule = self.db.get(IPRule, rule_id)
        if not rule:
            raise ValueError("rule_not_found")
        return rule

    def lists_for_rule(self, rule_id: int) -> List[IPList]:
        rule = self.get_rule(rule_id)
        return [membership.ip_list for membership in rule.memberships]

    def usage_summary(self, rule_id: int) -> str:
        return describe_usage(self.lists_for_rule(rule_id))

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------
    def create_list(
        self,
        *,
        title: str,
        protected_routes: Union[str, Iterable[str]],
        list_type: Union[ListPolicy, str] = ListPolicy.ALLOW,
        deny_method: Union[DenyMethod, int, str] = DenyMethod.NOT_FOUND,
        priority: int = 100,
        enabled: bool = True,
        description: Optional[str] = None,
        rule_ids: Iterable[int] = (),
        actor_ip: Optional[str] = None,
        actor_path: Optional[str] = None,
    ) -> IPList:
        ip_list = IPList(
            title=self._normalize_title(title),
            description=(description or "").strip() or None,
            enabled=bool(enabled),
            list_type=self._coerce_policy(list_type).value,
            deny_method=self._coerce_deny_method(deny_method).value,
            priority=int(priority),
            protected_routes=self._normalize_routes(protected_routes),
        )
        # Resolve members before the list joins the session.
        rules = [self.get_rule(rule_id) for rule_id in rule_ids]

        self.db.add(ip_list)
        for index, rule in enumerate(rules):
            ip_list.members.append(IPListMember(rule=rule, sort_order=index))
        self.db.flush()
        self._guard_lockout(ip_list, actor_ip, actor_path)

        self.db.commit()
        self.db.refresh(ip_list)
        self._notify()
        logger.info(
            "Created IP list",
            extra={"id": ip_list.id, "title": ip_list.title, "list_type": ip_list.list_type},
        )
        return ip_list

    def update_list(
        self,
        list_id: int,
        *,
        title: Optional[str] = None,
        protected_routes: Union[str, Iterable[str], None] = None,
        list_type: Union[ListPolicy, str, None] = None,
        deny_method: Union[DenyMethod, int, str, None] = None,
        priority: Optional[int] = None,
        enabled: Optional[bool] = None,
        description: Optional[str] = None,
        actor_ip: Optional[str] = None,
        actor_path: Optional[str] = None,
    ) -> IPList:
        ip_list = self.get_list(list_id)
        changes: Dict[str, Any] = {}

        if title is not None:
            changes["title"] = self._normalize_title(title)
        if protected_routes is not None:
            changes["protected_routes"] = self._normalize_routes(protected_routes)
        if list_type is not None:
            changes["list_type"] = self._coerce_policy(list_type).value
        if deny_method is not None:
            changes["deny_method"] = self._coerce_deny_method(deny_method).value
        if priority is not None:
            changes["priority"] = int(priority)
        if enabled is not None and bool(enabled) != ip_list.enabled:
            changes["enabled"] = bool(enabled)
        if description is not None:
            changes["description"] = description.strip() or None

        if not changes:
            return ip_list

        for field, value in changes.items():
            setattr(ip_list, field, value)
        self.db.flush()
        self._guard_lockout(ip_list, actor_ip, actor_path)
        self.db.commit()
        self.db.refresh(ip_list)
        self._notify()
        logger.info("Updated IP list", extra={"id": ip_list.id, "title": ip_list.title})
        return ip_list

    def delete_list(self, list_id: int) -> None:
        ip_list = self.get_list(list_id)
        title = ip_list.title
        self.db.delete(ip_list)
        self.db.commit()
        self._notify()
        logger.info("Deleted IP list", extra={"id": list_id, "title": title})

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------
    def create_rule(
        self,
        *,
        value: str,
        address_type: Union[AddressKind, str] = AddressKind.IP,
        title: Optional[str] = None,
    ) -> IPRule:
        kind = self._coerce_kind(address_type)
        rule = IPRule(
            address_type=kind.value,
            value=self._normalize_value(kind, value),
            title=(title or "").strip() or None,
        )
        self.db.add(rule)
        self.db.commit()
        self.db.refresh(rule)
        logger.info(
            "Created IP rule",
            extra={"id": rule.id, "address_type": rule.address_type, "value": rule.value},
        )
        return rule

    def update_rule(
        self,
        rule_id: int,
        *,
        value: Optional[str] = None,
        address_type: Union[AddressKind, str, None] = None,
        title: Optional[str] = None,
        actor_ip: Optional[str] = None,
        actor_path: Optional[str] = None,
    ) -> IPRule:
        """Edit a rule in place; every list containing it is re-checked for self-lockout."""
        rule = self.get_rule(rule_id)
        kind = self._coerce_kind(address_type if address_type is not None else rule.address_type)
        new_value = value if value is not None else rule.value
        if address_type is not None or value is not None:
            rule.value = self._normalize_value(kind, new_value)
            rule.address_type = kind.value
        if title is not None:
            rule.title = title.strip() or None

        self.db.flush()
        for membership in rule.memberships:
            self._guard_lockout(membership.ip_list, actor_ip, actor_path)

        self.db.commit()
        self.db.refresh(rule)
        self._notify()
        logger.info("Updated IP rule", extra={"id": rule.id, "value": rule.value})
        return rule

    def delete_rule(
        self,
        rule_id: int,
        *,
        actor_ip: Optional[str] = None,
        actor_path: Optional[str] = None,
    ) -> None:
        """Delete a rule everywhere; every list it belonged to loses it."""
        rule = self.get_rule(rule_id)
        affected = [membership.ip_list for membership in rule.memberships]
        for ip_list in affected:
            ip_list.members[:] = [member for member in ip_list.members if member.rule_id != rule.id]
        self.db.delete(rule)
        self.db.flush()
        for ip_list in affected:
            self._guard_lockout(ip_list, actor_ip, actor_path)

        self.db.commit()
        self._notify()
        logger.info("Deleted IP rule", extra={"id": rule_id, "lists": [ip_list.id for ip_list in affected]})

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------
    def add_rule_to_list(
        self,
        list_id: int,
        rule_id: int,
        *,
        sort_order: Optional[int] = None,
        actor_ip: Optional[str] = None,
        actor_path: Optional[str] = None,
    ) -> IPListMember:
        ip_list = self.get_list(list_id)
        rule = self.get_rule(rule_id)
        if any(member.rule_id == rule.id for member in ip_list.members):
            raise ValueError("member_exists")

        if sort_order is None:
            sort_order = max((member.sort_order for member in ip_list.members), default=-1) + 1
        member = IPListMember(rule=rule, sort_order=int(sort_order))
        ip_list.members.append(member)
        self.db.flush()
        self._guard_lockout(ip_list, actor_ip, actor_path)

        self.db.commit()
        self._notify()
        logger.info("Added IP rule to list", extra={"list_id": list_id, "rule_id": rule_id})
        return member

    def remove_rule_from_list(
        self,
        list_id: int,
        rule_id: int,
        *,
        actor_ip: Optional[str] = None,
        actor_path: Optional[str] = None,
    ) -> None:
        """Detach a rule from one list; the rule itself is kept."""
        ip_list = self.get_list(list_id)
        member = next((item for item in ip_list.members if item.rule_id == rule_id), None)
        if member is None:
            raise ValueError("member_not_found")

        ip_list.members.remove(member)
        self.db.flush()
        self._guard_lockout(ip_list, actor_ip, actor_path)

        self.db.commit()
        self._notify()
        logger.info("Removed IP rule from list", extra={"list_id": list_id, "rule_id": rule_id})

    # ------------------------------------------------------------------
    # Internal utilities
    # ------------------------------------------------------------------
    def _guard_lockout(self, ip_list: IPList, actor_ip: Optional[str], actor_path: Optional[str]) -> None:
        if not actor_ip or not actor_path:
            return
        snapshot = list_to_snapshot(ip_list)
        if self.engine.would_deny(snapshot, actor_ip, actor_path):
            self.db.rollback()
            logger.warning(
                "Rejected IP list change that would lock out the editor",
                extra={"list_id": ip_list.id, "client_ip": actor_ip, "path": actor_path},
            )
            raise ValueError("self_lockout")

    def _notify(self) -> None:
        if not self.on_change:
            return
        try:
            self.on_change()
        except Exception:
            logger.exception("Failed to propagate IP list change")


__all__ = ["IPListService", "describe_usage"]
