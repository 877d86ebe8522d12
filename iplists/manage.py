#!/usr/bin/env python
from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

from iplists.core.engine import AccessDecisionEngine
from iplists.core.exceptions import IPListConsistencyError
from iplists.core.rules import AddressKind, DenyMethod, ListPolicy
from iplists.core.settings import get_settings
from iplists.db.base import Base
from iplists.db.session import SessionLocal, engine
from iplists.services.audit_service import LoggingAuditSink
from iplists.services.ip_list_service import IPListService
from iplists.services.rule_store import DatabaseRuleStore

settings = get_settings()


def init_db() -> None:
    Base.metadata.create_all(bind=engine)
    print(f"Database initialized at {settings.sqlite_path}")


def create_list(
    title: str,
    routes: Sequence[str],
    list_type: str,
    deny_method: int,
    priority: int,
    disabled: bool,
    description: Optional[str],
) -> None:
    with SessionLocal() as session:
        try:
            ip_list = IPListService(session).create_list(
                title=title,
                protected_routes=routes,
                list_type=list_type,
                deny_method=deny_method,
                priority=priority,
                enabled=not disabled,
                description=description,
            )
        except ValueError as exc:
            raise SystemExit(f"Failed to create IP list: {exc}") from exc
        print(f"IP list {ip_list.id} created: {ip_list.title} ({ip_list.list_type})")


def add_ip(value: str, address_type: str, title: Optional[str], list_ids: Sequence[int]) -> None:
    with SessionLocal() as session:
        service = IPListService(session)
        try:
            for list_id in list_ids:
                service.get_list(list_id)
            rule = service.create_rule(value=value, address_type=address_type, title=title)
            for list_id in list_ids:
                service.add_rule_to_list(list_id, rule.id)
        except ValueError as exc:
            raise SystemExit(f"Failed to add IP: {exc}") from exc
        print(f"IP rule {rule.id} created: {rule.value} ({rule.address_type}), used in {service.usage_summary(rule.id)}")


def remove_ip(list_id: int, rule_id: int) -> None:
    with SessionLocal() as session:
        try:
            IPListService(session).remove_rule_from_list(list_id, rule_id)
        except ValueError as exc:
            raise SystemExit(f"Failed to remove IP from list: {exc}") from exc
        print(f"IP rule {rule_id} removed from list {list_id}.")


def delete_ip(rule_id: int) -> None:
    with SessionLocal() as session:
        try:
            IPListService(session).delete_rule(rule_id)
        except ValueError as exc:
            raise SystemExit(f"Failed to delete IP: {exc}") from exc
        print(f"IP rule {rule_id} deleted from all lists.")


def delete_list(list_id: int) -> None:
    with SessionLocal() as session:
        try:
            IPListService(session).delete_list(list_id)
        except ValueError as exc:
            raise SystemExit(f"Failed to delete IP list: {exc}") from exc
        print(f"IP list {list_id} deleted.")


def list_lists() -> None:
    with SessionLocal() as session:
        rows = IPListService(session).list_lists()
        if not rows:
            print("No IP lists found.")
            return

        header = f"{'ID':<5} {'PRIORITY':<9} {'TYPE':<6} {'DENY':<5} {'ENABLED':<8} {'IPS':<4} {'TITLE':<30} {'ROUTES'}"
        print(header)
        print("-" * len(header))
        for ip_list in rows:
            enabled = "yes" if ip_list.enabled else "no"
            routes = ", ".join(ip_list.routes)
            print(
                f"{ip_list.id:<5} {ip_list.priority:<9} {ip_list.list_type:<6} {ip_list.deny_method:<5} "
                f"{enabled:<8} {len(ip_list.members):<4} {ip_list.title:<30} {routes}"
            )


def list_ips() -> None:
    with SessionLocal() as session:
        service = IPListService(session)
        rows = service.list_rules()
        if not rows:
            print("No IP rules found.")
            return

        header = f"{'ID':<5} {'TYPE':<5} {'IP':<45} {'TITLE':<30} {'USED IN'}"
        print(header)
        print("-" * len(header))
        for rule in rows:
            print(
                f"{rule.id:<5} {rule.address_type:<5} {rule.value:<45} {rule.title or '--':<30} "
                f"{service.usage_summary(rule.id)}"
            )


def check(ip: str, path: str) -> int:
    decision_engine = AccessDecisionEngine(audit_sink=LoggingAuditSink())
    lists = DatabaseRuleStore(SessionLocal).load_enabled_lists()
    try:
        decision = decision_engine.evaluate(ip, path, lists)
    except IPListConsistencyError as exc:
        print(f"error: {exc}")
        return 2

    via = "no matching list (default allow)"
    if decision.matched_list is not None:
        via = f"list {decision.matched_list.id} ({decision.matched_list.title})"
        if decision.matched_rule is not None:
            via += f", rule {decision.matched_rule.id} ({decision.matched_rule.value})"
    print(f"{decision.outcome.value}: {decision.ip} -> {decision.route} via {via}")
    if decision.denied:
        denial = decision_engine.denial_for(decision)
        print(f"denial: HTTP {denial.status_code} ({denial.detail})")
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage IP lists")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("init-db", help="Initialize SQLite database")

    create_parser = sub.add_parser("create-list", help="Create an IP list")
    create_parser.add_argument("title", help="Name of the IP list")
    create_parser.add_argument(
        "--route",
        dest="routes",
        action="append",
        required=True,
        help="Protected route prefix (repeatable)",
    )
    create_parser.add_argument(
        "--type",
        dest="list_type",
        choices=[choice.value for choice in ListPolicy],
        default=ListPolicy.ALLOW.value,
        help="Allow: only listed IPs may access; Deny: listed IPs are refused",
    )
    create_parser.add_argument(
        "--deny-method",
        type=int,
        choices=[choice.value for choice in DenyMethod],
        default=DenyMethod.NOT_FOUND.value,
        help="HTTP status used when this list denies a request",
    )
    create_parser.add_argument("--priority", type=int, default=100, help="Higher priority lists are evaluated first")
    create_parser.add_argument("--disabled", action="store_true", help="Create the list disabled")
    create_parser.add_argument("--description", help="Longer description of the list")

    add_parser = sub.add_parser("add-ip", help="Create an IP rule and attach it to lists")
    add_parser.add_argument("value", help="IP address or CIDR block")
    add_parser.add_argument(
        "--type",
        dest="address_type",
        choices=[choice.value for choice in AddressKind],
        default=AddressKind.IP.value,
    )
    add_parser.add_argument("--title", help="Who or what this IP belongs to")
    add_parser.add_argument("--list", dest="list_ids", type=int, action="append", default=[], help="IP list ID")

    remove_parser = sub.add_parser("remove-ip", help="Detach an IP rule from a list")
    remove_parser.add_argument("list_id", type=int)
    remove_parser.add_argument("rule_id", type=int)

    delete_ip_parser = sub.add_parser("delete-ip", help="Delete an IP rule from every list")
    delete_ip_parser.add_argument("rule_id", type=int)

    delete_list_parser = sub.add_parser("delete-list", help="Delete an IP list (its IP rules are kept)")
    delete_list_parser.add_argument("list_id", type=int)

    sub.add_parser("list-lists", help="Show IP lists in evaluation order")
    sub.add_parser("list-ips", help="Show IP rules")

    check_parser = sub.add_parser("check", help="Evaluate an IP and path against enabled lists")
    check_parser.add_argument("--ip", required=True)
    check_parser.add_argument("--path", required=True)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    if args.command == "init-db":
        init_db()
    elif args.command == "create-list":
        create_list(
            args.title,
            args.routes,
            args.list_type,
            args.deny_method,
            args.priority,
            args.disabled,
            args.description,
        )
    elif args.command == "add-ip":
        add_ip(args.value, args.address_type, args.title, args.list_ids)
    elif args.command == "remove-ip":
        remove_ip(args.list_id, args.rule_id)
    elif args.command == "delete-ip":
        delete_ip(args.rule_id)
    elif args.command == "delete-list":
        delete_list(args.list_id)
    elif args.command == "list-lists":
        list_lists()
    elif args.command == "list-ips":
        list_ips()
    elif args.command == "check":
        return check(args.ip, args.path)
    else:
        parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
