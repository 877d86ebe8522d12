from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from iplists.core.rules import AddressKind, DenyMethod, ListPolicy, parse_protected_routes
from iplists.db.base import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IPList(Base):
    __tablename__ = "ip_lists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    list_type: Mapped[str] = mapped_column(String(16), default=ListPolicy.ALLOW.value)
    deny_method: Mapped[int] = mapped_column(Integer, default=DenyMethod.NOT_FOUND.value)
    priority: Mapped[int] = mapped_column(Integer, default=100, index=True)
    protected_routes: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    members: Mapped[list["IPListMember"]] = relationship(
        back_populates="ip_list",
        cascade="all, delete-orphan",
        order_by="IPListMember.sort_order",
    )

    @property
    def routes(self) -> tuple[str, ...]:
        return parse_protected_routes(self.protected_routes)

    @property
    def rules(self) -> list["IPRule"]:
        return [member.rule for member in self.members]


class IPRule(Base):
    __tablename__ = "ip_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    address_type: Mapped[str] = mapped_column(String(8), default=AddressKind.IP.value)
    # IPv4-mapped IPv6 addresses can take up to 45 characters
    value: Mapped[str] = mapped_column(String(45), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(200))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    memberships: Mapped[list["IPListMember"]] = relationship(
        back_populates="rule",
        cascade="all",
        order_by="IPListMember.list_id",
    )


class IPListMember(Base):
    __tablename__ = "ip_list_members"

    list_id: Mapped[int] = mapped_column(ForeignKey("ip_lists.id", ondelete="CASCADE"), primary_key=True)
    rule_id: Mapped[int] = mapped_column(ForeignKey("ip_rules.id", ondelete="CASCADE"), primary_key=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    ip_list: Mapped[IPList] = relationship(back_populates="members")
    rule: Mapped[IPRule] = relationship(back_populates="memberships")


class AccessAuditLog(Base):
    __tablename__ = "access_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    client_ip: Mapped[Optional[str]] = mapped_column(String(45), index=True)
    route: Mapped[str] = mapped_column(Text, nullable=False)
    list_id: Mapped[Optional[int]] = mapped_column(Integer)
    list_title: Mapped[Optional[str]] = mapped_column(String(200))
    rule_id: Mapped[Optional[int]] = mapped_column(Integer)
    rule_value: Mapped[Optional[str]] = mapped_column(String(45))
    rule_kind: Mapped[Optional[str]] = mapped_column(String(8))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
