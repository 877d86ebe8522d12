from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from iplists.core.engine import AccessDecisionEngine, AuditSink
from iplists.core.settings import Settings, get_settings
from iplists.db.base import Base
from iplists.db.session import SessionLocal, engine
from iplists.middleware.ip_lists import IPListMiddleware
from iplists.services.audit_service import CompositeAuditSink, DatabaseAuditSink, LoggingAuditSink
from iplists.services.rule_store import CachedRuleStore, DatabaseRuleStore


def build_audit_sink(settings: Settings) -> AuditSink:
    if settings.audit_to_database:
        return CompositeAuditSink([LoggingAuditSink(), DatabaseAuditSink(SessionLocal)])
    return LoggingAuditSink()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        Base.metadata.create_all(bind=engine)
        yield

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    rule_store = CachedRuleStore(
        DatabaseRuleStore(SessionLocal),
        ttl_seconds=settings.rule_cache_ttl_seconds,
    )
    decision_engine = AccessDecisionEngine(audit_sink=build_audit_sink(settings))
    app.state.rule_store = rule_store
    app.state.decision_engine = decision_engine

    app.add_middleware(
        IPListMiddleware,
        rule_store=rule_store,
        engine=decision_engine,
        enabled=settings.gate_active,
        exempt_paths=settings.exempt_paths,
        ip_header=settings.ip_header,
        on_error=settings.on_consistency_error,
    )

    @app.get("/ping")
    def ping(request: Request):
        return {"message": "pong", "client_ip": getattr(request.state, "client_ip", None)}

    return app


app = create_app()
