from __future__ import annotations

import ipaddress
import logging
from typing import Iterable, Literal, Optional, Set

import anyio
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from iplists.core.engine import AccessDecisionEngine, Decision, DenialDescriptor
from iplists.core.exceptions import IPListConsistencyError
from iplists.core.ip_access import normalize_route
from iplists.services.rule_store import RuleStore

logger = logging.getLogger("iplists.access")

LOOPBACK_ALIASES = frozenset({"localhost", "testclient"})


def render_denial(descriptor: DenialDescriptor) -> Response:
    return JSONResponse(status_code=descriptor.status_code, content={"detail": descriptor.detail})


class IPListMiddleware(BaseHTTPMiddleware):
    """Gate every request through the IP list engine.

    Rules are loaded from ``rule_store`` on each request; wrap the store in a
    :class:`~iplists.services.rule_store.CachedRuleStore` to reuse snapshots.
    """

    def __init__(
        self,
        app,
        *,
        rule_store: RuleStore,
        engine: Optional[AccessDecisionEngine] = None,
        enabled: bool = True,
        exempt_paths: Optional[Iterable[str]] = None,
        ip_header: Optional[str] = None,
        on_error: Literal["error", "deny"] = "error",
    ) -> None:
        super().__init__(app)
        self.rule_store = rule_store
        self.engine = engine or AccessDecisionEngine()
        self.enabled = enabled
        self.exempt_paths: Set[str] = {path.rstrip("/") or "/" for path in (exempt_paths or [])}
        self.ip_header = ip_header
        self.on_error = on_error

    @staticmethod
    def _clean_address(raw: Optional[str]) -> Optional[str]:
        candidate = (raw or "").strip()
        if not candidate:
            return None
        if candidate.lower() in LOOPBACK_ALIASES:
            return "127.0.0.1"
        try:
            ipaddress.ip_address(candidate)
        except ValueError:
            logger.debug("Client address is not an IP literal", extra={"client_ip": candidate})
        # Non-IP values pass through and match no rule.
        return candidate

    def _extract_client_ip(self, request: Request) -> Optional[str]:
        if self.ip_header:
            forwarded = self._clean_address(request.headers.get(self.ip_header, "").split(",")[0])
            if forwarded:
                return forwarded
        return self._clean_address(request.client.host if request.client else None)

    def _evaluate(self, client_ip: Optional[str], route: str) -> Decision:
        lists = self.rule_store.load_enabled_lists()
        return self.engine.evaluate(client_ip, route, lists)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        route = normalize_route(request.url.path)
        if not self.enabled or (route.rstrip("/") or "/") in self.exempt_paths:
            return await call_next(request)

        client_ip = self._extract_client_ip(request)
        try:
            decision = await anyio.to_thread.run_sync(self._evaluate, client_ip, route)
            if decision.denied:
                return render_denial(self.engine.denial_for(decision))
        except IPListConsistencyError as exc:
            logger.error(
                "IP list configuration is inconsistent",
                extra={"path": route, "client_ip": client_ip, "list_id": exc.list_id},
            )
            if self.on_error == "deny":
                return JSONResponse(status_code=403, content={"detail": "access_denied"})
            return JSONResponse(status_code=500, content={"detail": "ip_lists_misconfigured"})

        request.state.client_ip = client_ip
        request.state.ip_decision = decision
        return await call_next(request)


__all__ = ["IPListMiddleware", "render_denial"]
