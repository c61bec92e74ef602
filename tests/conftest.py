"""
Pytest configuration and shared fixtures for testing.

Tests build lightweight FastAPI apps with only the middleware under test;
the peer address of TestClient requests is set through PeerAddressOverride
because the test client itself reports a non-IP host ("testclient").
"""
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from starlette.types import ASGIApp, Receive, Scope, Send

from extforward.core.ip_extraction import get_client_ip, get_peer_ip
from extforward.forwarding.config import ExtForwardConfig
from extforward.forwarding.substitution import get_address_state
from extforward.middleware import ExtForwardMiddleware

PROXY_IP = "10.0.0.232"
CLIENT_IP = "203.0.113.9"


class PeerAddressOverride:
    """Outermost test wrapper standing in for the socket peer of the server."""

    def __init__(self, app: ASGIApp, peer: Optional[Tuple[str, int]]):
        self.app = app
        self.peer = peer

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] in ("http", "websocket"):
            scope["client"] = self.peer
        await self.app(scope, receive, send)


def create_test_app(config: Optional[ExtForwardConfig] = None) -> FastAPI:
    """Create a lightweight FastAPI app with ExtForwardMiddleware."""
    app = FastAPI()
    app.add_middleware(ExtForwardMiddleware, config=config)

    @app.get("/whoami")
    async def whoami(request: Request):
        state = get_address_state(request.scope)
        return {
            "client": get_client_ip(request),
            "peer": get_peer_ip(request),
            "scheme": request.url.scheme,
            "forwarded": bool(state and state.is_substituted),
        }

    @app.get("/boom")
    async def boom():
        raise RuntimeError("handler failed")

    return app


@pytest.fixture
def client_factory() -> Callable[..., TestClient]:
    """Build a TestClient whose requests arrive from the given peer."""

    def factory(
        config: Optional[ExtForwardConfig] = None,
        peer: Optional[Tuple[str, int]] = (PROXY_IP, 51000),
        app: Optional[ASGIApp] = None,
        **client_kwargs: Any,
    ) -> TestClient:
        target = app if app is not None else create_test_app(config)
        return TestClient(PeerAddressOverride(target, peer), **client_kwargs)

    return factory


@pytest.fixture
def make_scope() -> Callable[..., Dict[str, Any]]:
    """Build a minimal ASGI http scope."""

    def factory(
        client: Optional[Tuple[str, int]] = (PROXY_IP, 51000),
        headers: Optional[List[Tuple[str, str]]] = None,
        scheme: str = "http",
        path: str = "/",
        scope_type: str = "http",
    ) -> Dict[str, Any]:
        return {
            "type": scope_type,
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": scheme,
            "path": path,
            "raw_path": path.encode("latin-1"),
            "query_string": b"",
            "root_path": "",
            "headers": [
                (name.lower().encode("latin-1"), value.encode("latin-1"))
                for name, value in (headers or [])
            ],
            "client": client,
            "server": ("127.0.0.1", 8000),
        }

    return factory
