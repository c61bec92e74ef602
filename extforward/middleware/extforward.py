"""
ASGI middleware that honors forwarding headers from trusted intermediaries.
"""
import logging
from typing import Optional, Union

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

from extforward.forwarding.chain import parse_forward_chain, resolve_client_address
from extforward.forwarding.conditions import get_condition_cache
from extforward.forwarding.config import ExtForwardConfig, ForwardingPolicy
from extforward.forwarding.substitution import (
    ConnectionAddressState,
    attach_address_state,
    detach_address_state,
)

logger = logging.getLogger(__name__)

# Companion header carrying the scheme the client used; not configurable
FORWARDED_PROTO_HEADER = "X-Forwarded-Proto"


class ExtForwardMiddleware:
    """
    Replace the peer address with the client address claimed by trusted proxies.

    For every http/websocket request:
    - Resolves the effective trusted set and header list for the request
    - Ignores forwarding headers entirely when the direct peer is not trusted
    - Uses the first configured forwarding header present on the request
    - Walks the forwarding chain from the nearest hop and substitutes the
      first address that is not a trusted intermediary into ``scope["client"]``
    - Applies ``X-Forwarded-Proto`` (http/https only) when an address was applied
    - Restores the original peer address when the request finishes, including
      when the application raises

    Middleware added after this one sees the real client; middleware added
    before it (outer layers) sees the proxy.

    Example:
        ```python
        from fastapi import FastAPI
        from extforward import ExtForwardConfig, ExtForwardMiddleware

        app = FastAPI()
        app.add_middleware(
            ExtForwardMiddleware,
            config=ExtForwardConfig(forwarder={"10.0.0.232": "trust"}),
        )
        ```
    """

    def __init__(
        self,
        app: ASGIApp,
        config: Optional[Union[ExtForwardConfig, ForwardingPolicy]] = None,
    ):
        """
        Initialize forwarding middleware.

        Args:
            app: ASGI application
            config: Validated configuration or an already compiled policy
                    (default: nothing trusted, so headers are never honored)
        """
        self.app = app
        if config is None:
            config = ExtForwardConfig()
        if isinstance(config, ExtForwardConfig):
            config = config.build_policy()
        self.policy = config

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        cache = get_condition_cache(scope)
        state = attach_address_state(scope, on_change=cache.invalidate)
        try:
            self.handle_forwarded(scope, state)
            await self.app(scope, receive, send)
        finally:
            state.restore()
            detach_address_state(scope)

    def handle_forwarded(self, scope: Scope, state: ConnectionAddressState) -> bool:
        """
        Resolve and apply the forwarded client address for one request.

        Args:
            scope: ASGI scope of the request
            state: The request's address state

        Returns:
            True if a forwarded address was applied
        """
        rules = self.policy.resolve(scope, get_condition_cache(scope))

        if not rules.trusted.is_trusted(state.address_text):
            logger.debug(
                "remote address %s is NOT a trusted proxy, skipping",
                state.address_text or "unknown",
            )
            return False

        headers = Headers(scope=scope)
        forwarded: Optional[str] = None
        for name in rules.headers:
            values = headers.getlist(name)
            if values:
                forwarded = ", ".join(values)
                break

        if forwarded is None:
            logger.debug("no forward header found, skipping")
            return False

        chain = parse_forward_chain(forwarded)
        client_address = resolve_client_address(chain, rules.trusted)
        if client_address is None:
            return False

        if not state.apply(client_address):
            return False

        proto = headers.get(FORWARDED_PROTO_HEADER)
        if proto is not None:
            state.apply_scheme(proto)

        logger.debug(
            "Forwarded client %s via %s",
            client_address,
            state.original_address_text,
            extra={
                "client_host": client_address,
                "peer_host": state.original_address_text,
                "forwarded_for": forwarded,
                "scheme": state.scheme,
            },
        )
        return True
