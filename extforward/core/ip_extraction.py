"""
Client IP address accessors.

Once ExtForwardMiddleware has run, ``request.client`` holds the client address
resolved from trusted forwarding headers, and the directly connected peer is
kept on the request's address state until the request finishes.

WARNING: Do NOT read X-Forwarded-For or X-Real-IP directly for security
sensitive decisions. Any client can send these headers; only the middleware
cross-checks them against the trusted intermediaries.
"""

from starlette.requests import HTTPConnection

from extforward.forwarding.substitution import get_address_state


def get_client_ip(request: HTTPConnection) -> str:
    """
    Return the effective client IP address of the request.

    Args:
        request: Starlette/FastAPI request or websocket

    Returns:
        Client IP address as string, or "unknown" if unavailable
    """
    if request.client:
        return request.client.host
    return "unknown"


def get_peer_ip(request: HTTPConnection) -> str:
    """
    Return the address of the directly connected peer (usually the proxy).

    Falls back to the effective client address when the request is not
    handled by ExtForwardMiddleware.
    """
    state = get_address_state(request.scope)
    if state is not None:
        return state.original_address_text or "unknown"
    return get_client_ip(request)
