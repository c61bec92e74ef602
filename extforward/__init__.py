"""
extforward - resolve the real client address behind trusted reverse proxies.
"""
from extforward.forwarding import (
    ConfigurationError,
    ConnectionAddressState,
    ExtForwardConfig,
    ForwardingPolicy,
    TrustedSet,
    load_config,
    parse_forward_chain,
    resolve_client_address,
)
from extforward.middleware import ExtForwardMiddleware

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "ConnectionAddressState",
    "ExtForwardConfig",
    "ExtForwardMiddleware",
    "ForwardingPolicy",
    "TrustedSet",
    "load_config",
    "parse_forward_chain",
    "resolve_client_address",
]
