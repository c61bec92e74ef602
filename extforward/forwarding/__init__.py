"""
Forwarded client address resolution.

Provides the trusted intermediary set, forwarding chain parsing and
resolution, per-request address substitution, and the scoped
configuration they are driven by.
"""
from .chain import parse_forward_chain, resolve_client_address
from .conditions import Condition, ConditionCache, get_condition_cache
from .config import (
    DEFAULT_HEADERS,
    ConfigurationError,
    ExtForwardConfig,
    ForwardingPolicy,
    ScopeOverride,
    ScopeRules,
    load_config,
)
from .substitution import (
    AddressParseError,
    ConnectionAddressState,
    SavedAddress,
    SocketAddress,
    attach_address_state,
    detach_address_state,
    format_address,
    get_address_state,
    parse_address,
)
from .trusted import TrustedSet

__all__ = [
    # Trusted set
    "TrustedSet",
    # Chain
    "parse_forward_chain",
    "resolve_client_address",
    # Substitution
    "AddressParseError",
    "ConnectionAddressState",
    "SavedAddress",
    "SocketAddress",
    "attach_address_state",
    "detach_address_state",
    "format_address",
    "get_address_state",
    "parse_address",
    # Configuration
    "DEFAULT_HEADERS",
    "ConfigurationError",
    "ExtForwardConfig",
    "ForwardingPolicy",
    "ScopeOverride",
    "ScopeRules",
    "load_config",
    # Conditions
    "Condition",
    "ConditionCache",
    "get_condition_cache",
]
