"""
Per-request substitution of the peer address and scheme.

The ASGI scope is the connection record: ``scope["client"]`` holds the
``(host, port)`` of the directly connected peer and ``scope["scheme"]`` the
request scheme. ConnectionAddressState overrides both for the duration of a
request and puts the original peer address back on restore, no matter how
many times a forwarded address was applied in between.
"""
import ipaddress
import logging
import socket
from dataclasses import dataclass
from typing import Any, Callable, Iterable, NamedTuple, Optional, Union

from starlette.types import Scope

from .conditions import ADDRESS_DEPENDENT_FIELDS

logger = logging.getLogger(__name__)

ADDRESS_STATE_SCOPE_KEY = "extforward.address_state"

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
InvalidationCallback = Callable[[Iterable[str]], None]

_CANONICAL_SCHEMES = {"http": "http", "https": "https"}
_WEBSOCKET_SCHEMES = {"http": "ws", "https": "wss"}


class AddressParseError(ValueError):
    """Raised when address text cannot be converted to a structured address."""


class SocketAddress(NamedTuple):
    """Structured peer address. ``ip`` is None for non-IP peers."""

    ip: Optional[IPAddress]
    port: int = 0

    @property
    def family(self) -> int:
        if self.ip is None:
            return socket.AF_UNSPEC
        return socket.AF_INET if self.ip.version == 4 else socket.AF_INET6


@dataclass(frozen=True)
class SavedAddress:
    """The peer address captured before the first substitution."""

    address: SocketAddress
    text: str
    client: Any


def parse_address(address_text: str) -> SocketAddress:
    """
    Convert numeric address text into a structured address.

    Only numeric IPv4 / IPv6 forms are accepted; no name resolution is ever
    attempted.

    Raises:
        AddressParseError: If the text is not a valid IP address
    """
    try:
        ip = ipaddress.ip_address(address_text)
    except ValueError as e:
        raise AddressParseError(f"could not parse ip address {address_text!r}: {e}") from e
    return SocketAddress(ip=ip, port=0)


def format_address(address: SocketAddress) -> str:
    """Canonical text of a structured address ("" for non-IP peers)."""
    return "" if address.ip is None else str(address.ip)


def _address_from_client(client: Any) -> SocketAddress:
    if not client:
        return SocketAddress(ip=None, port=0)
    host, port = client[0], client[1]
    try:
        return SocketAddress(ip=ipaddress.ip_address(host), port=port)
    except ValueError:
        # unix sockets and test clients report non-IP hosts
        return SocketAddress(ip=None, port=port)


class ConnectionAddressState:
    """
    Owns the forwarded-address override of one request.

    ``saved`` is populated exactly while a substitution is active. Applying
    a second forwarded address replaces the active one but keeps the first
    saved original, so ``restore`` always returns to the real peer.

    The scheme is updated forward-only: ``restore`` does not revert it.
    """

    def __init__(self, scope: Scope, on_change: Optional[InvalidationCallback] = None):
        """
        Initialize state from the scope's current peer.

        Args:
            scope: ASGI connection scope to mutate
            on_change: Called with the names of request attributes whose
                       cached condition results are stale after a change
        """
        self._scope = scope
        self._on_change = on_change
        self._saved: Optional[SavedAddress] = None

        client = scope.get("client")
        self.address = _address_from_client(client)
        self.address_text = client[0] if client else ""

    @property
    def saved(self) -> Optional[SavedAddress]:
        return self._saved

    @property
    def is_substituted(self) -> bool:
        return self._saved is not None

    @property
    def original_address_text(self) -> str:
        """Address text of the directly connected peer."""
        return self._saved.text if self._saved is not None else self.address_text

    @property
    def scheme(self) -> str:
        return self._scope.get("scheme", "http")

    def apply(self, address_text: str) -> bool:
        """
        Substitute a forwarded client address for the peer address.

        Args:
            address_text: Resolved client address from the forwarding chain

        Returns:
            True if the address was applied, False if it could not be parsed
            (the state is left untouched)
        """
        logger.debug("using address: %s", address_text)

        try:
            address = parse_address(address_text)
        except AddressParseError as e:
            logger.warning("Ignoring forwarded address: %s", e)
            return False

        if self._saved is None:
            self._saved = SavedAddress(
                address=self.address,
                text=self.address_text,
                client=self._scope.get("client"),
            )
        else:
            logger.debug(
                "Connection already patched, replacing %s and keeping original %s",
                self.address_text,
                self._saved.text,
            )

        self.address = address
        self.address_text = address_text
        self._scope["client"] = (address_text, address.port)

        logger.debug("patching client address for the access log: %s", address_text)
        self._invalidate(ADDRESS_DEPENDENT_FIELDS)
        return True

    def apply_scheme(self, scheme_text: str) -> bool:
        """
        Substitute a forwarded scheme (``X-Forwarded-Proto``).

        Only ``http`` and ``https`` are accepted, case-insensitively; any
        other value is ignored. On websocket connections they map to
        ``ws`` / ``wss``.

        Returns:
            True if the scheme changed
        """
        if not scheme_text or scheme_text.lower() == self.scheme.lower():
            return False

        canonical = _CANONICAL_SCHEMES.get(scheme_text.lower())
        if canonical is None:
            logger.debug("Ignoring unsupported forwarded scheme %r", scheme_text)
            return False

        if self._scope.get("type") == "websocket":
            canonical = _WEBSOCKET_SCHEMES[canonical]
            if canonical == self.scheme:
                return False

        self._scope["scheme"] = canonical
        self._invalidate(("scheme",))
        return True

    def restore(self) -> None:
        """Put the original peer address back. No-op without a substitution."""
        saved = self._saved
        if saved is None:
            return

        self._scope["client"] = saved.client
        self.address = saved.address
        self.address_text = saved.text
        self._saved = None

        logger.debug("Restored peer address %s", saved.text)
        self._invalidate(ADDRESS_DEPENDENT_FIELDS)

    def _invalidate(self, fields: Iterable[str]) -> None:
        if self._on_change is not None:
            self._on_change(fields)


def attach_address_state(
    scope: Scope, on_change: Optional[InvalidationCallback] = None
) -> ConnectionAddressState:
    """Create the request's address state and store it on the scope."""
    state = ConnectionAddressState(scope, on_change=on_change)
    scope[ADDRESS_STATE_SCOPE_KEY] = state
    return state


def get_address_state(scope: Scope) -> Optional[ConnectionAddressState]:
    """Return the address state of an in-flight request, if any."""
    return scope.get(ADDRESS_STATE_SCOPE_KEY)


def detach_address_state(scope: Scope) -> None:
    scope.pop(ADDRESS_STATE_SCOPE_KEY, None)
