"""
Forwarding chain parsing and client address resolution.

Header values are attacker-controlled text. The parser does not try to
understand any particular syntax (``X-Forwarded-For`` lists, ``for=``
pairs, brackets, quotes); it keeps every run of characters that can appear
in a dotted-decimal or hex/colon address and treats everything else as a
separator. Validation of the chosen address happens when it is converted
to a structured address.
"""
import logging
from typing import List, Optional, Sequence

from .trusted import TrustedSet

logger = logging.getLogger(__name__)

ADDRESS_CHARACTERS = frozenset("0123456789abcdefABCDEF.:")


def parse_forward_chain(header_value: Optional[str]) -> List[str]:
    """
    Extract address tokens from a raw forwarding header value.

    Args:
        header_value: Raw header text, e.g. ``"203.0.113.9, 10.0.0.232"``

    Returns:
        Tokens in the order they appear (earliest hop first). Empty when
        the value is empty or holds only separator characters.
    """
    chain: List[str] = []
    if not header_value:
        return chain

    start: Optional[int] = None
    for position, char in enumerate(header_value):
        if char in ADDRESS_CHARACTERS:
            if start is None:
                start = position
        elif start is not None:
            chain.append(header_value[start:position])
            start = None

    if start is not None:
        chain.append(header_value[start:])

    return chain


def resolve_client_address(
    chain: Sequence[str], trusted: TrustedSet
) -> Optional[str]:
    """
    Find the client address in a forwarding chain.

    Walks from the hop nearest to this server towards the client and returns
    the first address that is not a listed intermediary. Everything to its
    right was added by intermediaries we trust, so it is the address the
    nearest trusted intermediary actually saw as its peer.

    The ``all`` blanket entry only governs the directly connected peer;
    chain entries are compared against explicitly listed addresses.

    Args:
        chain: Parsed forwarding chain
        trusted: Trusted intermediaries for the current scope

    Returns:
        The resolved client address, or None if every hop is trusted
    """
    for address in reversed(chain):
        if not trusted.is_listed(address):
            return address

    logger.debug("All %d forwarded addresses are trusted intermediaries", len(chain))
    return None
