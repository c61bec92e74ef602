"""
Trusted intermediary set.

Trust is purely address based: an intermediary is trusted when its address
text is configured in the ``forwarder`` mapping, or when the mapping holds
an ``all => trust`` blanket entry.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

ALL_KEY = "all"
TRUST_DIRECTIVE = "trust"


@dataclass(frozen=True)
class TrustedSet:
    """
    Immutable view of the ``forwarder`` entries for one configuration scope.

    Address keys are compared by exact text: no CIDR matching and no
    normalization, so ``10.0.0.1`` and ``010.0.0.1`` are different entries.
    The ``all`` key is the only one matched case-insensitively, and when
    present it decides every peer trust question on its own.
    """

    entries: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    @property
    def all_directive(self) -> Optional[str]:
        """Directive of the ``all`` entry, or None when there is none."""
        for key, value in self.entries.items():
            if key.lower() == ALL_KEY:
                return value
        return None

    @property
    def trust_all(self) -> bool:
        directive = self.all_directive
        return directive is not None and directive.lower() == TRUST_DIRECTIVE

    def is_trusted(self, address_text: Optional[str]) -> bool:
        """
        Decide whether a directly connected peer may send forwarding headers.

        Args:
            address_text: Textual peer address (may be None for non-IP peers)

        Returns:
            True if the peer is trusted
        """
        directive = self.all_directive
        if directive is not None:
            # "all" short-circuits both ways: "all except X" is not expressible
            return directive.lower() == TRUST_DIRECTIVE
        if not address_text:
            return False
        return address_text in self.entries

    def is_listed(self, address_text: str) -> bool:
        """Exact-text membership, ignoring the ``all`` blanket entry."""
        return address_text in self.entries

    def __len__(self) -> int:
        return len(self.entries)
