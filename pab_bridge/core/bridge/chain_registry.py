"""Registry of destination chains the gateway accepts bridge requests for."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from ..recovery.errors import AuthorizationError, NotFoundError, UnsupportedChainError, ValidationError
from .constants import chain_name
from .encoding import normalize_address
from .models import SupportedChain


class ChainRegistry:
    """Mirror of the gateway's supported-chain set.

    Only the owner may add or remove chains. Adding an id that is already
    active is a no-op; removing an unknown id raises ``NotFoundError``.

    Usage:
        registry = ChainRegistry(owner_address="0xowner...")
        registry.add_chain("0xowner...", 8453)
        registry.is_supported(8453)  # True
    """

    def __init__(
        self,
        owner_address: str,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._owner = normalize_address(owner_address)
        self._logger = logger or logging.getLogger(__name__)
        # Insertion-ordered; removal deletes the entry so re-adding appends
        self._chains: Dict[int, SupportedChain] = {}

    def _require_owner(self, caller: str) -> None:
        if normalize_address(caller) != self._owner:
            raise AuthorizationError(
                "Only the owner may manage supported chains",
                caller=caller,
                required="owner",
            )

    @staticmethod
    def _check_id(chain_id: int) -> int:
        if isinstance(chain_id, bool) or not isinstance(chain_id, int) or chain_id < 0:
            raise ValidationError(f"Invalid chain id: {chain_id!r}", code="INVALID_CHAIN_ID")
        return chain_id

    def add_chain(self, caller: str, chain_id: int) -> bool:
        """Add a chain. Returns False when it was already supported."""
        self._require_owner(caller)
        chain_id = self._check_id(chain_id)
        if chain_id in self._chains:
            return False
        self._chains[chain_id] = SupportedChain(chain_id=chain_id, name=chain_name(chain_id))
        self._logger.info("Supported chain added: %d (%s)", chain_id, chain_name(chain_id))
        return True

    def remove_chain(self, caller: str, chain_id: int) -> None:
        self._require_owner(caller)
        chain_id = self._check_id(chain_id)
        if chain_id not in self._chains:
            raise NotFoundError(f"Chain {chain_id} is not registered", code="CHAIN_NOT_FOUND")
        del self._chains[chain_id]
        self._logger.info("Supported chain removed: %d", chain_id)

    def check_add(self, caller: str, chain_id: int) -> bool:
        """Validate an add without applying it. Returns False for a no-op."""
        self._require_owner(caller)
        return self._check_id(chain_id) not in self._chains

    def check_remove(self, caller: str, chain_id: int) -> None:
        self._require_owner(caller)
        if self._check_id(chain_id) not in self._chains:
            raise NotFoundError(f"Chain {chain_id} is not registered", code="CHAIN_NOT_FOUND")

    def is_supported(self, chain_id: int) -> bool:
        chain = self._chains.get(chain_id)
        return bool(chain and chain.active)

    def require_supported(self, chain_id: int) -> None:
        if not self.is_supported(chain_id):
            raise UnsupportedChainError(chain_id)

    def list(self) -> List[int]:
        return [chain.chain_id for chain in self._chains.values() if chain.active]

    def chains(self) -> List[SupportedChain]:
        return [chain for chain in self._chains.values() if chain.active]

    def chain_name(self, chain_id: int) -> str:
        return chain_name(chain_id)

    def load(self, chain_ids: Iterable[int]) -> None:
        """Replace the mirror with the contract's ``getSupportedChains`` result."""
        refreshed: Dict[int, SupportedChain] = {}
        for chain_id in chain_ids:
            chain_id = self._check_id(int(chain_id))
            if chain_id not in refreshed:
                refreshed[chain_id] = SupportedChain(chain_id=chain_id, name=chain_name(chain_id))
        self._chains = refreshed
        self._logger.info("Chain registry loaded: %d chains", len(self._chains))

    @property
    def chain_count(self) -> int:
        return len(self.list())
