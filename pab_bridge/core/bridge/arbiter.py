"""Stall detection and owner arbitration for force-receive requests."""

from __future__ import annotations

import logging
from typing import List, Optional

from ..recovery.errors import AuthorizationError, InvalidTransitionError, ValidationError
from .constants import DEFAULT_STALL_TIMEOUT_BLOCKS
from .encoding import normalize_address
from .ledger import BridgeLedger
from .models import BridgeRequest, BridgeStatus, Operation


class ForceReceiveArbiter:
    """
    Decides when a claimed bridge counts as stalled and applies the owner's
    ruling on force-receive requests.

    A claim is stalled once ``stall_timeout_blocks`` blocks have passed since
    ``claimed_block`` without a confirmation.
    """

    def __init__(
        self,
        ledger: BridgeLedger,
        owner_address: str,
        stall_timeout_blocks: int = DEFAULT_STALL_TIMEOUT_BLOCKS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if stall_timeout_blocks < 0:
            raise ValidationError("Stall timeout must not be negative", code="INVALID_TIMEOUT")
        self._ledger = ledger
        self._owner = normalize_address(owner_address)
        self.stall_timeout_blocks = stall_timeout_blocks
        self.logger = logger or logging.getLogger(__name__)

    def is_stalled(self, request: BridgeRequest, current_block: int) -> bool:
        if request.status != BridgeStatus.CLAIMED or request.claimed_block is None:
            return False
        return current_block - request.claimed_block >= self.stall_timeout_blocks

    def check_stalled(self, current_block: int) -> List[str]:
        """Users whose claimed bridge has stalled and has no force request yet."""
        return [
            request.user
            for request in self._ledger.snapshot()
            if self.is_stalled(request, current_block)
        ]

    def timeout_guard(self, current_block: int):
        """Slot guard rejecting force receives before the stall timeout."""

        def guard(request: BridgeRequest) -> None:
            if request.status == BridgeStatus.CLAIMED and not self.is_stalled(request, current_block):
                remaining = request.claimed_block + self.stall_timeout_blocks - current_block
                raise ValidationError(
                    f"Force receive for {request.user} is available in {remaining} blocks",
                    code="FORCE_RECEIVE_TOO_EARLY",
                    details={"claimedBlock": request.claimed_block, "currentBlock": current_block},
                )

        return guard

    async def request_force_receive(self, user: str, current_block: int) -> BridgeRequest:
        request = await self._ledger.force_receive(
            user, current_block, guard=self.timeout_guard(current_block)
        )
        self.logger.warning("Force receive requested by %s at block %d", request.user, current_block)
        return request

    def check_resolve(self, caller: str, user: str) -> str:
        """Validate an owner ruling without applying it; returns the normalised user."""
        if normalize_address(caller) != self._owner:
            raise AuthorizationError(
                "Only the owner may resolve force receive requests",
                caller=caller,
                required="owner",
            )
        user = normalize_address(user)
        status = self._ledger.status(user)
        if status != BridgeStatus.FORCE_REQUESTED:
            raise InvalidTransitionError(
                Operation.APPROVE_FORCED_RECEIVE.value,
                status.value,
                f"No pending force receive for {user} (status {status.value})",
            )
        return user

    async def resolve(
        self,
        caller: str,
        user: str,
        approve: bool,
        block: int = 0,
    ) -> Optional[BridgeRequest]:
        """Apply the owner's ruling. A rejection leaves the slot untouched."""
        user = self.check_resolve(caller, user)
        if not approve:
            self.logger.info("Force receive for %s rejected by owner; slot left as is", user)
            return self._ledger.get(user)
        request = await self._ledger.approve_forced_receive(caller, user, block)
        self.logger.info("Force receive for %s approved by owner", user)
        return request
