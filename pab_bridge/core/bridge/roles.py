"""Explicit capability checks for owner / agent / user operations."""

from __future__ import annotations

from typing import TYPE_CHECKING, Set

from ..recovery.errors import AuthorizationError, ValidationError
from .encoding import normalize_address
from .models import Role

if TYPE_CHECKING:  # pragma: no cover
    from .agents import AgentDirectory


class RoleResolver:
    """Resolves which roles an address holds.

    The owner is fixed by configuration, agents are whatever the directory
    knows about, and every address is a user.
    """

    def __init__(self, owner_address: str, agents: "AgentDirectory") -> None:
        if not owner_address:
            raise ValidationError("Owner address must be configured", code="OWNER_NOT_CONFIGURED")
        self._owner = normalize_address(owner_address)
        self._agents = agents

    @property
    def owner(self) -> str:
        return self._owner

    def roles_of(self, address: str) -> Set[Role]:
        caller = normalize_address(address)
        roles = {Role.USER}
        if caller == self._owner:
            roles.add(Role.OWNER)
        if self._agents.is_registered(caller):
            roles.add(Role.AGENT)
        return roles

    def has_role(self, address: str, role: Role) -> bool:
        return role in self.roles_of(address)

    def require(self, address: str, role: Role) -> str:
        """Return the normalised caller or raise ``AuthorizationError``."""
        caller = normalize_address(address)
        if role not in self.roles_of(caller):
            raise AuthorizationError(
                f"{caller} lacks the {role.value} role",
                caller=caller,
                required=role.value,
            )
        return caller

    def require_owner(self, address: str) -> str:
        return self.require(address, Role.OWNER)
