"""Role resolution and authorization guards for family members."""

from __future__ import annotations

from typing import Optional

from .exceptions import (
    AdminRequiredError,
    CreatorImmutableError,
    CreatorRequiredError,
    NotMemberError,
    ValidationError,
)
from .models import FamilyMember, Role
from .store import Store


class RoleAuthority:
    """Resolve a user's role within a family and guard operations by role.

    Lookups never mutate anything and are safe to call on every request.
    """

    __slots__ = ("_store",)

    def __init__(self, store: Store) -> None:
        self._store = store

    def role_of(self, user_id: str, family_id: str) -> Optional[Role]:
        member = self._store.get_member(family_id, user_id)
        return member.role if member else None

    def is_admin(self, user_id: str, family_id: str) -> bool:
        role = self.role_of(user_id, family_id)
        return role is not None and role.is_admin

    def require_member(self, user_id: str, family_id: str) -> Role:
        role = self.role_of(user_id, family_id)
        if role is None:
            raise NotMemberError(f"User '{user_id}' is not a member of family '{family_id}'.")
        return role

    def require_admin(self, user_id: str, family_id: str) -> Role:
        role = self.require_member(user_id, family_id)
        if not role.is_admin:
            raise AdminRequiredError(f"User '{user_id}' must be an admin of family '{family_id}'.")
        return role

    def require_creator(self, user_id: str, family_id: str) -> Role:
        role = self.require_member(user_id, family_id)
        if not role.is_creator:
            raise CreatorRequiredError(f"User '{user_id}' must be the creator of family '{family_id}'.")
        return role

    def check_role_change(self, operator_id: str, family_id: str, member_id: str, role: Role) -> FamilyMember:
        """Validate a role change and return the target membership.

        Only the creator may grant or revoke admin. The creator role itself is
        neither granted nor taken away here.
        """

        self.require_creator(operator_id, family_id)
        target = self._store.get_member(family_id, member_id)
        if target is None:
            raise NotMemberError(f"User '{member_id}' is not a member of family '{family_id}'.")
        if target.role is Role.CREATOR:
            raise CreatorImmutableError()
        if role is Role.CREATOR:
            raise ValidationError("The creator role cannot be granted; a family has exactly one creator.")
        return target


__all__ = ["RoleAuthority"]
