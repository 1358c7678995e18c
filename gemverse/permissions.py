from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional


class Role(str, Enum):
    PLAYER = "PLAYER"
    ADMIN = "ADMIN"
    OWNER = "OWNER"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank >= other.rank


_ROLE_RANK = {Role.PLAYER: 0, Role.ADMIN: 1, Role.OWNER: 2}


class Permission(str, Enum):
    # users
    VIEW_USERS = "VIEW_USERS"
    EDIT_USERS = "EDIT_USERS"
    BAN_USERS = "BAN_USERS"
    ASSIGN_ROLES = "ASSIGN_ROLES"
    # games
    VIEW_GAMES = "VIEW_GAMES"
    EDIT_GAMES = "EDIT_GAMES"
    TOGGLE_GAMES = "TOGGLE_GAMES"
    # economy
    VIEW_ECONOMY = "VIEW_ECONOMY"
    EDIT_ECONOMY = "EDIT_ECONOMY"
    GEM_RAIN = "GEM_RAIN"
    TRANSFER_GEMS = "TRANSFER_GEMS"
    # communication
    BROADCAST = "BROADCAST"
    POST_ANNOUNCEMENTS = "POST_ANNOUNCEMENTS"
    VIEW_REPORTS = "VIEW_REPORTS"
    HANDLE_REPORTS = "HANDLE_REPORTS"
    # system
    SYSTEM_SETTINGS = "SYSTEM_SETTINGS"
    MAINTENANCE_MODE = "MAINTENANCE_MODE"
    VIEW_LOGS = "VIEW_LOGS"
    OWNER_IMMUNITY = "OWNER_IMMUNITY"
    TRANSFER_OWNERSHIP = "TRANSFER_OWNERSHIP"


ROLE_PERMISSIONS: Dict[Role, FrozenSet[Permission]] = {
    Role.OWNER: frozenset(Permission),
    Role.ADMIN: frozenset(
        {
            Permission.VIEW_USERS,
            Permission.EDIT_USERS,
            Permission.BAN_USERS,
            Permission.VIEW_GAMES,
            Permission.VIEW_ECONOMY,
            Permission.POST_ANNOUNCEMENTS,
            Permission.VIEW_REPORTS,
            Permission.HANDLE_REPORTS,
            Permission.VIEW_LOGS,
        }
    ),
    Role.PLAYER: frozenset({Permission.VIEW_GAMES, Permission.TRANSFER_GEMS}),
}


@dataclass(frozen=True)
class TransitionResult:
    allowed: bool
    reason: Optional[str] = None


def has_permission(role: Role, permission: Permission) -> bool:
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def has_any_permission(role: Role, permissions: Iterable[Permission]) -> bool:
    return any(has_permission(role, p) for p in permissions)


def has_all_permissions(role: Role, permissions: Iterable[Permission]) -> bool:
    return all(has_permission(role, p) for p in permissions)


def is_protected_target(actor_role: Role, target_role: Role) -> bool:
    """True when the actor ranks too low to touch the target at all."""
    if target_role is Role.OWNER and actor_role is not Role.OWNER:
        return True
    if target_role is Role.ADMIN and actor_role is not Role.OWNER:
        return True
    return False


def validate_role_transition(
    actor_role: Role,
    target_role: Role,
    desired_role: Role,
    actor_is_target: bool = False,
) -> TransitionResult:
    """Decide whether `actor_role` may move an account from `target_role` to `desired_role`.

    The owner role is never handed out here: it only moves through an
    ownership transfer, which swaps two accounts in one unit of work.
    """
    if actor_role is Role.PLAYER:
        return TransitionResult(False, "Players cannot modify user roles")

    if target_role is Role.OWNER and actor_role is not Role.OWNER:
        return TransitionResult(False, "Cannot modify owner account")

    if actor_role is Role.ADMIN:
        if is_protected_target(actor_role, target_role):
            return TransitionResult(
                False, "Admins cannot modify owner or other admin accounts"
            )
        if desired_role is not Role.PLAYER:
            return TransitionResult(False, "Admins can only assign the player role")
        return TransitionResult(True)

    # actor is the owner
    if desired_role is Role.OWNER and target_role is not Role.OWNER:
        return TransitionResult(
            False, "Ownership can only be granted through an ownership transfer"
        )
    if actor_is_target and desired_role is not Role.OWNER:
        return TransitionResult(
            False, "The owner cannot step down without transferring ownership"
        )
    if target_role is Role.OWNER and desired_role is not Role.OWNER:
        return TransitionResult(False, "Cannot modify owner account")
    return TransitionResult(True)


def validate_ban(
    actor_role: Role, target_role: Role, actor_is_target: bool = False
) -> TransitionResult:
    if actor_role is Role.PLAYER:
        return TransitionResult(False, "Players cannot ban users")
    if actor_is_target:
        return TransitionResult(False, "Cannot ban yourself")
    if target_role is Role.OWNER:
        return TransitionResult(False, "Cannot ban owner")
    if is_protected_target(actor_role, target_role):
        return TransitionResult(False, "Only owner can ban admins")
    return TransitionResult(True)
