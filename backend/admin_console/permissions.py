# Overview: Console action permissions and the pure acting-user gate.
# Each permission is defined as: (code, name, description)

from __future__ import annotations

from .records import ActingUser


VIEW_ORGANIZATION = "VIEW_ORGANIZATION"
EDIT_ORGANIZATION = "EDIT_ORGANIZATION"
ACTIVATE_ORGANIZATION = "ACTIVATE_ORGANIZATION"
DEACTIVATE_ORGANIZATION = "DEACTIVATE_ORGANIZATION"
EXTEND_SUBSCRIPTION = "EXTEND_SUBSCRIPTION"
MANAGE_MEMBER_ACCESS = "MANAGE_MEMBER_ACCESS"
ADD_MEMBER = "ADD_MEMBER"
TRANSFER_OWNERSHIP = "TRANSFER_OWNERSHIP"


PERMISSION_DEFINITIONS = [
    (
        VIEW_ORGANIZATION,
        "View Organization",
        "View organization details, members and subscription history",
    ),
    (
        EDIT_ORGANIZATION,
        "Edit Organization",
        "Change organization details through an edit session",
    ),
    (
        ACTIVATE_ORGANIZATION,
        "Activate Organization",
        "Reactivate a deactivated organization",
    ),
    (
        DEACTIVATE_ORGANIZATION,
        "Deactivate Organization",
        "Deactivate an organization and log all of its users out",
    ),
    (
        EXTEND_SUBSCRIPTION,
        "Extend Subscription",
        "Extend an organization's subscription by 6 or 12 months",
    ),
    (
        MANAGE_MEMBER_ACCESS,
        "Manage Member Access",
        "Grant or revoke a member's access",
    ),
    (
        ADD_MEMBER,
        "Add Member",
        "Add a non-owner member to an organization",
    ),
    (
        TRANSFER_OWNERSHIP,
        "Transfer Ownership",
        "Make another person the organization's Owner",
    ),
]


ALL_PERMISSIONS = frozenset(code for code, _, _ in PERMISSION_DEFINITIONS)

# Operator role -> granted permission codes. Roles not listed get nothing.
DEFAULT_ROLE_PERMISSIONS = {
    "superadmin": ALL_PERMISSIONS,
    "developer": ALL_PERMISSIONS - {
        ACTIVATE_ORGANIZATION,
        DEACTIVATE_ORGANIZATION,
        TRANSFER_OWNERSHIP,
    },
}


class PermissionDeniedError(Exception):
    """Raised when the acting user's role does not grant an action."""

    def __init__(self, action: str, role: str | None):
        self.action = action
        self.role = role
        definition = get_permission_definition(action)
        label = definition["name"] if definition else action
        super().__init__(f"Role '{role}' is not allowed to {label.lower()}")


def get_permission_definition(code):
    """Get full definition for a permission code."""
    for perm in PERMISSION_DEFINITIONS:
        if perm[0] == code:
            return {
                "code": perm[0],
                "name": perm[1],
                "description": perm[2],
            }
    return None


def has_permission(acting_user: ActingUser | None, action: str) -> bool:
    if acting_user is None:
        return False
    granted = DEFAULT_ROLE_PERMISSIONS.get((acting_user.role or "").strip().lower(), frozenset())
    return action in granted


def require_permission(acting_user: ActingUser | None, action: str) -> None:
    """
    Raises:
        PermissionDeniedError: If the acting user may not perform the action
    """
    if not has_permission(acting_user, action):
        raise PermissionDeniedError(action, acting_user.role if acting_user else None)
