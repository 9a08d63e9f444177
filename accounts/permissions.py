from rest_framework import permissions


class RolePermission(permissions.BasePermission):
    """RBAC permission based on a view's role attributes.

    ``action_roles`` maps a viewset action to the roles allowed to call it; an
    action missing from it falls back to ``allowed_roles``. If neither is set,
    access is granted (other permissions may still deny).
    """

    message = "You do not have permission to perform this action for your role."

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        action_roles = getattr(view, "action_roles", None) or {}
        allowed = action_roles.get(getattr(view, "action", None))
        if allowed is None:
            allowed = getattr(view, "allowed_roles", None)
        if allowed is None:
            return True
        return request.user.role in allowed
