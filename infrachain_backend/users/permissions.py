from rest_framework.exceptions import NotAuthenticated, PermissionDenied
from rest_framework.permissions import BasePermission

from .models import Profile, Role


def role_of(user):
    if user is None or not user.is_authenticated:
        return None
    if user.is_superuser:
        return Role.ADMIN
    try:
        return user.profile.role
    except Profile.DoesNotExist:
        return None


def require_role(*roles):
    """Permission class admitting authenticated users holding one of ``roles``."""

    class HasRole(BasePermission):
        message = "Insufficient permissions"

        def has_permission(self, request, view):
            return role_of(request.user) in roles

    HasRole.__name__ = "HasRole_" + "_".join(roles)
    return HasRole


IsAdmin = require_role(Role.ADMIN)
IsAdminOrAuditor = require_role(Role.ADMIN, Role.AUDITOR)


def check_role(request, *roles):
    """Raise the DRF error a permission class would for a role mismatch."""
    if not request.user or not request.user.is_authenticated:
        raise NotAuthenticated()
    if role_of(request.user) not in roles:
        raise PermissionDenied("Insufficient permissions")


def can_manage(user, project):
    return project.manager_id == user.pk or role_of(user) == Role.ADMIN
