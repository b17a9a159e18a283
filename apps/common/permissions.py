from rest_framework.permissions import BasePermission

from apps.accounts.models import UserRole, resolve_role


ROLE_CAPABILITIES = {
    UserRole.ADMIN: {
        "orders.view",
        "orders.view.all",
        "orders.arbitrate",
    },
    UserRole.CUSTOMER: {
        "orders.view",
        "orders.create",
        "orders.participate",
    },
    UserRole.TAILOR: {
        "orders.view",
        "orders.participate",
    },
}


class RolePermission(BasePermission):
    _resolve_role = staticmethod(resolve_role)

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        capability_map = getattr(view, "capability_map", {})
        action = getattr(view, "action", request.method.lower())
        required = capability_map.get(action) or capability_map.get(request.method.lower()) or set()
        if not required:
            return True

        user_caps = ROLE_CAPABILITIES.get(self._resolve_role(request.user), set())
        return any(cap in user_caps for cap in required)
