import logging

from django.contrib.auth import get_user_model
from drf_spectacular.utils import extend_schema
from rest_framework import permissions, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from accounts.serializers import (
    RoleUpdateSerializer,
    UserCreateSerializer,
    UserSerializer,
)

from .permissions import RolePermission
from .policy import roles_for

User = get_user_model()
logger = logging.getLogger(__name__)


@extend_schema(tags=["users"])
class UserViewSet(viewsets.ModelViewSet):
    """
    User management endpoints (staff and clients).
    Only admins may manage users; everyone can read their own profile.
    """

    queryset = User.objects.all().order_by("username")
    serializer_class = UserSerializer
    permission_classes = [permissions.IsAuthenticated, RolePermission]
    allowed_roles = roles_for("user.manage")

    def get_serializer_class(self):
        if self.action == "create":
            return UserCreateSerializer
        return UserSerializer

    @extend_schema(summary="Get current user profile", responses={200: UserSerializer})
    @action(
        detail=False, methods=["get"], permission_classes=[permissions.IsAuthenticated]
    )
    def me(self, request):
        """Get the current authenticated user's profile."""
        return Response(UserSerializer(request.user).data)

    @extend_schema(
        summary="Update user role",
        request=RoleUpdateSerializer,
        responses={200: UserSerializer},
    )
    @action(detail=True, methods=["put"], url_path="role")
    def update_role(self, request, pk=None):
        user = self.get_object()
        serializer = RoleUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user.role = serializer.validated_data["role"]
        user.save(update_fields=["role"])
        logger.info(
            "User %s role set to %s by %s", user.username, user.role, request.user
        )
        return Response(UserSerializer(user).data)
