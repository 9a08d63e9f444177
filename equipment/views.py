from django.contrib.auth import get_user_model
from drf_spectacular.utils import extend_schema
from rest_framework import permissions, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from accounts.permissions import RolePermission
from accounts.policy import roles_for

from .models import Camera, NetworkEquipment
from .serializers import (
    CameraSerializer,
    CameraStatusSerializer,
    NetworkEquipmentSerializer,
)

User = get_user_model()


class BaseAuthPermission(permissions.IsAuthenticated):
    pass


@extend_schema(tags=["equipment"])
class NetworkEquipmentViewSet(viewsets.ModelViewSet):
    queryset = NetworkEquipment.objects.select_related("client")
    serializer_class = NetworkEquipmentSerializer
    permission_classes = [BaseAuthPermission, RolePermission]
    allowed_roles = roles_for("equipment.manage")


@extend_schema(tags=["cameras"])
class CameraViewSet(viewsets.ModelViewSet):
    """
    Camera inventory. Clients may list and read their own cameras only.
    """

    queryset = Camera.objects.select_related("owner")
    serializer_class = CameraSerializer
    permission_classes = [BaseAuthPermission, RolePermission]
    allowed_roles = roles_for("equipment.manage")
    action_roles = {
        "list": roles_for("equipment.manage") | {User.Roles.CLIENT},
        "retrieve": roles_for("equipment.manage") | {User.Roles.CLIENT},
        "report_status": roles_for("equipment.report_status"),
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        if getattr(self.request.user, "role", None) == User.Roles.CLIENT:
            return queryset.filter(owner=self.request.user)
        return queryset

    @extend_schema(request=CameraStatusSerializer, responses=CameraSerializer)
    @action(detail=True, methods=["post"], url_path="report-status")
    def report_status(self, request, pk=None):
        camera = self.get_object()
        serializer = CameraStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        camera.report_status(
            serializer.validated_data["status"],
            request.user,
            checked_at=serializer.validated_data.get("checked_at"),
        )
        return Response(CameraSerializer(camera).data)
