from django.contrib.auth import get_user_model
from drf_spectacular.utils import extend_schema
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from accounts.permissions import RolePermission
from accounts.policy import EVERYONE, authorize, roles_for

from .models import Ticket
from .serializers import (
    TicketAssignSerializer,
    TicketCommentInputSerializer,
    TicketCommentSerializer,
    TicketCreateSerializer,
    TicketSerializer,
    TicketStatusSerializer,
)

User = get_user_model()


class BaseAuthPermission(permissions.IsAuthenticated):
    pass


@extend_schema(tags=["tickets"])
class TicketViewSet(viewsets.ModelViewSet):
    """
    Support tickets. Clients open and follow their own tickets; support
    staff triage, assign and resolve them.
    """

    queryset = Ticket.objects.select_related(
        "client", "assigned_to"
    ).prefetch_related("comments")
    serializer_class = TicketSerializer
    permission_classes = [BaseAuthPermission, RolePermission]
    http_method_names = ["get", "post", "patch", "head", "options"]
    allowed_roles = roles_for("ticket.manage")
    action_roles = {
        "list": EVERYONE,
        "retrieve": EVERYONE,
        "create": roles_for("ticket.create"),
        "comments": roles_for("ticket.comment"),
    }

    def get_queryset(self):
        queryset = super().get_queryset()
        if getattr(self, "swagger_fake_view", False):
            return queryset.none()
        return queryset.visible_to(self.request.user)

    def perform_update(self, serializer):
        authorize(self.request.user, "ticket.manage")
        serializer.save()

    @extend_schema(request=TicketCreateSerializer, responses=TicketSerializer)
    def create(self, request, *args, **kwargs):
        serializer = TicketCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        ticket = Ticket.objects.open_ticket(
            client=data.get("client", request.user),
            actor=request.user,
            title=data["title"],
            description=data["description"],
            category=data["category"],
            priority=data["priority"],
            sla_target=data.get("sla_target"),
        )
        return Response(
            self.get_serializer(ticket).data, status=status.HTTP_201_CREATED
        )

    @extend_schema(request=TicketStatusSerializer, responses=TicketSerializer)
    @action(detail=True, methods=["post"], url_path="status")
    def change_status(self, request, pk=None):
        ticket = self.get_object()
        serializer = TicketStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ticket.change_status(
            serializer.validated_data["status"],
            request.user,
            resolution=serializer.validated_data["resolution"],
        )
        return Response(self.get_serializer(ticket).data)

    @extend_schema(request=TicketAssignSerializer, responses=TicketSerializer)
    @action(detail=True, methods=["post"])
    def assign(self, request, pk=None):
        ticket = self.get_object()
        serializer = TicketAssignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ticket.assign(serializer.validated_data["assigned_to"], request.user)
        return Response(self.get_serializer(ticket).data)

    @extend_schema(
        request=TicketCommentInputSerializer, responses=TicketCommentSerializer
    )
    @action(detail=True, methods=["post"])
    def comments(self, request, pk=None):
        ticket = self.get_object()
        serializer = TicketCommentInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        comment = ticket.add_comment(
            request.user,
            serializer.validated_data["message"],
            internal=serializer.validated_data["is_internal"],
        )
        return Response(
            TicketCommentSerializer(comment).data, status=status.HTTP_201_CREATED
        )
