from django.contrib.auth import get_user_model
from rest_framework import serializers

from .models import Ticket, TicketComment

User = get_user_model()


class TicketCommentSerializer(serializers.ModelSerializer):
    author_username = serializers.CharField(source="author.username", read_only=True)

    class Meta:
        model = TicketComment
        fields = ["id", "author", "author_username", "message", "is_internal", "created_at"]
        read_only_fields = ["author", "created_at"]


class TicketSerializer(serializers.ModelSerializer):
    comments = serializers.SerializerMethodField()

    class Meta:
        model = Ticket
        fields = [
            "id",
            "ticket_number",
            "client",
            "assigned_to",
            "category",
            "priority",
            "status",
            "title",
            "description",
            "resolution",
            "sla_target",
            "resolved_at",
            "closed_at",
            "comments",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "ticket_number",
            "client",
            "assigned_to",
            "status",
            "resolved_at",
            "closed_at",
            "created_at",
            "updated_at",
        ]

    def get_comments(self, obj):
        comments = obj.comments.all()
        request = self.context.get("request")
        if request is None or request.user.role == User.Roles.CLIENT:
            comments = [c for c in comments if not c.is_internal]
        return TicketCommentSerializer(comments, many=True).data


class TicketCreateSerializer(serializers.Serializer):
    client = serializers.PrimaryKeyRelatedField(
        queryset=User.objects.all(), required=False
    )
    title = serializers.CharField(max_length=200)
    description = serializers.CharField()
    category = serializers.ChoiceField(choices=Ticket.Category.choices)
    priority = serializers.ChoiceField(
        choices=Ticket.Priority.choices, default=Ticket.Priority.MEDIUM
    )
    sla_target = serializers.DateTimeField(required=False, allow_null=True)


class TicketStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Ticket.Status.choices)
    resolution = serializers.CharField(required=False, allow_blank=True, default="")


class TicketAssignSerializer(serializers.Serializer):
    assigned_to = serializers.PrimaryKeyRelatedField(queryset=User.objects.all())


class TicketCommentInputSerializer(serializers.Serializer):
    message = serializers.CharField()
    is_internal = serializers.BooleanField(default=False)
