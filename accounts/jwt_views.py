"""
JWT views issuing tokens that carry the user's role.
"""

import logging

from django.contrib.auth import authenticate
from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer
from rest_framework_simplejwt.views import TokenObtainPairView

logger = logging.getLogger(__name__)


class RoleTokenObtainPairSerializer(TokenObtainPairSerializer):
    """
    Token serializer that adds the ``role`` claim and rejects inactive users.
    """

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["role"] = user.role
        return token

    def validate(self, attrs):
        user = authenticate(
            request=self.context.get("request"),
            username=attrs.get(self.username_field),
            password=attrs.get("password"),
        )

        if user is None:
            logger.warning(
                "Authentication failed for %s", attrs.get(self.username_field)
            )
            raise serializers.ValidationError(
                "Unable to log in with provided credentials.", code="authorization"
            )

        if not user.is_active:
            raise serializers.ValidationError(
                "User account is disabled.", code="user_inactive"
            )

        refresh = self.get_token(user)
        return {
            "refresh": str(refresh),
            "access": str(refresh.access_token),
            "role": user.role,
        }


class RoleTokenObtainPairView(TokenObtainPairView):
    serializer_class = RoleTokenObtainPairSerializer
