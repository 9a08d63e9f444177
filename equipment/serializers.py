from rest_framework import serializers

from .models import Camera, NetworkEquipment


class NetworkEquipmentSerializer(serializers.ModelSerializer):
    is_under_warranty = serializers.BooleanField(read_only=True)

    class Meta:
        model = NetworkEquipment
        fields = "__all__"
        read_only_fields = ["created_at", "updated_at"]


class CameraSerializer(serializers.ModelSerializer):
    password = serializers.CharField(
        write_only=True, required=False, allow_blank=True, style={"input_type": "password"}
    )
    is_online = serializers.SerializerMethodField()

    class Meta:
        model = Camera
        fields = "__all__"
        read_only_fields = ["status", "last_connection", "created_at", "updated_at"]

    def get_is_online(self, obj):
        return obj.is_online()


class CameraStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Camera.Status.choices)
    checked_at = serializers.DateTimeField(required=False)
