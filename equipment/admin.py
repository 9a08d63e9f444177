from django.contrib import admin

from .models import Camera, NetworkEquipment


@admin.register(NetworkEquipment)
class NetworkEquipmentAdmin(admin.ModelAdmin):
    list_display = (
        "serial_number",
        "equipment_type",
        "model",
        "manufacturer",
        "client",
        "status",
    )
    list_filter = ("equipment_type", "status")
    search_fields = ("serial_number", "model", "mac_address", "ip_address")


@admin.register(Camera)
class CameraAdmin(admin.ModelAdmin):
    list_display = ("name", "owner", "ip_address", "port", "status", "is_active")
    list_filter = ("status", "is_active", "manufacturer")
    search_fields = ("name", "ip_address", "owner__username")
    exclude = ("password",)
