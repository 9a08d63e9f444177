import logging
from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

from accounts.policy import authorize
from core.exceptions import ValidationError
from core.models import TimeStampedModel

logger = logging.getLogger(__name__)


class NetworkEquipment(TimeStampedModel):
    class EquipmentType(models.TextChoices):
        ROUTER = "router", "Router"
        SWITCH = "switch", "Switch"
        ACCESS_POINT = "access_point", "Access point"
        MODEM = "modem", "Modem"
        CAMERA = "camera", "Camera"
        NVR = "nvr", "NVR"

    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        INACTIVE = "inactive", "Inactive"
        MAINTENANCE = "maintenance", "Maintenance"
        DAMAGED = "damaged", "Damaged"

    equipment_type = models.CharField(max_length=20, choices=EquipmentType.choices)
    model = models.CharField(max_length=120)
    manufacturer = models.CharField(max_length=120, blank=True)
    serial_number = models.CharField(max_length=120, unique=True)
    mac_address = models.CharField(max_length=17, blank=True)
    ip_address = models.GenericIPAddressField(protocol="IPv4", null=True, blank=True)
    location = models.CharField(max_length=200, blank=True)
    client = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="equipment",
    )
    status = models.CharField(
        max_length=12, choices=Status.choices, default=Status.ACTIVE
    )
    purchase_date = models.DateField(null=True, blank=True)
    warranty_expiry = models.DateField(null=True, blank=True)
    last_maintenance = models.DateField(null=True, blank=True)
    next_maintenance = models.DateField(null=True, blank=True)

    class Meta:
        ordering = ["equipment_type", "serial_number"]
        verbose_name = "Network Equipment"
        verbose_name_plural = "Network Equipment"

    def __str__(self):
        return f"{self.get_equipment_type_display()} {self.model} ({self.serial_number})"

    @property
    def is_under_warranty(self):
        return bool(self.warranty_expiry and self.warranty_expiry >= timezone.localdate())


class Camera(TimeStampedModel):
    class Manufacturer(models.TextChoices):
        HIKVISION = "hikvision", "Hikvision"
        DAHUA = "dahua", "Dahua"
        AXIS = "axis", "Axis"
        UNIVIEW = "uniview", "Uniview"
        TP_LINK = "tp_link", "TP-Link"
        OTHER = "other", "Other"

    class Status(models.TextChoices):
        ONLINE = "online", "Online"
        OFFLINE = "offline", "Offline"
        ERROR = "error", "Error"
        MAINTENANCE = "maintenance", "Maintenance"

    class Resolution(models.TextChoices):
        HD = "720p", "720p"
        FULL_HD = "1080p", "1080p"
        UHD = "4K", "4K"
        MP8 = "8MP", "8MP"
        OTHER = "other", "Other"

    class Storage(models.TextChoices):
        LOCAL = "local", "Local"
        CLOUD = "cloud", "Cloud"
        NVR = "nvr", "NVR"

    name = models.CharField(max_length=100)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="cameras"
    )
    ip_address = models.GenericIPAddressField(protocol="IPv4")
    port = models.PositiveIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(65535)]
    )
    username = models.CharField(max_length=120, blank=True)
    password = models.CharField(max_length=255, blank=True)
    model = models.CharField(max_length=120, blank=True)
    manufacturer = models.CharField(
        max_length=20, choices=Manufacturer.choices, blank=True
    )
    location = models.CharField(max_length=200, blank=True)
    latitude = models.DecimalField(
        max_digits=9, decimal_places=6, null=True, blank=True
    )
    longitude = models.DecimalField(
        max_digits=9, decimal_places=6, null=True, blank=True
    )
    is_active = models.BooleanField(default=True)
    status = models.CharField(
        max_length=12, choices=Status.choices, default=Status.OFFLINE
    )
    last_connection = models.DateTimeField(null=True, blank=True)
    stream_url = models.CharField(max_length=500, blank=True)
    recording_enabled = models.BooleanField(default=False)
    motion_detection = models.BooleanField(default=False)
    night_vision = models.BooleanField(default=False)
    resolution = models.CharField(max_length=8, choices=Resolution.choices, blank=True)
    storage_location = models.CharField(
        max_length=8, choices=Storage.choices, default=Storage.LOCAL
    )
    monthly_fee = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    installation_date = models.DateField(null=True, blank=True)
    warranty_expiry = models.DateField(null=True, blank=True)
    notes = models.CharField(max_length=500, blank=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.ip_address}:{self.port})"

    def is_online(self):
        return self.is_active and self.status == self.Status.ONLINE

    def report_status(self, status, actor, checked_at=None):
        """Record the result of an externally performed connectivity check."""
        authorize(actor, "equipment.report_status")
        if status not in self.Status.values:
            raise ValidationError(f"Unknown camera status '{status}'.")
        self.status = status
        if status == self.Status.ONLINE:
            self.last_connection = checked_at or timezone.now()
        self.save(update_fields=["status", "last_connection", "updated_at"])
        logger.info("Camera %s reported %s by %s", self.pk, status, actor)
