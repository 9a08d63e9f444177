import django.core.validators
import django.db.models.deletion
from decimal import Decimal
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="NetworkEquipment",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "equipment_type",
                    models.CharField(
                        choices=[
                            ("router", "Router"),
                            ("switch", "Switch"),
                            ("access_point", "Access point"),
                            ("modem", "Modem"),
                            ("camera", "Camera"),
                            ("nvr", "NVR"),
                        ],
                        max_length=20,
                    ),
                ),
                ("model", models.CharField(max_length=120)),
                ("manufacturer", models.CharField(blank=True, max_length=120)),
                ("serial_number", models.CharField(max_length=120, unique=True)),
                ("mac_address", models.CharField(blank=True, max_length=17)),
                (
                    "ip_address",
                    models.GenericIPAddressField(
                        blank=True, null=True, protocol="IPv4"
                    ),
                ),
                ("location", models.CharField(blank=True, max_length=200)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("active", "Active"),
                            ("inactive", "Inactive"),
                            ("maintenance", "Maintenance"),
                            ("damaged", "Damaged"),
                        ],
                        default="active",
                        max_length=12,
                    ),
                ),
                ("purchase_date", models.DateField(blank=True, null=True)),
                ("warranty_expiry", models.DateField(blank=True, null=True)),
                ("last_maintenance", models.DateField(blank=True, null=True)),
                ("next_maintenance", models.DateField(blank=True, null=True)),
                (
                    "client",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="equipment",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Network Equipment",
                "verbose_name_plural": "Network Equipment",
                "ordering": ["equipment_type", "serial_number"],
            },
        ),
        migrations.CreateModel(
            name="Camera",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=100)),
                ("ip_address", models.GenericIPAddressField(protocol="IPv4")),
                (
                    "port",
                    models.PositiveIntegerField(
                        validators=[
                            django.core.validators.MinValueValidator(1),
                            django.core.validators.MaxValueValidator(65535),
                        ]
                    ),
                ),
                ("username", models.CharField(blank=True, max_length=120)),
                ("password", models.CharField(blank=True, max_length=255)),
                ("model", models.CharField(blank=True, max_length=120)),
                (
                    "manufacturer",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("hikvision", "Hikvision"),
                            ("dahua", "Dahua"),
                            ("axis", "Axis"),
                            ("uniview", "Uniview"),
                            ("tp_link", "TP-Link"),
                            ("other", "Other"),
                        ],
                        max_length=20,
                    ),
                ),
                ("location", models.CharField(blank=True, max_length=200)),
                (
                    "latitude",
                    models.DecimalField(
                        blank=True, decimal_places=6, max_digits=9, null=True
                    ),
                ),
                (
                    "longitude",
                    models.DecimalField(
                        blank=True, decimal_places=6, max_digits=9, null=True
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("online", "Online"),
                            ("offline", "Offline"),
                            ("error", "Error"),
                            ("maintenance", "Maintenance"),
                        ],
                        default="offline",
                        max_length=12,
                    ),
                ),
                ("last_connection", models.DateTimeField(blank=True, null=True)),
                ("stream_url", models.CharField(blank=True, max_length=500)),
                ("recording_enabled", models.BooleanField(default=False)),
                ("motion_detection", models.BooleanField(default=False)),
                ("night_vision", models.BooleanField(default=False)),
                (
                    "resolution",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("720p", "720p"),
                            ("1080p", "1080p"),
                            ("4K", "4K"),
                            ("8MP", "8MP"),
                            ("other", "Other"),
                        ],
                        max_length=8,
                    ),
                ),
                (
                    "storage_location",
                    models.CharField(
                        choices=[("local", "Local"), ("cloud", "Cloud"), ("nvr", "NVR")],
                        default="local",
                        max_length=8,
                    ),
                ),
                (
                    "monthly_fee",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("0.00"),
                        max_digits=12,
                        validators=[
                            django.core.validators.MinValueValidator(Decimal("0.00"))
                        ],
                    ),
                ),
                ("installation_date", models.DateField(blank=True, null=True)),
                ("warranty_expiry", models.DateField(blank=True, null=True)),
                ("notes", models.CharField(blank=True, max_length=500)),
                (
                    "owner",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="cameras",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["name"],
            },
        ),
    ]
