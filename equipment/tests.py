from datetime import timedelta

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from core.exceptions import AuthorizationError, ValidationError

from .models import Camera, NetworkEquipment


class EquipmentTestCase(TestCase):
    def setUp(self):
        User = get_user_model()
        self.technician = User.objects.create_user(
            username="tech", password="pass1234", role=User.Roles.TECHNICIAN
        )
        self.operator = User.objects.create_user(
            username="operator", password="pass1234", role=User.Roles.OPERATOR
        )
        self.billing = User.objects.create_user(
            username="billing", password="pass1234", role=User.Roles.BILLING
        )
        self.owner = User.objects.create_user(
            username="owner", password="pass1234", role=User.Roles.CLIENT
        )
        self.neighbour = User.objects.create_user(
            username="neighbour", password="pass1234", role=User.Roles.CLIENT
        )
        self.camera = Camera.objects.create(
            name="Front door",
            owner=self.owner,
            ip_address="192.168.1.64",
            port=554,
            username="viewer",
            password="hunter2",
        )
        self.client = APIClient()


class CameraModelTests(EquipmentTestCase):
    def test_new_camera_is_offline(self):
        self.assertEqual(self.camera.status, Camera.Status.OFFLINE)
        self.assertFalse(self.camera.is_online())

    def test_report_online_sets_last_connection(self):
        checked_at = timezone.now() - timedelta(minutes=5)
        self.camera.report_status(Camera.Status.ONLINE, self.operator, checked_at)
        self.camera.refresh_from_db()
        self.assertTrue(self.camera.is_online())
        self.assertEqual(self.camera.last_connection, checked_at)

    def test_report_offline_keeps_last_connection(self):
        self.camera.report_status(Camera.Status.ONLINE, self.operator)
        seen = self.camera.last_connection
        self.camera.report_status(Camera.Status.ERROR, self.operator)
        self.assertEqual(self.camera.last_connection, seen)
        self.assertFalse(self.camera.is_online())

    def test_inactive_camera_is_not_online(self):
        self.camera.is_active = False
        self.camera.report_status(Camera.Status.ONLINE, self.operator)
        self.assertFalse(self.camera.is_online())

    def test_unknown_status(self):
        with self.assertRaises(ValidationError):
            self.camera.report_status("exploded", self.operator)

    def test_billing_cannot_report_status(self):
        with self.assertRaises(AuthorizationError):
            self.camera.report_status(Camera.Status.ONLINE, self.billing)

    def test_warranty(self):
        router = NetworkEquipment.objects.create(
            equipment_type=NetworkEquipment.EquipmentType.ROUTER,
            model="AX1800",
            serial_number="SN-100",
            warranty_expiry=timezone.localdate() + timedelta(days=1),
        )
        self.assertTrue(router.is_under_warranty)
        router.warranty_expiry = timezone.localdate() - timedelta(days=1)
        self.assertFalse(router.is_under_warranty)


class CameraAPITests(EquipmentTestCase):
    def test_owner_sees_only_own_cameras(self):
        Camera.objects.create(
            name="Garage", owner=self.neighbour, ip_address="192.168.1.65", port=554
        )
        self.client.force_authenticate(user=self.owner)
        response = self.client.get(reverse("camera-list"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["count"], 1)
        self.assertEqual(response.data["results"][0]["name"], "Front door")

    def test_password_is_never_returned(self):
        self.client.force_authenticate(user=self.technician)
        response = self.client.get(reverse("camera-detail", args=[self.camera.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertNotIn("password", response.data)
        self.assertIn("is_online", response.data)

    def test_client_cannot_create_camera(self):
        self.client.force_authenticate(user=self.owner)
        response = self.client.post(
            reverse("camera-list"),
            {"name": "Rogue", "owner": self.owner.pk, "ip_address": "10.1.1.1", "port": 80},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_port_range_validated(self):
        self.client.force_authenticate(user=self.technician)
        response = self.client.post(
            reverse("camera-list"),
            {"name": "Bad", "owner": self.owner.pk, "ip_address": "10.1.1.1", "port": 70000},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_report_status_endpoint(self):
        self.client.force_authenticate(user=self.operator)
        response = self.client.post(
            reverse("camera-report-status", args=[self.camera.pk]),
            {"status": "online"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["is_online"])

    def test_equipment_crud_for_technicians(self):
        self.client.force_authenticate(user=self.technician)
        response = self.client.post(
            reverse("equipment-list"),
            {
                "equipment_type": "switch",
                "model": "CRS326",
                "manufacturer": "MikroTik",
                "serial_number": "SN-200",
            },
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.client.force_authenticate(user=self.owner)
        response = self.client.get(reverse("equipment-list"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
