from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """
    Staff member or client of the provider.
    The role decides which operations the user may perform (see accounts.policy).
    """

    class Roles(models.TextChoices):
        CLIENT = "client", "Client"
        TECHNICIAN = "technician", "Technician"
        OPERATOR = "operator", "Operator"
        SUPERVISOR = "supervisor", "Supervisor"
        BILLING = "billing", "Billing"
        ADMIN = "admin", "Admin"

    role = models.CharField(
        max_length=20,
        choices=Roles.choices,
        default=Roles.CLIENT,
        help_text="Application role controlling access level",
    )
    phone = models.CharField(max_length=24, blank=True)
    address = models.CharField(max_length=500, blank=True)

    def __str__(self):
        return f"{self.username} ({self.role})"

    @property
    def is_client(self):
        return self.role == self.Roles.CLIENT

    class Meta:
        verbose_name = "User"
        verbose_name_plural = "Users"
        indexes = [models.Index(fields=["role"], name="accounts_user_role_idx")]
