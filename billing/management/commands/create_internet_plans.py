"""
Management command to create the default internet plan catalog.
"""

from decimal import Decimal

from django.core.management.base import BaseCommand

from billing.models import Plan


class Command(BaseCommand):
    help = "Creates the default internet plans (Home, Plus, Business, Enterprise)"

    def handle(self, *args, **options):
        plans_data = [
            {
                "name": "Home 50",
                "download_mbps": 50,
                "upload_mbps": 10,
                "data_limit_gb": 500,
                "monthly_price": Decimal("25.00"),
                "installation_price": Decimal("30.00"),
                "features": ["WiFi router included"],
                "customer_type": Plan.CustomerType.RESIDENTIAL,
            },
            {
                "name": "Home Plus 200",
                "download_mbps": 200,
                "upload_mbps": 50,
                "data_limit_gb": 0,
                "monthly_price": Decimal("45.00"),
                "installation_price": Decimal("30.00"),
                "features": ["WiFi router included", "Unlimited data"],
                "customer_type": Plan.CustomerType.RESIDENTIAL,
            },
            {
                "name": "Business 300",
                "download_mbps": 300,
                "upload_mbps": 150,
                "data_limit_gb": 0,
                "monthly_price": Decimal("90.00"),
                "installation_price": Decimal("60.00"),
                "equipment_price": Decimal("40.00"),
                "features": ["Static IP", "24/7 support"],
                "customer_type": Plan.CustomerType.BUSINESS,
                "contract_duration_months": 24,
            },
            {
                "name": "Enterprise 1000",
                "download_mbps": 1000,
                "upload_mbps": 1000,
                "data_limit_gb": 0,
                "monthly_price": Decimal("250.00"),
                "installation_price": Decimal("150.00"),
                "equipment_price": Decimal("120.00"),
                "features": ["Static IP block", "24/7 support", "SLA 99.9%"],
                "customer_type": Plan.CustomerType.ENTERPRISE,
                "contract_duration_months": 36,
            },
        ]

        for plan_data in plans_data:
            plan, created = Plan.objects.get_or_create(
                name=plan_data["name"], defaults=plan_data
            )
            if created:
                self.stdout.write(
                    self.style.SUCCESS(f"Successfully created plan: {plan.name}")
                )
            else:
                self.stdout.write(self.style.WARNING(f"Plan already exists: {plan.name}"))

        self.stdout.write(self.style.SUCCESS("Internet plan catalog is ready."))
