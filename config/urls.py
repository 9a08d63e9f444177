"""
URL configuration for the ISP administration API.
"""

from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import (
    SpectacularAPIView,
    SpectacularRedocView,
    SpectacularSwaggerView,
)
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenRefreshView

from accounts.jwt_views import RoleTokenObtainPairView
from accounts.views import UserViewSet
from billing.views import PlanViewSet, ReceiptViewSet, ServiceViewSet
from equipment.views import CameraViewSet, NetworkEquipmentViewSet
from support.views import TicketViewSet

router = DefaultRouter()
router.register(r"users", UserViewSet, basename="user")
router.register(r"plans", PlanViewSet, basename="plan")
router.register(r"services", ServiceViewSet, basename="service")
router.register(r"receipts", ReceiptViewSet, basename="receipt")
router.register(r"tickets", TicketViewSet, basename="ticket")
router.register(r"equipment", NetworkEquipmentViewSet, basename="equipment")
router.register(r"cameras", CameraViewSet, basename="camera")

urlpatterns = [
    # OpenAPI schema & docs
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path(
        "api/docs/",
        SpectacularSwaggerView.as_view(url_name="schema"),
        name="swagger-ui",
    ),
    path(
        "api/redoc/",
        SpectacularRedocView.as_view(url_name="schema"),
        name="redoc",
    ),
    path(
        "api/auth/token/",
        RoleTokenObtainPairView.as_view(),
        name="token_obtain_pair",
    ),
    path("api/auth/token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("api/", include(router.urls)),
    path("admin/", admin.site.urls),
]

if settings.DEBUG:
    urlpatterns += static(settings.STATIC_URL, document_root=settings.STATIC_ROOT)
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)

handler404 = "config.handlers.handler404"
handler500 = "config.handlers.handler500"
