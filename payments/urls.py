from django.urls import path, include
from rest_framework.routers import SimpleRouter
from .views import PaymentViewSet

router = SimpleRouter()
router.register(r"", PaymentViewSet, basename="payments")

urlpatterns = [
    path("", include(router.urls)),
]
