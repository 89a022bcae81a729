from django.urls import path
from rest_framework.routers import DefaultRouter

from inventory.views import ProductViewSet, StockAlertViewSet, StockMoveView

router = DefaultRouter()
router.register(r"products", ProductViewSet, basename="product")
router.register(r"alerts", StockAlertViewSet, basename="stock-alert")

urlpatterns = router.urls + [
    path("stock/move/", StockMoveView.as_view(), name="stock-move"),
]
