from rest_framework.routers import DefaultRouter

from transfers.views import TransferRequestViewSet

router = DefaultRouter()
router.register(r"transfers", TransferRequestViewSet, basename="transfer")

urlpatterns = router.urls
