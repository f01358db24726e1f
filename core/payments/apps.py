"""
Payments Application Configuration

Registers the course checkout pipeline and builds the payment gateway client
once at startup. The client is handed to the entitlement writer and the
reconciler explicitly; use ``get_gateway_client()`` to obtain it.

Author: DSP Development Team
Version: 1.0.0
"""

import logging

from django.apps import AppConfig, apps

logger = logging.getLogger(__name__)


class PaymentsConfig(AppConfig):
    """
    Configuration class for the payments application.

    Attributes:
        gateway: Gateway client built from settings in ``ready()``
    """

    default_auto_field: str = "django.db.models.BigAutoField"
    name: str = "core.payments"
    label: str = "payments"
    verbose_name: str = "Course Payments"

    gateway = None

    def ready(self) -> None:
        from .gateway import RazorpayGatewayClient

        self.gateway = RazorpayGatewayClient.from_settings()
        if not self.gateway.key_id or not self.gateway.signing_secret:
            logger.warning("Payment gateway credentials are not configured; checkout will fail")


def get_gateway_client():
    return apps.get_app_config("payments").gateway
