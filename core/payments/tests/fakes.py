"""
Test doubles and fixtures shared by the payments test modules.
"""

import itertools

from django.contrib.auth.models import User

from core.payments.exceptions import GatewayRequestRejected, GatewayUnavailable
from core.payments.gateway import RemotePaymentOutcome
from core.payments.verification import compute_signature
from elearning.courses.models import Course

TEST_SECRET = "test_key_secret"
TEST_WEBHOOK_SECRET = "test_webhook_secret"


class FakeGatewayClient:
    """
    In-memory gateway.

    ``remote_ids`` feeds the ids returned by ``create_remote_order``;
    ``outcomes`` maps remote order ids to the status returned by
    ``fetch_remote_status``. Set ``unavailable`` to simulate an outage, or
    ``rejection`` to a message to make order creation fail with a 4xx.
    """

    key_id = "rzp_test_key"
    signing_secret = TEST_SECRET
    webhook_secret = TEST_WEBHOOK_SECRET

    def __init__(self, remote_ids=None):
        counter = itertools.count(1)
        self._remote_ids = iter(remote_ids) if remote_ids else (f"order_R{n}" for n in counter)
        self.outcomes = {}
        self.unavailable = False
        self.rejection = None
        self.created = []
        self.fetched = []

    def create_remote_order(self, amount_minor_units, currency, order_ref):
        if self.unavailable:
            raise GatewayUnavailable("Gateway request timed out after 10s")
        if self.rejection:
            raise GatewayRequestRejected(self.rejection, gateway_status=400)
        remote_order_id = next(self._remote_ids)
        self.created.append((amount_minor_units, currency, order_ref, remote_order_id))
        return remote_order_id

    def fetch_remote_status(self, remote_order_id):
        if self.unavailable:
            raise GatewayUnavailable()
        self.fetched.append(remote_order_id)
        return self.outcomes.get(remote_order_id, RemotePaymentOutcome(status=RemotePaymentOutcome.PENDING))

    def pay(self, remote_order_id, payment_id, amount, currency="INR"):
        self.outcomes[remote_order_id] = RemotePaymentOutcome(
            status=RemotePaymentOutcome.PAID,
            payment_id=payment_id,
            amount_minor_units=amount,
            currency=currency,
        )

    def decline(self, remote_order_id, payment_id):
        self.outcomes[remote_order_id] = RemotePaymentOutcome(
            status=RemotePaymentOutcome.FAILED,
            payment_id=payment_id,
        )


def sign(remote_order_id, remote_payment_id, secret=TEST_SECRET):
    return compute_signature(remote_order_id, remote_payment_id, secret)


def make_buyer(username="buyer", password="Musterpassword"):
    return User.objects.create_user(username=username, password=password, email=f"{username}@test.com")


def make_course(title="Full Stack Bootcamp", price=499900, currency="INR", **extra):
    return Course.objects.create(title=title, price_minor_units=price, currency=currency, **extra)
