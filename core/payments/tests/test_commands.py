from datetime import timedelta
from io import StringIO
from unittest import mock

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings

from core.payments.checkout import start_checkout
from core.payments.models import Entitlement, Order

from .fakes import FakeGatewayClient, make_buyer, make_course

GATEWAY = "core.payments.management.commands.reconcile_orders.get_gateway_client"


@override_settings(PAYMENT_RECONCILE_GRACE_SECONDS=120)
class ReconcileOrdersCommandTests(TestCase):
    def setUp(self):
        self.gateway = FakeGatewayClient(remote_ids=["R1", "R2"])
        patcher = mock.patch(GATEWAY, return_value=self.gateway)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.buyer = make_buyer()
        self.course = make_course()

    def age_orders(self, minutes=5):
        for order in Order.objects.all():
            Order.objects.filter(pk=order.pk).update(created_at=order.created_at - timedelta(minutes=minutes))

    def run_command(self, *args):
        out = StringIO()
        call_command("reconcile_orders", *args, stdout=out)
        return out.getvalue()

    def test_nothing_to_do(self):
        output = self.run_command()
        self.assertIn("Keine offenen Bestellungen", output)

    def test_dry_run_changes_nothing(self):
        order = start_checkout(self.buyer, self.course.pk, self.gateway)
        self.gateway.pay("R1", "P1", order.amount_minor_units, order.currency)
        self.age_orders()

        output = self.run_command("--dry-run", "--verbose")

        self.assertIn("DRY RUN: Würde 1 Bestellungen abgleichen", output)
        self.assertIn(order.order_ref, output)
        self.assertEqual(Order.objects.get().status, Order.Status.AWAITING_CALLBACK)
        self.assertEqual(self.gateway.fetched, [])

    def test_paid_order_is_entitled(self):
        order = start_checkout(self.buyer, self.course.pk, self.gateway)
        self.gateway.pay("R1", "P1", order.amount_minor_units, order.currency)
        self.age_orders()

        output = self.run_command("--verbose")

        self.assertIn("1 Bestellungen abgeglichen, 1 geändert, 0 Fehler", output)
        self.assertIn("ENTITLED: 1", output)
        self.assertTrue(Entitlement.objects.filter(buyer=self.buyer, course=self.course).exists())

    def test_outage_leaves_orders_pending(self):
        start_checkout(self.buyer, self.course.pk, self.gateway)
        self.age_orders()
        self.gateway.unavailable = True

        output = self.run_command()

        self.assertIn("1 Bestellungen abgeglichen, 0 geändert, 0 Fehler", output)
        self.assertEqual(Order.objects.get().status, Order.Status.AWAITING_CALLBACK)

    def test_limit_must_be_positive(self):
        with self.assertRaises(CommandError):
            self.run_command("--limit", "0")

    def test_missing_gateway_is_an_error(self):
        with mock.patch(GATEWAY, return_value=None):
            with self.assertRaises(CommandError):
                self.run_command()
