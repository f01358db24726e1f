import threading
from datetime import timedelta
from unittest import mock, skipUnless

from django.db import connection
from django.test import TestCase, TransactionTestCase
from django.utils import timezone

from core.payments.checkout import start_checkout
from core.payments.entitlements import EntitlementWriter
from core.payments.exceptions import GatewayUnavailable
from core.payments.models import CallbackRecord, Entitlement, Order
from core.payments.order_store import OrderStore
from core.payments.reconciliation import Reconciler

from .fakes import FakeGatewayClient, make_buyer, make_course, sign


class ReconcilerTestCase(TestCase):
    @classmethod
    def setUpTestData(cls):
        cls.buyer = make_buyer()
        cls.course = make_course(price=499900, currency="INR")

    def setUp(self):
        self.gateway = FakeGatewayClient(remote_ids=["R1", "R2", "R3"])
        self.store = OrderStore()
        self.writer = EntitlementWriter(self.gateway, self.store)
        self.reconciler = Reconciler(self.gateway, self.writer, self.store, grace_seconds=120)
        self.order = start_checkout(self.buyer, self.course.pk, self.gateway, self.store)
        self.later = self.order.created_at + timedelta(minutes=5)


class ReconcileTests(ReconcilerTestCase):
    def test_paid_at_gateway_grants_entitlement(self):
        self.gateway.pay("R1", "P1", 499900, "INR")

        order = self.reconciler.reconcile(self.order.order_ref, now=self.later)

        self.assertEqual(order.status, Order.Status.ENTITLED)
        self.assertEqual(order.remote_payment_id, "P1")
        self.assertEqual(Entitlement.objects.count(), 1)
        record = CallbackRecord.objects.get(source=CallbackRecord.Source.RECONCILIATION)
        self.assertEqual(record.remote_signature, sign("R1", "P1"))

    def test_gateway_amount_mismatch_fails_order(self):
        self.gateway.pay("R1", "P1", 100, "INR")

        order = self.reconciler.reconcile(self.order.order_ref, now=self.later)

        self.assertEqual(order.status, Order.Status.FAILED)
        self.assertFalse(Entitlement.objects.exists())

    def test_declined_at_gateway_fails_order(self):
        self.gateway.decline("R1", "P1")

        order = self.reconciler.reconcile(self.order.order_ref, now=self.later)

        self.assertEqual(order.status, Order.Status.FAILED)
        self.assertIn("P1", order.failure_reason)

    def test_pending_at_gateway_stays_pending(self):
        order = self.reconciler.reconcile(self.order.order_ref, now=self.later)
        self.assertEqual(order.status, Order.Status.AWAITING_CALLBACK)

    def test_young_order_is_not_queried(self):
        order = self.reconciler.reconcile(self.order.order_ref, now=self.order.created_at + timedelta(seconds=30))
        self.assertEqual(order.status, Order.Status.AWAITING_CALLBACK)
        self.assertEqual(self.gateway.fetched, [])

    def test_expired_order_becomes_expired(self):
        order = self.reconciler.reconcile(self.order.order_ref, now=self.order.expires_at)
        self.assertEqual(order.status, Order.Status.EXPIRED)

    def test_gateway_outage_leaves_order_untouched(self):
        self.gateway.unavailable = True
        order = self.reconciler.reconcile(self.order.order_ref, now=self.later)
        self.assertEqual(order.status, Order.Status.AWAITING_CALLBACK)

    def test_terminal_order_is_returned_unchanged(self):
        self.writer.handle_callback(remote_order_id="R1", remote_payment_id="P1", remote_signature=sign("R1", "P1"))

        order = self.reconciler.reconcile(self.order.order_ref, now=self.later)

        self.assertEqual(order.status, Order.Status.ENTITLED)
        self.assertEqual(self.gateway.fetched, [])

    def test_verified_order_is_resumed(self):
        self.store.transition(
            self.order.order_ref, Order.Status.AWAITING_CALLBACK, Order.Status.VERIFIED, remote_payment_id="P1"
        )

        order = self.reconciler.reconcile(self.order.order_ref, now=self.later)

        self.assertEqual(order.status, Order.Status.ENTITLED)
        self.assertEqual(Entitlement.objects.count(), 1)

    def test_created_order_without_remote_id_is_retried(self):
        other_course = make_course(title="Data Science")
        self.gateway.unavailable = True
        with self.assertRaises(GatewayUnavailable):
            start_checkout(self.buyer, other_course.pk, self.gateway, self.store)
        stuck = Order.objects.get(course=other_course)
        self.gateway.unavailable = False

        order = self.reconciler.reconcile(stuck.order_ref, now=stuck.created_at + timedelta(minutes=5))

        self.assertEqual(order.status, Order.Status.AWAITING_CALLBACK)
        self.assertEqual(order.remote_order_id, "R2")

    def test_rejected_retry_fails_order(self):
        other_course = make_course(title="Data Science")
        self.gateway.unavailable = True
        with self.assertRaises(GatewayUnavailable):
            start_checkout(self.buyer, other_course.pk, self.gateway, self.store)
        stuck = Order.objects.get(course=other_course)
        self.gateway.unavailable = False
        self.gateway.rejection = "currency not supported"

        order = self.reconciler.reconcile(stuck.order_ref, now=stuck.created_at + timedelta(minutes=5))

        self.assertEqual(order.status, Order.Status.FAILED)
        self.assertIn("currency not supported", order.failure_reason)

    def test_declined_attempts_keep_order_open_when_not_settling(self):
        self.gateway.decline("R1", "P1")

        order = self.reconciler.reconcile(self.order.order_ref, now=self.later, settle_failures=False)

        self.assertEqual(order.status, Order.Status.AWAITING_CALLBACK)
        self.assertEqual(self.gateway.fetched, ["R1"])


class CallbackReconcileRaceTests(ReconcilerTestCase):
    def test_callback_and_reconcile_grant_once(self):
        self.gateway.pay("R1", "P1", 499900, "INR")
        original_fetch = self.gateway.fetch_remote_status

        def callback_arrives_during_fetch(remote_order_id):
            # The browser callback wins while the reconciler waits for the gateway.
            self.writer.handle_callback(
                remote_order_id="R1",
                remote_payment_id="P1",
                remote_signature=sign("R1", "P1"),
                order_ref=self.order.order_ref,
            )
            return original_fetch(remote_order_id)

        with mock.patch.object(self.gateway, "fetch_remote_status", side_effect=callback_arrives_during_fetch):
            order = self.reconciler.reconcile(self.order.order_ref, now=self.later)

        self.assertEqual(order.status, Order.Status.ENTITLED)
        self.assertEqual(Entitlement.objects.count(), 1)
        self.assertEqual(
            CallbackRecord.objects.filter(remote_payment_id="P1").count(), 2
        )


class SweepTests(ReconcilerTestCase):
    def test_sweep_continues_after_failing_order(self):
        second_course = make_course(title="Data Science")
        second = start_checkout(self.buyer, second_course.pk, self.gateway, self.store)
        self.gateway.pay("R2", "P2", 499900, "INR")
        original_reconcile = self.reconciler.reconcile

        def broken_first(order_ref, now=None):
            if order_ref == self.order.order_ref:
                raise RuntimeError("database hiccup")
            return original_reconcile(order_ref, now=now)

        with mock.patch.object(self.reconciler, "reconcile", side_effect=broken_first):
            report = self.reconciler.sweep(now=self.later)

        self.assertEqual(report.examined, 2)
        self.assertEqual(report.changed, 1)
        self.assertEqual(report.errors, [(self.order.order_ref, "database hiccup")])
        self.assertEqual(self.store.get(second.order_ref).status, Order.Status.ENTITLED)

    def test_sweep_skips_orders_inside_grace_period(self):
        report = self.reconciler.sweep(now=self.order.created_at + timedelta(seconds=10))
        self.assertEqual(report.examined, 0)


@skipUnless(
    connection.vendor == "postgresql",
    "needs row level concurrency: run with DATABASE_URL=postgres://...",
)
class ThreadedRaceTests(TransactionTestCase):
    """
    Real concurrent callback and reconciliation against PostgreSQL.

    SQLite serializes writers on one file lock, so these only run when
    DATABASE_URL points at PostgreSQL (install the ``postgres`` extra).
    """

    def test_concurrent_callback_and_reconcile(self):
        buyer = make_buyer()
        course = make_course()
        gateway = FakeGatewayClient(remote_ids=["R1"])
        store = OrderStore()
        order = start_checkout(buyer, course.pk, gateway, store)
        gateway.pay("R1", "P1", order.amount_minor_units, order.currency)
        later = timezone.now() + timedelta(minutes=5)
        barrier = threading.Barrier(2)
        errors = []

        def run(target):
            try:
                barrier.wait()
                target()
            except Exception as e:
                errors.append(e)
            finally:
                connection.close()

        def callback():
            EntitlementWriter(gateway, OrderStore()).handle_callback(
                remote_order_id="R1", remote_payment_id="P1", remote_signature=sign("R1", "P1")
            )

        def reconcile():
            writer = EntitlementWriter(gateway, OrderStore())
            Reconciler(gateway, writer, grace_seconds=0).reconcile(order.order_ref, now=later)

        threads = [threading.Thread(target=run, args=(t,)) for t in (callback, reconcile)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(Entitlement.objects.filter(buyer=buyer, course=course).count(), 1)
        self.assertEqual(Order.objects.get(pk=order.order_ref).status, Order.Status.ENTITLED)
