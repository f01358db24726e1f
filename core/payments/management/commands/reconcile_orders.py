"""
Reconcile Orders Command - DSP (Digital Solutions Platform)

Dieses Django Management Command gleicht offene Bestellungen mit dem
Payment Gateway ab. Bestellungen, deren Callback nie angekommen ist, werden
freigeschaltet, als fehlgeschlagen markiert oder nach Ablauf auf EXPIRED
gesetzt. Sollte regelmäßig (z.B. via Cronjob) ausgeführt werden.

Features:
- Dry-Run und verbose Modus für sichere Ausführung
- Begrenzung der Anzahl pro Lauf (--limit)
- Ein fehlerhafter Abgleich stoppt den Lauf nicht

Author: DSP Development Team
Version: 1.0.0
"""

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from core.payments.apps import get_gateway_client
from core.payments.entitlements import EntitlementWriter
from core.payments.reconciliation import Reconciler


class Command(BaseCommand):
    """
    Abgleich offener Bestellungen mit dem Payment Gateway

    Usage:
        python manage.py reconcile_orders
        python manage.py reconcile_orders --dry-run
        python manage.py reconcile_orders --verbose --limit 100
    """

    help = "Gleicht offene Bestellungen mit dem Payment Gateway ab"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Zeige nur welche Bestellungen abgeglichen würden",
        )
        parser.add_argument(
            "--verbose",
            action="store_true",
            help="Zeige detaillierte Informationen",
        )
        parser.add_argument(
            "--limit",
            type=int,
            default=None,
            help="Maximale Anzahl Bestellungen pro Lauf",
        )

    def handle(self, *args, **options):
        dry_run = options["dry_run"]
        verbose = options["verbose"]
        limit = options["limit"]

        if limit is not None and limit < 1:
            raise CommandError("--limit muss mindestens 1 sein")

        gateway = get_gateway_client()
        if gateway is None:
            raise CommandError("Payment Gateway ist nicht konfiguriert")

        writer = EntitlementWriter(gateway)
        reconciler = Reconciler(gateway, writer)
        now = timezone.now()

        candidates = list(reconciler.candidates(now, limit))
        if not candidates:
            self.stdout.write(self.style.SUCCESS("✅ Keine offenen Bestellungen gefunden"))
            return

        if dry_run:
            self.stdout.write(
                self.style.WARNING(f"🔍 DRY RUN: Würde {len(candidates)} Bestellungen abgleichen")
            )
            if verbose:
                for order in candidates:
                    self.stdout.write(f"   - {order.order_ref} ({order.status}, erstellt {order.created_at})")
            return

        report = reconciler.sweep(now=now, limit=limit)

        if verbose:
            self.stdout.write("\n📊 Ergebnis nach Status:")
            for status, count in sorted(report.by_status.items()):
                self.stdout.write(f"   {status}: {count}")
            for order_ref, error in report.errors:
                self.stdout.write(self.style.ERROR(f"   ❌ {order_ref}: {error}"))

        message = (
            f"{report.examined} Bestellungen abgeglichen, "
            f"{report.changed} geändert, {len(report.errors)} Fehler"
        )
        if report.errors:
            self.stdout.write(self.style.WARNING(f"⚠️ {message}"))
        else:
            self.stdout.write(self.style.SUCCESS(f"✅ {message}"))
