"""
E-Learning Package - DSP (Digital Solutions Platform)

Dieses Paket enthält den Kurskatalog und die Anmeldung der Käufer.
Der Checkout in `core.payments` liest Preise und Verfügbarkeit
ausschließlich über `elearning.courses.catalog`.

Struktur:
- courses/: Kursmodell, Katalog-Schnittstelle und öffentliche Kurs-Endpunkte
- accounts/: Cookie-basierte JWT Anmeldung (Login, Refresh, Logout)
- tests/: Tests für Katalog und Token-Ablauf

Author: DSP Development Team
Version: 1.0.0
"""
