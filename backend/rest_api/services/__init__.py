"""
Services module for business logic.

- payments/: PIX payment lifecycle, webhook reconciliation and fulfillment

Usage:
    from rest_api.services.payments import PaymentEngine
    engine = PaymentEngine(settings, SessionLocal)
    charge = await engine.create_pix(order)
"""
