"""
Payments Module

Mobile-money collection through PawaPay, idempotent settlement of provider
callbacks, and the revenue ledger.

Key Components:
- pawapay_service.py: httpx adapter for the deposits API (mock deposits without credentials)
- settlement_service.py: deposit initiation, webhook / polling settlement
- pos_service.py: counter sales paid in cash or by a mobile-money prompt
- ledger.py: CREDIT / DEBIT revenue entries written best-effort by the booking flow
- router.py: webhook, mock callback, POS and booking payment endpoints
- schemas.py: Pydantic models for callbacks and settlement outcomes

Submodules are imported directly; the booking service depends on the ledger
and the settlement service depends on the booking service.
"""
