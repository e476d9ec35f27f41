# Routes package init
"""
Lets-Go-WorkSpace Backend — API Routes Package
===============================================

Route Inventory:
    - health.py:  GET /api/health   (liveness check)

Anything else falls through to the not-found handler registered in main.py.

Design Principle:
    Routes should be THIN — they handle HTTP concerns only and return one of
    the envelopes in app.schemas.responses.
"""
