# Middleware package init
"""
Lets-Go-WorkSpace Backend — Middleware Package
===============================================

What:  Cross-cutting concerns applied to every request.
Why:   Middleware handles functionality needed across all routes without
       duplicating code in each route handler.

Middleware Chain (order matters!):
    Request → [Security Headers] → [CORS] → [Errors] → [Body Parser] → [Logging] → Route

    Why this order:
    1. Security Headers FIRST: every response leaves with them, errors included
    2. CORS: answers preflights and decorates responses for allowed origins
    3. Errors: converts any failure below it into the JSON error envelope,
       so error responses still pass back through CORS and security headers
    4. Body Parser: rejects malformed or oversized bodies before routing
    5. Logging: records method and path of requests that reach routing
"""
