# Middleware package init
"""
Portable Backend — Middleware Package
=======================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (execution order):
    Request → [Rate Limit] → [Request ID] → [Access Log] → [GZip] → [CORS] → Route
    Response travels back through the same chain in reverse, which is when
    X-Request-ID is attached and the access log line is written.
"""
