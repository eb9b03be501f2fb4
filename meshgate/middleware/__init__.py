# Middleware package init
"""
MeshGate — Gateway Middleware
==============================

Middleware Chain:
    Request → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    Request ID runs first so the logging middleware and every downstream
    transport call see the same correlation ID.
"""
