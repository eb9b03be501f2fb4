"""
MeshGate — Package Initializer
===============================

What: An API gateway fronting a user service and a notification service that
      talk over TCP request/response messaging and fire-and-forget events.
Who:  Imported by the gateway (uvicorn meshgate.gateway.app:app), by the
      service runners, by Alembic and by pytest.

Layout:

    ┌──────────────────────────────────────────────┐
    │  gateway/     HTTP surface, dispatcher, saga │  ← external callers
    ├──────────────────────────────────────────────┤
    │  messaging/   transport, router, retry, events│ ← process boundary
    ├──────────────────────────────────────────────┤
    │  handlers/    per-service pattern handlers    │
    ├──────────────────────────────────────────────┤
    │  services/    business logic, email, hashing  │
    ├──────────────────────────────────────────────┤
    │  models/ schemas/ database.py                 │  ← persistence + contracts
    └──────────────────────────────────────────────┘
"""

__version__ = "1.0.0"
