"""
Travel Booking Backend — Application Package
==============================================

Layers:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP, auth dependencies
    ├─────────────────────────────────────┤
    │     Services (Booking Lifecycle)    │  ← availability, pricing, states
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
