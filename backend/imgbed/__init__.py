"""
ImgBed Backend — Application Package
======================================

Image hosting backend: uploads are decoded, optionally re-encoded, stored
under an unguessable identifier, and recorded in a metadata ledger. Images
are served publicly at /i/<id>.<ext> and to administrators through an
authenticated preview.

Layers:
    ┌─────────────────────────────────────┐
    │         Routes (API Layer)          │  HTTP concerns only
    ├─────────────────────────────────────┤
    │      Services (Business Logic)      │  transform, storage, ledger, auth
    ├─────────────────────────────────────┤
    │      Models & Schemas (Data)        │  SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │       Database (Persistence)        │  async SQLAlchemy sessions
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
