"""
ImgBed Backend — Middleware Package
=====================================

Middleware Chain:
    Request → [Rate Limit (uploads)] → [Request ID] → [Access Log] → [CORS] → Route

The request ID is set before the access log runs, so every access line
and error body carries it.
"""
