"""
API Layer for the Face Verification Service

This package provides the FastAPI-based API layer that exposes:
- REST endpoints comparing fingerprints produced by capture sessions
- REST endpoints for managing enrolled fingerprints, and a health check

The attendance portal captures fingerprints client-side and sends only the
strategy-tagged vectors here.
"""
