"""
API Routes Package

This package contains route handlers organized by feature:
- verification.py: REST endpoints comparing fingerprints
- enrollment.py: REST endpoints managing enrolled fingerprints
"""

from api.routes.verification import router as verification_router
from api.routes.enrollment import router as enrollment_router

__all__ = [
    "verification_router",
    "enrollment_router",
]
