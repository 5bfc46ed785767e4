"""
Enrollment API Routes

This module manages the enrolled fingerprints held by the API process:
- PUT /enrollments/{identity}: Store the enrolled fingerprint of an identity
- GET /enrollments: List enrolled identities
- DELETE /enrollments/{identity}: Remove an identity

Fingerprints are kept in memory only; the attendance portal remains the
owner of the enrolled profiles.
"""

import logging

from fastapi import APIRouter, HTTPException

from api.schemas import (
    DeleteEnrollmentResponse,
    EnrollmentInfo,
    EnrollmentListResponse,
    EnrollRequest,
)
from faceverify.store import get_fingerprint_store

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["enrollment"])


@router.put("/enrollments/{identity}", response_model=EnrollmentInfo)
async def enroll(identity: str, request: EnrollRequest):
    """
    Store (or replace) the enrolled fingerprint of an identity.

    Args:
        identity: Identity to enroll.

    Returns:
        Summary of the stored fingerprint.
    """
    fingerprint = request.fingerprint.to_fingerprint()
    get_fingerprint_store().put(identity, fingerprint)

    return EnrollmentInfo(
        identity=identity,
        strategy=fingerprint.strategy,
        dimension=fingerprint.dimension,
    )


@router.get("/enrollments", response_model=EnrollmentListResponse)
async def list_enrollments():
    """List all enrolled identities."""
    store = get_fingerprint_store()

    enrollments = []
    for identity in store.identities():
        fingerprint = store.get(identity)
        if fingerprint is None:
            continue
        enrollments.append(EnrollmentInfo(
            identity=identity,
            strategy=fingerprint.strategy,
            dimension=fingerprint.dimension,
        ))

    return EnrollmentListResponse(enrollments=enrollments, total=len(enrollments))


@router.delete("/enrollments/{identity}", response_model=DeleteEnrollmentResponse)
async def delete_enrollment(identity: str):
    """
    Remove an enrolled identity.

    Raises:
        404: If the identity is not enrolled.
    """
    if not get_fingerprint_store().remove(identity):
        raise HTTPException(status_code=404, detail=f"Identity {identity} not enrolled")

    logger.info(f"Removed enrollment for {identity}")
    return DeleteEnrollmentResponse(
        success=True,
        identity=identity,
        message=f"Identity {identity} removed",
    )
