"""
Verification API Routes

This module provides the endpoints that compare fingerprints:
- POST /verify: Compare two fingerprints sent in the request
- POST /verify/{identity}: Compare a candidate against an enrolled identity
"""

import logging

from fastapi import APIRouter, HTTPException

from api.schemas import IdentityVerifyRequest, VerificationResponse, VerifyRequest
from faceverify.errors import StrategyMismatchError
from faceverify.matching import VerificationResult, match_identity
from faceverify.store import get_fingerprint_store

# Setup logging
logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=["verification"])


def to_response(result: VerificationResult, identity: str = None) -> VerificationResponse:
    return VerificationResponse(
        matched=result.matched,
        distance=result.distance,
        threshold=result.threshold,
        strategy=result.strategy,
        method=result.details.get("method", "distance"),
        timestamp=result.timestamp,
        identity=identity,
    )


def run_match(enrolled, candidate, threshold):
    """Run match_identity and map its errors to HTTP errors."""
    try:
        return match_identity(enrolled, candidate, threshold=threshold)
    except StrategyMismatchError as e:
        logger.warning(f"Rejected verification: {e}")
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/verify", response_model=VerificationResponse)
async def verify(request: VerifyRequest):
    """
    Compare two fingerprints.

    Returns:
        Verification result.

    Raises:
        409: The fingerprints come from different strategies.
        422: The vectors are malformed or have different lengths.
    """
    result = run_match(
        request.enrolled.to_fingerprint(),
        request.candidate.to_fingerprint(),
        request.threshold,
    )
    return to_response(result)


@router.post("/verify/{identity}", response_model=VerificationResponse)
async def verify_identity(identity: str, request: IdentityVerifyRequest):
    """
    Compare a candidate fingerprint with the one enrolled for an identity.

    Args:
        identity: Enrolled identity.

    Raises:
        404: The identity is not enrolled.
        409: The candidate strategy differs from the enrolled one.
        422: The vector is malformed or has the wrong length.
    """
    enrolled = get_fingerprint_store().get(identity)
    if enrolled is None:
        raise HTTPException(status_code=404, detail=f"Identity {identity} not enrolled")

    result = run_match(enrolled, request.candidate.to_fingerprint(), request.threshold)

    logger.info(
        f"Verification for {identity}: matched={result.matched} "
        f"(distance={result.distance:.4f}, threshold={result.threshold:.4f})"
    )
    return to_response(result, identity=identity)
