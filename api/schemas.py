"""
Pydantic Schemas for API Request/Response Models

This module defines the data models of the verification API. Fingerprints
travel as plain vectors tagged with their strategy; images never cross the
API.

These schemas provide:
- Type validation (malformed vectors are rejected with 422)
- Automatic documentation in OpenAPI/Swagger
- Clear interface contracts with the attendance portal
"""

import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from faceverify.fingerprint import Fingerprint
from faceverify.strategy import Strategy


# ============================================================
# Fingerprint Schemas
# ============================================================

class FingerprintPayload(BaseModel):
    """Fingerprint as sent over the API."""
    strategy: Strategy = Field(..., description="Strategy that produced the vector: 'heuristic' or 'model'")
    vector: List[float] = Field(..., min_length=1, description="Fingerprint vector")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Extractor details")

    @field_validator("vector")
    @classmethod
    def vector_must_be_finite(cls, value: List[float]) -> List[float]:
        if not all(math.isfinite(v) for v in value):
            raise ValueError("vector must contain only finite numbers")
        return value

    def to_fingerprint(self) -> Fingerprint:
        return Fingerprint(vector=self.vector, strategy=self.strategy, metadata=self.metadata)

    @classmethod
    def from_fingerprint(cls, fingerprint: Fingerprint) -> "FingerprintPayload":
        return cls(
            strategy=fingerprint.strategy,
            vector=fingerprint.vector.tolist(),
            metadata=dict(fingerprint.metadata),
        )


# ============================================================
# Verification Schemas
# ============================================================

class VerifyRequest(BaseModel):
    """Request to compare two fingerprints."""
    enrolled: FingerprintPayload = Field(..., description="Enrolled fingerprint")
    candidate: FingerprintPayload = Field(..., description="Fingerprint from the live capture")
    threshold: Optional[float] = Field(None, gt=0, description="Override of the configured threshold")


class IdentityVerifyRequest(BaseModel):
    """Request to compare a candidate against an enrolled identity."""
    candidate: FingerprintPayload = Field(..., description="Fingerprint from the live capture")
    threshold: Optional[float] = Field(None, gt=0, description="Override of the configured threshold")


class VerificationResponse(BaseModel):
    """Result of a verification."""
    matched: bool = Field(..., description="True if distance < threshold")
    distance: float = Field(..., description="Distance between the fingerprints (lower = closer)")
    threshold: float = Field(..., description="Threshold used for the decision")
    strategy: Strategy = Field(..., description="Strategy of both fingerprints")
    method: str = Field(..., description="Distance method")
    timestamp: float = Field(..., description="Unix timestamp of the comparison")
    identity: Optional[str] = Field(None, description="Identity verified against, if any")


# ============================================================
# Enrollment Schemas
# ============================================================

class EnrollRequest(BaseModel):
    """Request to store an enrolled fingerprint for an identity."""
    fingerprint: FingerprintPayload = Field(..., description="Fingerprint to enroll")


class EnrollmentInfo(BaseModel):
    """Summary of one enrolled identity."""
    identity: str = Field(..., description="Identity (e.g. student or employee id)")
    strategy: Strategy = Field(..., description="Strategy of the enrolled fingerprint")
    dimension: int = Field(..., description="Length of the fingerprint vector")


class EnrollmentListResponse(BaseModel):
    """Response containing all enrolled identities."""
    enrollments: List[EnrollmentInfo] = Field(default_factory=list)
    total: int = Field(0, description="Total number of enrolled identities")


class DeleteEnrollmentResponse(BaseModel):
    """Response from enrollment deletion."""
    success: bool = Field(..., description="Whether deletion was successful")
    identity: str = Field(..., description="Identity that was removed")
    message: str = Field(..., description="Status message")


# ============================================================
# Health Check Schemas
# ============================================================

class HealthResponse(BaseModel):
    """System health check response."""
    model_config = {"protected_namespaces": ()}  # Allow 'model_' prefix in field names

    status: str = Field(..., description="Overall status: 'healthy' or 'degraded'")
    default_strategy: Strategy = Field(..., description="Strategy used by new capture sessions")
    model_loaded: bool = Field(..., description="Whether the face models are loaded")
    enrolled_identities: int = Field(..., description="Number of enrolled identities")
