"""Common Pydantic schemas used across the API.

This module provides shared schemas for:
- Error responses (consistent error format)
- Simple success and message bodies
- Health checks
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# =============================================================================
# Base Configuration
# =============================================================================


class BaseSchema(BaseModel):
    """Base schema with common configuration.

    Fields are snake_case in Python and camelCase on the wire.
    """

    model_config = ConfigDict(
        from_attributes=True,  # Allow ORM model conversion
        populate_by_name=True,  # Allow both alias and field name
        str_strip_whitespace=True,  # Strip whitespace from strings
        alias_generator=to_camel,
    )


# =============================================================================
# Error Schemas
# =============================================================================


class ErrorDetail(BaseModel):
    """Details of an error response.

    Attributes:
        code: Machine-readable error code (e.g., "SIMULATION_NOT_FOUND")
        message: Human-readable error description
        request_id: Correlation ID for tracing (optional)
        details: Additional error context (optional)
    """

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error description")
    request_id: str | None = Field(
        None, description="Request correlation ID for tracing"
    )
    details: dict[str, str | int | bool | None] | None = Field(
        None, description="Additional error context"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "SIMULATION_NOT_FOUND",
                "message": "Simulation not found",
                "request_id": "abc-123-def-456",
            }
        }
    )


class ErrorResponse(BaseModel):
    """Standard error response wrapper.

    All API errors return this format.
    """

    error: ErrorDetail


# =============================================================================
# Health Check Schemas
# =============================================================================


class HealthCheckResponse(BaseModel):
    """Health check endpoint response.

    Attributes:
        status: Overall health status
        checks: Individual service health checks
    """

    status: str = Field(..., pattern="^(ok|degraded|error)$")
    checks: dict[str, str] = Field(
        default_factory=dict, description="Individual service checks"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "ok",
                "checks": {
                    "database": "ok",
                    "cache": "ok",
                },
            }
        }
    )


# =============================================================================
# Message Response Schemas
# =============================================================================


class MessageResponse(BaseSchema):
    """Simple message response."""

    message: str = Field(..., description="Response message")


class SuccessResponse(BaseSchema):
    """Acknowledges an operation that returns no data."""

    success: bool = True


class SuccessMessageResponse(SuccessResponse):
    message: str
