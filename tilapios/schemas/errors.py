"""Error payloads returned by the exception handlers, for the OpenAPI docs."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Machine-readable code, human message and structured context."""

    code: str = Field(description="Stable error code, e.g. 'offline' or 'domain_rule_violation'")
    message: str
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Context such as the tournament id, the remote error kind "
        "or the list of violated validation rules",
    )


class ErrorResponse(BaseModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": {
                    "code": "offline",
                    "message": "Finishing a tournament requires a connection",
                    "details": {},
                }
            }
        }
    )

    error: ErrorDetail
