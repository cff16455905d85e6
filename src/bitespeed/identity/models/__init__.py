from .contracts import (
    ConsolidatedContactModel,
    ContactRecord,
    ErrorResponse,
    HealthResponse,
    IdentifyRequest,
    IdentifyResponse,
)

__all__ = [
    "ConsolidatedContactModel",
    "ContactRecord",
    "ErrorResponse",
    "HealthResponse",
    "IdentifyRequest",
    "IdentifyResponse",
]
