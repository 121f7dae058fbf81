"""Health check DTOs."""

from ._strict_base import StrictModel


class HealthResponse(StrictModel):
    status: str
    service: str
    version: str
    environment: str
    database: str
    timestamp: str
