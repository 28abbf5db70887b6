"""
Envelope to HTTP response mapping.
"""

from fastapi import status
from fastapi.responses import JSONResponse

from ..core.envelope import ServiceResult


def envelope_response(result: ServiceResult) -> JSONResponse:
    """Rejected input maps to 400; every other envelope, degraded or not, is a 200."""
    status_code = status.HTTP_200_OK if result.success else status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))
