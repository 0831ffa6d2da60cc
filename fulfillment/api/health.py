from fastapi import APIRouter
from pydantic import BaseModel, Field
from fulfillment.config import settings

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status", example="healthy")
    service: str = Field(..., description="Service name", example="fulfillment-service")
    version: str = Field(..., description="Service version", example="1.0.0")


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Liveness check for load balancers. Does not touch the database.",
)
async def health():
    """Health check endpoint"""
    return HealthResponse(
        status="healthy",
        service=settings.app_name,
        version="1.0.0"
    )
