"""FastAPI pattern density endpoints.

POST /v1/tenants/{tenant_id}/patterns/nuclear-clear — forget learned density
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from incentiveos.api.dependencies import get_calculation_runner
from incentiveos.orchestration.runner import CalculationRunner

router = APIRouter(prefix="/v1/tenants", tags=["patterns"])


class NuclearClearRequest(BaseModel):
    pattern_prefix: str | None = None


class NuclearClearResponse(BaseModel):
    tenant_id: str
    pattern_prefix: str | None
    deleted: int


@router.post("/{tenant_id}/patterns/nuclear-clear", response_model=NuclearClearResponse)
async def clear_patterns(
    tenant_id: UUID,
    body: NuclearClearRequest,
    runner: CalculationRunner = Depends(get_calculation_runner),
) -> NuclearClearResponse:
    """Delete the tenant's learned density; affected patterns run in full trace next time."""
    deleted = await runner.nuclear_clear(tenant_id, body.pattern_prefix)
    return NuclearClearResponse(
        tenant_id=str(tenant_id), pattern_prefix=body.pattern_prefix, deleted=deleted,
    )
