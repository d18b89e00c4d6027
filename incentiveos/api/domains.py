"""FastAPI domain endpoints.

GET  /v1/domains            — registered domains
POST /v1/domains/viability  — run the Domain Viability Test

Deterministic only — no LLM calls.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, model_validator

from incentiveos.api.dependencies import get_viability_store
from incentiveos.config.settings import Settings, get_settings
from incentiveos.domain.registry import get_all_domains, get_domain
from incentiveos.domain.viability import (
    DomainDefinition,
    DomainViabilityService,
    evaluate_domain_viability,
)
from incentiveos.repositories.domains import SqlViabilityStore

router = APIRouter(prefix="/v1/domains", tags=["domains"])


class ViabilityRequest(BaseModel):
    """Either a registered ``domain_id`` or a full ``domain`` definition."""

    domain_id: str | None = None
    domain: DomainDefinition | None = None
    tenant_id: UUID | None = None

    @model_validator(mode="after")
    def _one_domain(self) -> "ViabilityRequest":
        if (self.domain_id is None) == (self.domain is None):
            msg = "Provide exactly one of domain_id or domain."
            raise ValueError(msg)
        return self


@router.get("")
async def list_domains() -> list[dict[str, Any]]:
    return [
        {
            "domain_id": d.domain_id,
            "display_name": d.display_name,
            "version": d.version,
            "terminology": d.terminology,
        }
        for d in get_all_domains()
    ]


@router.post("/viability")
async def domain_viability(
    body: ViabilityRequest,
    store: SqlViabilityStore = Depends(get_viability_store),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Score a domain; with ``tenant_id`` the verdict is stored and reused."""
    domain = body.domain
    if domain is None:
        domain = get_domain(body.domain_id)
        if domain is None:
            raise HTTPException(status_code=404, detail=f"Domain {body.domain_id} not registered.")

    if body.tenant_id is None:
        return evaluate_domain_viability(domain, max_lookback=settings.TEMPORAL_WINDOW_MAX).to_dict()

    service = DomainViabilityService(store, max_lookback=settings.TEMPORAL_WINDOW_MAX)
    record = await service.evaluate_for_tenant(domain, body.tenant_id)
    return record.model_dump(mode="json")
