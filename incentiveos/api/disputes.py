"""FastAPI dispute endpoint.

POST /v1/tenants/{tenant_id}/disputes/investigate — investigate a dispute
against the stored result, optional benchmark expectations, and the
tenant's priors. Confirmed errors are recorded as resolution signals.

Deterministic only — no LLM calls.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from incentiveos.agents.reconciliation import BenchmarkRecord, ReconciliationAgent
from incentiveos.agents.registry import AgentContext, AgentRegistry, EventKind
from incentiveos.agents.resolution import Dispute, ResolutionAgent
from incentiveos.api.dependencies import (
    get_agent_memory,
    get_agent_registry,
    get_batch_repo,
    get_entity_repo,
    get_result_repo,
    get_rule_set_repo,
)
from incentiveos.api.reconciliation import load_batch, load_batch_plan
from incentiveos.config.settings import Settings, get_settings
from incentiveos.flywheel.agent_memory import AgentMemory
from incentiveos.models.common import AgentType
from incentiveos.repositories.data import EntityRepository
from incentiveos.repositories.plans import RuleSetRepository
from incentiveos.repositories.results import CalculationBatchRepository, CalculationResultRepository

router = APIRouter(prefix="/v1/tenants", tags=["disputes"])


class InvestigateRequest(BaseModel):
    batch_id: UUID
    entity_external_id: str = Field(..., min_length=1)
    component_id: str | None = None
    category: str = "general"
    description: str = ""
    amount_disputed: float | None = None
    expectations: list[BenchmarkRecord] = Field(default_factory=list)


@router.post("/{tenant_id}/disputes/investigate")
async def investigate_dispute(
    tenant_id: UUID,
    body: InvestigateRequest,
    batch_repo: CalculationBatchRepository = Depends(get_batch_repo),
    result_repo: CalculationResultRepository = Depends(get_result_repo),
    entity_repo: EntityRepository = Depends(get_entity_repo),
    rule_set_repo: RuleSetRepository = Depends(get_rule_set_repo),
    memory: AgentMemory = Depends(get_agent_memory),
    registry: AgentRegistry = Depends(get_agent_registry),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Investigate one disputed entity result."""
    batch = await load_batch(tenant_id, body.batch_id, batch_repo)
    external_ids = await entity_repo.external_ids(tenant_id)
    by_external = {ext: entity_id for entity_id, ext in external_ids.items()}
    entity_id = by_external.get(body.entity_external_id)
    if entity_id is None:
        raise HTTPException(status_code=404, detail=f"Entity {body.entity_external_id} not found.")

    plan = await load_batch_plan(batch, rule_set_repo, settings)
    signatures = plan.signature_map()
    result = await result_repo.get_for_entity(body.batch_id, entity_id)

    findings = []
    if body.expectations and result is not None:
        report = ReconciliationAgent(settings.RECONCILIATION_TOLERANCE).reconcile(
            body.batch_id, [result], body.expectations, external_ids, signatures,
        )
        findings = report.findings_for(body.entity_external_id)

    dispute = Dispute(
        tenant_id=tenant_id,
        entity_id=entity_id,
        entity_external_id=body.entity_external_id,
        batch_id=body.batch_id,
        component_id=body.component_id,
        category=body.category,
        description=body.description,
        amount_disputed=body.amount_disputed,
    )
    priors = await memory.load_priors_for_agent(tenant_id, AgentType.RESOLUTION, plan.domain_id)
    investigation = ResolutionAgent().investigate(dispute, result, findings, priors, signatures)
    signals = ResolutionAgent.build_signal(investigation, tenant_id, body.batch_id, signatures)
    await memory.record_signals(signals)

    actions = registry.dispatch(AgentContext(
        event=EventKind.DISPUTE_SUBMITTED,
        tenant_id=tenant_id,
        payload={
            "dispute_id": str(dispute.dispute_id),
            "category": dispute.category,
            "amount_disputed": dispute.amount_disputed,
        },
    ))
    return {
        **investigation.to_dict(),
        "signals_recorded": len(signals),
        "actions": [a.to_dict() for a in actions],
    }
