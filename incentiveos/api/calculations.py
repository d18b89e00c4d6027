"""FastAPI calculation endpoints.

POST /v1/tenants/{tenant_id}/calculations/run                   — run a calculation
GET  /v1/tenants/{tenant_id}/batches/{batch_id}                 — batch status
GET  /v1/tenants/{tenant_id}/batches/{batch_id}/results         — paged results
POST /v1/tenants/{tenant_id}/rule-sets/{rule_set_id}/compile    — compile check

Deterministic only — no LLM calls.
"""

from dataclasses import asdict
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from incentiveos.api.dependencies import (
    get_batch_repo,
    get_calculation_runner,
    get_result_repo,
    get_rule_set_repo,
)
from incentiveos.compiler.plan_compiler import PlanCompilationError, PlanCompiler
from incentiveos.config.settings import Settings, get_settings
from incentiveos.models.result import CalculationResult, RunOutcome
from incentiveos.orchestration.runner import CalculationRunner, RunTargetNotFoundError
from incentiveos.repositories.plans import RuleSetRepository
from incentiveos.repositories.results import CalculationBatchRepository, CalculationResultRepository

router = APIRouter(prefix="/v1/tenants", tags=["calculations"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class RunRequest(BaseModel):
    period_id: UUID
    rule_set_id: UUID


class BatchResponse(BaseModel):
    batch_id: str
    period_id: str
    rule_set_id: str
    status: str
    entity_count: int
    total_payout: float
    summary: dict[str, Any]


class ResultsResponse(BaseModel):
    batch_id: str
    results: list[CalculationResult]
    limit: int
    offset: int


class CompiledComponentResponse(BaseModel):
    component_id: str
    name: str
    order: int
    primitive: str
    signature: str | None


class CompiledVariantResponse(BaseModel):
    variant_id: str
    name: str
    components: list[CompiledComponentResponse]


class CompileResponse(BaseModel):
    rule_set_id: str
    domain_id: str
    max_lookback: int
    variants: list[CompiledVariantResponse]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/{tenant_id}/calculations/run", response_model=RunOutcome)
async def run_calculation(
    tenant_id: UUID,
    body: RunRequest,
    runner: CalculationRunner = Depends(get_calculation_runner),
) -> RunOutcome:
    """Run a calculation. A run rejected before its batch was created is a 422."""
    try:
        outcome = await runner.run(tenant_id, body.period_id, body.rule_set_id)
    except RunTargetNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if not outcome.success and outcome.batch_id is None:
        raise HTTPException(status_code=422, detail=outcome.error)
    return outcome


@router.get("/{tenant_id}/batches/{batch_id}", response_model=BatchResponse)
async def get_batch(
    tenant_id: UUID,
    batch_id: UUID,
    batch_repo: CalculationBatchRepository = Depends(get_batch_repo),
) -> BatchResponse:
    row = await batch_repo.get(batch_id)
    if row is None or row.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail=f"Batch {batch_id} not found.")
    return BatchResponse(
        batch_id=str(row.batch_id),
        period_id=str(row.period_id),
        rule_set_id=str(row.rule_set_id),
        status=row.status,
        entity_count=row.entity_count,
        total_payout=row.total_payout,
        summary=row.summary,
    )


@router.get("/{tenant_id}/batches/{batch_id}/results", response_model=ResultsResponse)
async def list_results(
    tenant_id: UUID,
    batch_id: UUID,
    limit: int = Query(default=100, ge=1, le=5000),
    offset: int = Query(default=0, ge=0),
    batch_repo: CalculationBatchRepository = Depends(get_batch_repo),
    result_repo: CalculationResultRepository = Depends(get_result_repo),
) -> ResultsResponse:
    """Results in evaluation order."""
    row = await batch_repo.get(batch_id)
    if row is None or row.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail=f"Batch {batch_id} not found.")
    results = await result_repo.list_for_batch(batch_id, limit=limit, offset=offset)
    return ResultsResponse(batch_id=str(batch_id), results=results, limit=limit, offset=offset)


@router.post("/{tenant_id}/rule-sets/{rule_set_id}/compile", response_model=CompileResponse)
async def compile_rule_set(
    tenant_id: UUID,
    rule_set_id: UUID,
    rule_set_repo: RuleSetRepository = Depends(get_rule_set_repo),
    settings: Settings = Depends(get_settings),
) -> CompileResponse:
    """Compile a stored rule set and report every configuration issue."""
    rule_set = await rule_set_repo.get_model(tenant_id, rule_set_id)
    if rule_set is None:
        raise HTTPException(status_code=404, detail=f"Rule set {rule_set_id} not found.")
    try:
        plan = PlanCompiler(max_lookback=settings.TEMPORAL_WINDOW_MAX).compile(rule_set)
    except PlanCompilationError as exc:
        raise HTTPException(
            status_code=422,
            detail={"message": str(exc), "issues": [asdict(i) for i in exc.issues]},
        ) from exc

    return CompileResponse(
        rule_set_id=str(plan.rule_set_id),
        domain_id=plan.domain_id,
        max_lookback=plan.max_lookback,
        variants=[
            CompiledVariantResponse(
                variant_id=v.variant_id,
                name=v.name,
                components=[
                    CompiledComponentResponse(
                        component_id=c.component_id,
                        name=c.name,
                        order=c.order,
                        primitive=str(c.operation.kind),
                        signature=None if c.signature is None else c.signature.key,
                    )
                    for c in v.components
                ],
            )
            for v in plan.variants
        ],
    )
