"""FastAPI reconciliation endpoint.

POST /v1/tenants/{tenant_id}/batches/{batch_id}/reconcile — compare a batch
with benchmark expectations, record reconciliation signals, and notify
agents observing ``reconciliation.completed``.

Deterministic only — no LLM calls.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from incentiveos.agents.reconciliation import BenchmarkRecord, ReconciliationAgent
from incentiveos.agents.registry import AgentContext, AgentRegistry, EventKind
from incentiveos.api.dependencies import (
    get_agent_registry,
    get_batch_repo,
    get_entity_repo,
    get_result_repo,
    get_rule_set_repo,
    get_signal_log,
)
from incentiveos.compiler.operations import CompiledPlan
from incentiveos.compiler.plan_compiler import PlanCompilationError, PlanCompiler
from incentiveos.config.settings import Settings, get_settings
from incentiveos.db.tables import CalculationBatchRow
from incentiveos.repositories.data import EntityRepository
from incentiveos.repositories.flywheel import SqlSignalLog
from incentiveos.repositories.plans import RuleSetRepository
from incentiveos.repositories.results import CalculationBatchRepository, CalculationResultRepository

router = APIRouter(prefix="/v1/tenants", tags=["reconciliation"])


class ReconcileRequest(BaseModel):
    expectations: list[BenchmarkRecord] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def load_batch(
    tenant_id: UUID,
    batch_id: UUID,
    batch_repo: CalculationBatchRepository,
) -> CalculationBatchRow:
    row = await batch_repo.get(batch_id)
    if row is None or row.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail=f"Batch {batch_id} not found.")
    return row


async def load_batch_plan(
    batch: CalculationBatchRow,
    rule_set_repo: RuleSetRepository,
    settings: Settings,
) -> CompiledPlan:
    """Recompile the rule set a batch ran with, for its pattern signatures."""
    rule_set = await rule_set_repo.get_model(batch.tenant_id, batch.rule_set_id)
    if rule_set is None:
        raise HTTPException(status_code=404, detail=f"Rule set {batch.rule_set_id} not found.")
    try:
        return PlanCompiler(max_lookback=settings.TEMPORAL_WINDOW_MAX).compile(rule_set)
    except PlanCompilationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/{tenant_id}/batches/{batch_id}/reconcile")
async def reconcile_batch(
    tenant_id: UUID,
    batch_id: UUID,
    body: ReconcileRequest,
    batch_repo: CalculationBatchRepository = Depends(get_batch_repo),
    result_repo: CalculationResultRepository = Depends(get_result_repo),
    entity_repo: EntityRepository = Depends(get_entity_repo),
    rule_set_repo: RuleSetRepository = Depends(get_rule_set_repo),
    signal_log: SqlSignalLog = Depends(get_signal_log),
    registry: AgentRegistry = Depends(get_agent_registry),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Reconcile a batch against benchmark expectations."""
    batch = await load_batch(tenant_id, batch_id, batch_repo)
    plan = await load_batch_plan(batch, rule_set_repo, settings)
    results = await result_repo.list_for_batch(batch_id)
    external_ids = await entity_repo.external_ids(tenant_id)

    report = ReconciliationAgent(settings.RECONCILIATION_TOLERANCE).reconcile(
        batch_id, results, body.expectations, external_ids, plan.signature_map(),
    )
    signals = ReconciliationAgent.build_signals(report, tenant_id)
    await signal_log.append_many(signals)

    actions = registry.dispatch(AgentContext(
        event=EventKind.RECONCILIATION_COMPLETED,
        tenant_id=tenant_id,
        payload={
            "batch_id": str(batch_id),
            "false_green_detected": report.false_green_detected,
            "finding_count": len(report.findings),
            "discrepancy_count": report.discrepancy_count,
        },
    ))
    return {
        **report.to_dict(),
        "signals_recorded": len(signals),
        "actions": [a.to_dict() for a in actions],
    }
