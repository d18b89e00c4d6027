"""Calculation runner — the control surface for one calculation run.

Stages, in order:
    1. load and check the rule set against the period
    2. compile the plan (all issues reported before any data is read)
    3. load calculation priors (density with pending signals folded in)
    4. preload the period window plus the lookback it needs
    5. create the batch and choose one execution mode per pattern
    6. evaluate every entity on the executor's thread pool
    7. write results in fixed-size batches, committing after each
    8. diff the density snapshot, merge it, and fold it into priors
    9. dispatch ``calculation.completed`` and close the batch

Configuration and preload failures return an unsuccessful ``RunOutcome``
without writing a batch. Cancellation between result batches leaves the
flushed rows in place and marks the batch CANCELLED.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from incentiveos.agents.registry import AgentContext, AgentRegistry, EventKind, default_registry
from incentiveos.compiler.operations import CompiledPlan
from incentiveos.compiler.plan_compiler import PlanCompilationError, PlanCompiler
from incentiveos.config.settings import Settings, get_settings
from incentiveos.engine.cancellation import CancellationToken, RunCancelledError
from incentiveos.engine.executor import EntityResult, ExecutionReport, IntentExecutor
from incentiveos.engine.modes import select_modes
from incentiveos.engine.preload import PerformanceDataSource, PreloadError, Preloader
from incentiveos.engine.trace import TraceBuffer
from incentiveos.flywheel.agent_memory import AgentMemory, AgentPriors
from incentiveos.flywheel.density import (
    NUCLEAR_CLEAR_ACTION,
    DensityPolicy,
    EmaDensityPolicy,
    MergeReport,
    merge_density_updates,
    nuclear_clear,
)
from incentiveos.flywheel.models import Signal
from incentiveos.flywheel.priors import PriorAggregator
from incentiveos.models.common import (
    AgentType,
    BatchStatus,
    ResultStatus,
    RuleSetStatus,
    SignalType,
    new_uuid7,
    utc_now,
)
from incentiveos.models.data import Period
from incentiveos.models.plan import RuleSet
from incentiveos.models.result import RunOutcome
from incentiveos.repositories.data import PeriodRepository, SqlPerformanceDataSource
from incentiveos.repositories.flywheel import SqlPatternStore, SqlPriorStore, SqlSignalLog
from incentiveos.repositories.plans import RuleSetRepository
from incentiveos.repositories.results import CalculationBatchRepository, CalculationResultRepository

logger = logging.getLogger(__name__)


class RunTargetNotFoundError(LookupError):
    """The rule set or period named by a run does not exist for the tenant."""


class RuleSetNotApplicableError(ValueError):
    """The rule set is not active or not effective for the period."""


def check_applicable(rule_set: RuleSet, period: Period) -> None:
    """Raise ``RuleSetNotApplicableError`` unless the rule set may run for the period."""
    if rule_set.status != RuleSetStatus.ACTIVE:
        msg = f"Rule set {rule_set.rule_set_id} is {rule_set.status}, not active."
        raise RuleSetNotApplicableError(msg)
    if not rule_set.is_effective_on(period.start_date):
        msg = (
            f"Rule set {rule_set.rule_set_id} is not effective on "
            f"{period.start_date} (period {period.canonical_key})."
        )
        raise RuleSetNotApplicableError(msg)


def _result_row(
    result: EntityResult,
    *,
    position: int,
    batch_id: UUID,
    tenant_id: UUID,
    period_id: UUID,
    rule_set_id: UUID,
) -> dict[str, Any]:
    return {
        "result_id": new_uuid7(),
        "batch_id": batch_id,
        "tenant_id": tenant_id,
        "position": position,
        "entity_id": result.entity_id,
        "period_id": period_id,
        "rule_set_id": rule_set_id,
        "variant_id": result.variant_id,
        "components": [
            {
                "component_id": c.component_id,
                "name": c.name,
                "order": c.order,
                "value": c.value,
                "enabled": c.enabled,
                "gap": c.gap,
            }
            for c in result.components
        ],
        "total_payout": result.total_payout,
        "status": ResultStatus.SUCCESS.value,
        "partial": result.partial,
        "trace": list(result.trace),
        "created_at": utc_now(),
    }


class CalculationRunner:
    """Run calculations and manage learned density for one session.

    Parameters
    ----------
    session:
        Session used for every read and write. The runner commits it after
        the batch row is created, after each result batch, and at the end.
    settings:
        Executor and flywheel tuning; defaults to ``get_settings()``.
    policy:
        Density policy; defaults to an EMA with ``DENSITY_EMA_WEIGHT``.
    registry:
        Agents notified when a run completes.
    data_source:
        Performance data source; defaults to the SQL-backed one.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        *,
        policy: DensityPolicy | None = None,
        registry: AgentRegistry | None = None,
        data_source: PerformanceDataSource | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._policy = policy or EmaDensityPolicy(self._settings.DENSITY_EMA_WEIGHT)
        self._registry = registry or default_registry()
        self._data_source = data_source or SqlPerformanceDataSource(session)

        self._rule_sets = RuleSetRepository(session)
        self._periods = PeriodRepository(session)
        self._batches = CalculationBatchRepository(session)
        self._results = CalculationResultRepository(session)
        self._patterns = SqlPatternStore(session)
        self._signals = SqlSignalLog(session)
        self._priors = SqlPriorStore(session)
        self._memory = AgentMemory(
            self._patterns,
            self._signals,
            self._priors,
            policy=self._policy,
            signal_history_limit=self._settings.SIGNAL_HISTORY_LIMIT,
        )

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    async def run(
        self,
        tenant_id: UUID,
        period_id: UUID,
        rule_set_id: UUID,
        *,
        cancellation: CancellationToken | None = None,
    ) -> RunOutcome:
        """Calculate every entity with data in the period.

        Raises:
            RunTargetNotFoundError: If the rule set or period does not exist.
        """
        rule_set = await self._rule_sets.get_model(tenant_id, rule_set_id)
        if rule_set is None:
            raise RunTargetNotFoundError(f"Rule set {rule_set_id} not found.")
        period = await self._periods.get_model(tenant_id, period_id)
        if period is None:
            raise RunTargetNotFoundError(f"Period {period_id} not found.")

        try:
            check_applicable(rule_set, period)
            plan = PlanCompiler(max_lookback=self._settings.TEMPORAL_WINDOW_MAX).compile(rule_set)
        except (RuleSetNotApplicableError, PlanCompilationError) as exc:
            logger.warning("Run rejected for rule set %s: %s", rule_set_id, exc)
            return RunOutcome(success=False, error=str(exc))

        priors = await self._memory.load_priors_for_agent(tenant_id, AgentType.CALCULATION, plan.domain_id)
        prior_periods = await self._periods.prior_periods(period, plan.max_lookback)
        try:
            window = await Preloader(self._data_source).preload(
                tenant_id=tenant_id,
                period=period,
                prior_periods=prior_periods,
                group_attributes=plan.group_attributes,
            )
        except PreloadError as exc:
            logger.error("Preload failed for tenant %s: %s", tenant_id, exc)
            return RunOutcome(success=False, error=str(exc))

        batch_id = new_uuid7()
        await self._batches.create(
            batch_id=batch_id,
            tenant_id=tenant_id,
            period_id=period_id,
            rule_set_id=rule_set_id,
        )
        await self._session.commit()

        modes = select_modes(plan, priors)
        written = 0
        try:
            executor = IntentExecutor(
                max_workers=self._settings.EXECUTOR_MAX_WORKERS,
                chunk_size=self._settings.EXECUTOR_CHUNK_SIZE,
            )
            report = await asyncio.to_thread(
                executor.execute, plan, window, modes, cancellation=cancellation,
            )

            async def sink(rows: list[dict[str, Any]]) -> None:
                nonlocal written
                await self._results.create_many(rows)
                await self._session.commit()
                written += len(rows)

            buffer: TraceBuffer[dict[str, Any]] = TraceBuffer(
                sink, self._settings.RESULT_WRITE_BATCH_SIZE, cancellation,
            )
            for position, result in enumerate(report.results):
                await buffer.append(_result_row(
                    result,
                    position=position,
                    batch_id=batch_id,
                    tenant_id=tenant_id,
                    period_id=period_id,
                    rule_set_id=rule_set_id,
                ))
            await buffer.flush()
        except RunCancelledError as exc:
            logger.warning("Batch %s cancelled after %d result(s): %s", batch_id, written, exc)
            await self._batches.finish(
                batch_id,
                status=BatchStatus.CANCELLED,
                entity_count=written,
                summary={"cancelled": str(exc)},
            )
            await self._session.commit()
            return RunOutcome(success=False, entity_count=written, batch_id=batch_id, error=str(exc))
        except Exception:
            await self._session.rollback()
            await self._batches.finish(batch_id, status=BatchStatus.FAILED, entity_count=written)
            await self._session.commit()
            raise

        merge = await self._learn(plan, priors, report, batch_id)
        actions = self._registry.dispatch(AgentContext(
            event=EventKind.CALCULATION_COMPLETED,
            tenant_id=tenant_id,
            payload={
                "batch_id": str(batch_id),
                "entity_count": len(report.results),
                "partial_count": report.partial_count,
                "total_payout": report.total_payout,
            },
        ))
        await self._batches.finish(
            batch_id,
            status=BatchStatus.COMPLETED,
            entity_count=len(report.results),
            total_payout=report.total_payout,
            summary={
                "modes": dict(Counter(str(m) for m in modes.values())),
                "partial_count": report.partial_count,
                "result_batches": buffer.batch_count,
                "density_updates": merge.written,
                "density_conflicts": merge.conflicts,
                "actions": [a.to_dict() for a in actions],
            },
        )
        await self._session.commit()

        logger.info(
            "Batch %s completed: %d entities, total payout %.2f",
            batch_id, len(report.results), report.total_payout,
        )
        return RunOutcome(
            success=True,
            total_payout=report.total_payout,
            entity_count=len(report.results),
            batch_id=batch_id,
        )

    async def _learn(
        self,
        plan: CompiledPlan,
        priors: AgentPriors,
        report: ExecutionReport,
        batch_id: UUID,
    ) -> MergeReport:
        """Merge this run's observations into tenant density and priors."""
        baselines = {
            signature.key: priors.effective_density(signature)
            for signature in plan.signatures()
            if signature.key not in priors.patterns
        }
        updates = priors.density_snapshot().diff(report.observations, self._policy, baselines)
        merge = await merge_density_updates(self._patterns, plan.tenant_id, updates)
        await PriorAggregator(self._priors).aggregate(updates, plan.domain_id)
        if updates:
            await self._memory.record_signals([Signal(
                tenant_id=plan.tenant_id,
                signal_type=SignalType.DENSITY,
                agent_type=AgentType.CALCULATION,
                batch_id=batch_id,
                payload={
                    "written": merge.written,
                    "conflicts": merge.conflicts,
                    "new_patterns": sum(1 for u in updates if u.is_new),
                },
            )])
        return merge

    # ------------------------------------------------------------------
    # Density maintenance
    # ------------------------------------------------------------------

    async def nuclear_clear(self, tenant_id: UUID, pattern_prefix: str | None = None) -> int:
        """Delete learned density and restart the affected patterns from zero.

        The clear is recorded as a density signal; later priors loads read it
        so cleared keys do not fall back to cross-tenant priors.
        """
        deleted = await nuclear_clear(self._patterns, tenant_id, pattern_prefix)
        await self._memory.record_signals([Signal(
            tenant_id=tenant_id,
            signal_type=SignalType.DENSITY,
            agent_type=AgentType.CALCULATION,
            payload={"action": NUCLEAR_CLEAR_ACTION, "prefix": pattern_prefix, "deleted": deleted},
        )])
        return deleted
