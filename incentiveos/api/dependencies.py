"""FastAPI dependency injection factories for repositories and services.

Each factory takes AsyncSession via Depends(get_async_session) and returns
a repository or service instance. API endpoints use these via Depends().
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from incentiveos.agents.registry import AgentRegistry, default_registry
from incentiveos.config.settings import Settings, get_settings
from incentiveos.db.session import get_async_session
from incentiveos.flywheel.agent_memory import AgentMemory
from incentiveos.flywheel.density import EmaDensityPolicy
from incentiveos.orchestration.runner import CalculationRunner
from incentiveos.repositories.data import EntityRepository
from incentiveos.repositories.domains import SqlViabilityStore
from incentiveos.repositories.flywheel import SqlPatternStore, SqlPriorStore, SqlSignalLog
from incentiveos.repositories.plans import RuleSetRepository
from incentiveos.repositories.results import CalculationBatchRepository, CalculationResultRepository

_registry = default_registry()


# ---------------------------------------------------------------------------
# Plans / data
# ---------------------------------------------------------------------------


async def get_rule_set_repo(
    session: AsyncSession = Depends(get_async_session),
) -> RuleSetRepository:
    return RuleSetRepository(session)


async def get_entity_repo(
    session: AsyncSession = Depends(get_async_session),
) -> EntityRepository:
    return EntityRepository(session)


# ---------------------------------------------------------------------------
# Calculation output
# ---------------------------------------------------------------------------


async def get_batch_repo(
    session: AsyncSession = Depends(get_async_session),
) -> CalculationBatchRepository:
    return CalculationBatchRepository(session)


async def get_result_repo(
    session: AsyncSession = Depends(get_async_session),
) -> CalculationResultRepository:
    return CalculationResultRepository(session)


# ---------------------------------------------------------------------------
# Flywheel
# ---------------------------------------------------------------------------


async def get_signal_log(
    session: AsyncSession = Depends(get_async_session),
) -> SqlSignalLog:
    return SqlSignalLog(session)


async def get_agent_memory(
    session: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
) -> AgentMemory:
    return AgentMemory(
        SqlPatternStore(session),
        SqlSignalLog(session),
        SqlPriorStore(session),
        policy=EmaDensityPolicy(settings.DENSITY_EMA_WEIGHT),
        signal_history_limit=settings.SIGNAL_HISTORY_LIMIT,
    )


def get_agent_registry() -> AgentRegistry:
    return _registry


async def get_calculation_runner(
    session: AsyncSession = Depends(get_async_session),
    settings: Settings = Depends(get_settings),
    registry: AgentRegistry = Depends(get_agent_registry),
) -> CalculationRunner:
    return CalculationRunner(session, settings, registry=registry)


# ---------------------------------------------------------------------------
# Domains
# ---------------------------------------------------------------------------


async def get_viability_store(
    session: AsyncSession = Depends(get_async_session),
) -> SqlViabilityStore:
    return SqlViabilityStore(session)
