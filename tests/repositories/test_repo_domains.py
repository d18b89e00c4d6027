"""Tests for the SQL-backed domain viability store."""

import pytest
from uuid_extensions import uuid7

from incentiveos.domain.registry import ICM_DOMAIN
from incentiveos.domain.viability import DomainViabilityService, ViabilityScore
from incentiveos.repositories.domains import SqlViabilityStore


class TestSqlViabilityStore:
    @pytest.mark.anyio
    async def test_service_persists_verdict(self, db_session) -> None:
        store = SqlViabilityStore(db_session)
        tenant = uuid7()

        record = await DomainViabilityService(store).evaluate_for_tenant(ICM_DOMAIN, tenant)
        loaded = await store.get("icm", tenant)

        assert loaded is not None
        assert loaded.score == ViabilityScore.NATURAL_FIT
        assert loaded.gates == record.gates
        assert loaded.evaluated_at.tzinfo is not None
        assert await store.get("icm", uuid7()) is None

    @pytest.mark.anyio
    async def test_save_overwrites(self, db_session) -> None:
        store = SqlViabilityStore(db_session)
        tenant = uuid7()
        record = await DomainViabilityService(store).evaluate_for_tenant(ICM_DOMAIN, tenant)
        await store.save(record.model_copy(update={"score": ViabilityScore.PARTIAL_FIT}))
        loaded = await store.get("icm", tenant)
        assert loaded is not None and loaded.score == ViabilityScore.PARTIAL_FIT
