"""Tests for built-in domains and terminology translation."""

from incentiveos.domain.registry import (
    ICM_DOMAIN,
    REBATE_DOMAIN,
    get_all_domains,
    get_domain,
    register_domain,
    to_domain,
    to_structural,
)
from incentiveos.domain.viability import DomainDefinition


class TestDomainRegistry:
    def test_builtin_domains(self) -> None:
        ids = {d.domain_id for d in get_all_domains()}
        assert {"icm", "rebate", "franchise"} <= ids
        assert get_domain("icm") is ICM_DOMAIN
        assert get_domain("unknown") is None

    def test_register_domain(self) -> None:
        domain = DomainDefinition(domain_id="test_channel_spiff", required_primitives=["constant"])
        register_domain(domain)
        assert get_domain("test_channel_spiff") is domain


class TestTerminology:
    """Structural terms and domain words translate both ways."""

    def test_round_trip(self) -> None:
        assert to_domain("entity", ICM_DOMAIN) == "employee"
        assert to_structural("Employee", ICM_DOMAIN) == "entity"
        assert to_domain("outcome", REBATE_DOMAIN) == "rebate"
        assert to_structural("partner", REBATE_DOMAIN) == "entity"

    def test_unknown_terms_pass_through(self) -> None:
        assert to_domain("quota", ICM_DOMAIN) == "quota"
        assert to_structural("quota", ICM_DOMAIN) == "quota"
