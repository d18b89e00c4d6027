"""Built-in domain definitions and terminology translation.

Structural terms (entity, entity_group, outcome, ruleset, period,
performance) are what the engine speaks; each domain supplies its own words
for them.
"""

from __future__ import annotations

from incentiveos.domain.viability import (
    DomainDefinition,
    OutcomeProfile,
    ReconciliationProfile,
    ScaleProfile,
)

ICM_DOMAIN = DomainDefinition(
    domain_id="icm",
    display_name="Incentive Compensation Management",
    version="1.0.0",
    terminology={
        "entity": "employee",
        "entity_group": "store",
        "outcome": "payout",
        "outcome_verb": "pay",
        "ruleset": "compensation plan",
        "period": "pay period",
        "performance": "sales",
    },
    required_primitives=[
        "bounded_lookup_1d",
        "bounded_lookup_2d",
        "scalar_multiply",
        "conditional_gate",
        "aggregate",
        "ratio",
        "constant",
        "weighted_blend",
        "temporal_window",
    ],
    scale=ScaleProfile(expected_entities=1_000_000, max_lookback_periods=12),
)

REBATE_DOMAIN = DomainDefinition(
    domain_id="rebate",
    display_name="Channel Rebates",
    version="0.1.0",
    terminology={
        "entity": "partner",
        "entity_group": "distributor",
        "outcome": "rebate",
        "outcome_verb": "credit",
        "ruleset": "rebate program",
        "period": "program period",
        "performance": "purchases",
    },
    required_primitives=[
        "bounded_lookup_1d",
        "scalar_multiply",
        "conditional_gate",
        "aggregate",
        "ratio",
    ],
    outcome=OutcomeProfile(),
    reconciliation=ReconciliationProfile(tolerance=0.01),
    scale=ScaleProfile(expected_entities=50_000, max_lookback_periods=4),
)

FRANCHISE_DOMAIN = DomainDefinition(
    domain_id="franchise",
    display_name="Franchise Royalties",
    version="0.1.0",
    terminology={
        "entity": "franchisee",
        "entity_group": "region",
        "outcome": "royalty",
        "outcome_verb": "charge",
        "ruleset": "franchise agreement",
        "period": "royalty period",
        "performance": "gross sales",
    },
    required_primitives=[
        "bounded_lookup_1d",
        "scalar_multiply",
        "aggregate",
        "constant",
        "temporal_window",
    ],
    scale=ScaleProfile(expected_entities=5_000, max_lookback_periods=12),
)

_REGISTRY: dict[str, DomainDefinition] = {
    d.domain_id: d for d in (ICM_DOMAIN, REBATE_DOMAIN, FRANCHISE_DOMAIN)
}


def register_domain(domain: DomainDefinition) -> None:
    _REGISTRY[domain.domain_id] = domain


def get_domain(domain_id: str) -> DomainDefinition | None:
    return _REGISTRY.get(domain_id)


def get_all_domains() -> list[DomainDefinition]:
    return list(_REGISTRY.values())


def to_structural(term: str, domain: DomainDefinition) -> str:
    """Translate a domain word to its structural term; unknown words pass through."""
    wanted = term.strip().lower()
    for structural, word in domain.terminology.items():
        if word.lower() == wanted:
            return structural
    return term


def to_domain(structural: str, domain: DomainDefinition) -> str:
    """Translate a structural term to the domain's word; unknown terms pass through."""
    return domain.terminology.get(structural, structural)
