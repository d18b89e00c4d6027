"""Execution mode selection from pattern density.

FULL_TRACE   d < 0.70: primitive-level trace for every entity.
LIGHT_TRACE  0.70 <= d < 0.95: component totals only.
SILENT       d >= 0.95: no trace.

Boundaries are inclusive toward the higher-trust mode. A mode is chosen
once per pattern per run, never per entity.

Deterministic — no I/O.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from incentiveos.models.common import ExecutionMode

if TYPE_CHECKING:
    from incentiveos.compiler.operations import CompiledPlan
    from incentiveos.flywheel.agent_memory import AgentPriors

FULL_TRACE_MAX = 0.70
SILENT_MIN = 0.95


def select_mode(density: float) -> ExecutionMode:
    """Map a density in [0, 1] to an execution mode.

    Raises:
        ValueError: If density is outside [0, 1].
    """
    if not 0.0 <= density <= 1.0:
        msg = f"density must be within [0, 1], got {density}."
        raise ValueError(msg)
    if density >= SILENT_MIN:
        return ExecutionMode.SILENT
    if density >= FULL_TRACE_MAX:
        return ExecutionMode.LIGHT_TRACE
    return ExecutionMode.FULL_TRACE


def select_modes(plan: CompiledPlan, priors: AgentPriors) -> dict[str, ExecutionMode]:
    """Choose a mode for every pattern in the plan, keyed by signature key.

    Unknown patterns resolve through cold-start priors and therefore start
    in a more verbose mode.
    """
    return {
        signature.key: select_mode(priors.effective_density(signature))
        for signature in plan.signatures()
    }
