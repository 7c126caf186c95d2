"""Orchestrator phase definitions: the per-entity state machine states and transitions."""

from __future__ import annotations

from enum import Enum


class Phase(str, Enum):
    """All valid orchestrator phases. One entity walks these strictly in order."""

    START = "START"
    REGISTRY_LOOKUP = "REGISTRY_LOOKUP"
    STRATEGY_DECISION = "STRATEGY_DECISION"
    EXECUTION = "EXECUTION"
    VALIDATION = "VALIDATION"
    INTERPRETATION = "INTERPRETATION"
    DONE = "DONE"
    FAILED = "FAILED"


# Valid phase transitions. Each key maps to a set of phases it can transition to.
VALID_TRANSITIONS: dict[Phase, set[Phase]] = {
    Phase.START: {Phase.REGISTRY_LOOKUP, Phase.FAILED},
    Phase.REGISTRY_LOOKUP: {Phase.STRATEGY_DECISION, Phase.FAILED},
    Phase.STRATEGY_DECISION: {Phase.EXECUTION, Phase.FAILED},
    Phase.EXECUTION: {Phase.VALIDATION, Phase.FAILED},
    Phase.VALIDATION: {Phase.INTERPRETATION, Phase.FAILED},
    Phase.INTERPRETATION: {Phase.DONE, Phase.FAILED},
    Phase.DONE: set(),  # terminal
    Phase.FAILED: set(),  # terminal
}

TERMINAL_PHASES = {Phase.DONE, Phase.FAILED}
