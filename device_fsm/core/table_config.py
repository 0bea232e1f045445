"""
Transition Table as Configuration
=================================
Describe a device as plain data (dict or JSON) instead of code.

    {
        "states": ["IDLE", "ON"],
        "triggers": ["press"],
        "initial_state": "IDLE",
        "rules": [{"source": "IDLE", "trigger": "press", "target": "ON"}, ...]
    }
"""

from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigurationError
from .fsm_engine import AUTO, Effect, MissingRulePolicy, StateMachine, TransitionRule


# Trigger name used in config for completion rules
AUTO_TRIGGER = "*auto*"


class RuleConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    source: str
    trigger: str
    target: str
    effect: Optional[str] = None
    on_failure: Optional[str] = None


class TransitionTableConfig(BaseModel):
    """One device: its vocabulary, its rules and where it starts"""
    model_config = ConfigDict(frozen=True, extra="forbid")

    states: List[str] = Field(..., min_length=1)
    triggers: List[str] = Field(..., min_length=1)
    initial_state: str
    initial_inventory: int = Field(default=0, ge=0)
    terminal_states: List[str] = Field(default_factory=list)
    exhausted_state: Optional[str] = None
    policy: MissingRulePolicy = MissingRulePolicy.REJECT
    rules: List[RuleConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _one_rule_per_pair(self):
        seen = set()
        for rule in self.rules:
            key = (rule.source, rule.trigger)
            if key in seen:
                raise ValueError(f"Duplicate rule for {rule.source} + {rule.trigger}")
            seen.add(key)
        return self

    def transition_table(self) -> dict:
        return {
            (rule.source, AUTO if rule.trigger == AUTO_TRIGGER else rule.trigger): TransitionRule(
                target=rule.target, effect=rule.effect, on_failure=rule.on_failure
            )
            for rule in self.rules
        }


def load_table(data: Mapping[str, Any]) -> TransitionTableConfig:
    try:
        return TransitionTableConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid transition table: {e}") from e


def load_table_json(text: str) -> TransitionTableConfig:
    try:
        return TransitionTableConfig.model_validate_json(text)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid transition table: {e}") from e


def build_machine(
    config: TransitionTableConfig,
    effects: Optional[Mapping[str, Effect]] = None,
) -> StateMachine:
    """Turn a validated config into a running machine (table checks happen here)"""
    return StateMachine(
        config.initial_state,
        config.transition_table(),
        config.initial_inventory,
        states=config.states,
        triggers=config.triggers,
        effects=effects,
        terminal_states=config.terminal_states,
        exhausted_state=config.exhausted_state,
        policy=config.policy,
    )
