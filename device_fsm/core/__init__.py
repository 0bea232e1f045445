"""State machine engine and the vending device built on it."""

from .device_states import DeviceState, DeviceTrigger
from .errors import ConfigurationError, DeviceFSMError, InvalidTransitionError, UnknownTriggerError
from .fsm_engine import AUTO, MissingRulePolicy, StateMachine, TransitionResult, TransitionRule
from .vending import build_vending_machine

__all__ = [
    "AUTO",
    "ConfigurationError",
    "DeviceFSMError",
    "DeviceState",
    "DeviceTrigger",
    "InvalidTransitionError",
    "MissingRulePolicy",
    "StateMachine",
    "TransitionResult",
    "TransitionRule",
    "UnknownTriggerError",
    "build_vending_machine",
]
