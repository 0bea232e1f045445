"""
Vending Device States
Every device is in exactly ONE of these states at any time
"""

from enum import Enum

from .fsm_engine import AUTO, TransitionRule


class DeviceState(str, Enum):
    NO_INPUT = "NO_INPUT"        # Waiting for credit
    HAS_INPUT = "HAS_INPUT"      # Credit inserted
    DISPENSING = "DISPENSING"    # Handing out one item
    EXHAUSTED = "EXHAUSTED"      # Out of stock (terminal)


class DeviceTrigger(str, Enum):
    INSERT = "INSERT"
    EJECT = "EJECT"
    ACTIVATE = "ACTIVATE"


# Effect names the table refers to
REFUND = "refund"
DISPENSE = "dispense"

# Terminal states - once a device reaches these, it stops moving
TERMINAL_STATES = {
    DeviceState.EXHAUSTED,
}

# Anything missing from this table is rejected:
#   NO_INPUT + EJECT, NO_INPUT + ACTIVATE, HAS_INPUT + INSERT, EXHAUSTED + *
TRANSITIONS = {
    (DeviceState.NO_INPUT, DeviceTrigger.INSERT): TransitionRule(DeviceState.HAS_INPUT),

    (DeviceState.HAS_INPUT, DeviceTrigger.EJECT): TransitionRule(DeviceState.NO_INPUT, effect=REFUND),
    (DeviceState.HAS_INPUT, DeviceTrigger.ACTIVATE): TransitionRule(DeviceState.DISPENSING),

    # Dispensing resolves on its own: stock left → back to idle, none → exhausted
    (DeviceState.DISPENSING, AUTO): TransitionRule(
        DeviceState.NO_INPUT, effect=DISPENSE, on_failure=DeviceState.EXHAUSTED
    ),
}
