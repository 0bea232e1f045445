"""
Vending Device
The exact same engine as any other device, wired with the vending table
"""

from typing import Callable, Optional

from .device_states import DISPENSE, REFUND, TERMINAL_STATES, TRANSITIONS, DeviceState, DeviceTrigger
from .fsm_engine import StateMachine


def build_vending_machine(
    inventory: int,
    on_refund: Optional[Callable[[StateMachine], None]] = None,
    on_dispense: Optional[Callable[[StateMachine], None]] = None,
    current_state: Optional[DeviceState] = None,
) -> StateMachine:
    """
    Build the vending device.
    Starts in NO_INPUT when stocked, EXHAUSTED when inventory is 0.
    `current_state` resumes a device that was stored mid-life.
    """

    def refund(machine: StateMachine):
        if on_refund is not None:
            on_refund(machine)

    def dispense(machine: StateMachine) -> bool:
        if not machine.dispense_if_available():
            return False
        if on_dispense is not None:
            on_dispense(machine)
        return True

    return StateMachine(
        DeviceState.NO_INPUT,
        TRANSITIONS,
        inventory,
        states=list(DeviceState),
        triggers=list(DeviceTrigger),
        effects={REFUND: refund, DISPENSE: dispense},
        terminal_states=TERMINAL_STATES,
        exhausted_state=DeviceState.EXHAUSTED,
        current_state=current_state,
    )


# Demo: Watch a device sell its last item and run dry
if __name__ == "__main__":
    from .errors import InvalidTransitionError

    machine = build_vending_machine(
        inventory=1,
        on_refund=lambda m: print("   💸 Refund issued"),
        on_dispense=lambda m: print(f"   🥤 Item dispensed ({m.inventory} left)"),
    )
    print(f"🆕 Device ready in {machine.current_state.value} with {machine.inventory} item(s)\n")

    for trigger in (DeviceTrigger.INSERT, DeviceTrigger.EJECT, DeviceTrigger.INSERT, DeviceTrigger.ACTIVATE):
        result = machine.apply(trigger)
        print(f"✅ {result.message}")

    print("\n❌ Now let's try something illegal:")
    try:
        machine.apply(DeviceTrigger.ACTIVATE)  # Nothing inserted!
    except InvalidTransitionError as e:
        print(f"   ERROR: {e}")

    print("\n🪫 Selling with an empty stock:")
    machine.apply(DeviceTrigger.INSERT)
    result = machine.apply(DeviceTrigger.ACTIVATE)
    print(f"   {' → '.join(s.value for s in result.path)}")

    print(f"\n📜 Full journey ({len(machine.history())} steps):")
    for step in machine.history():
        trigger = step.trigger.value if step.trigger is not None else "FORCED"
        print(f"   {step.previous_state.value:12} → {step.new_state.value:12} via {trigger}")
