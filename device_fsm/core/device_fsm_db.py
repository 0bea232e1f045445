"""
Database-Backed FSM
===================
Same vending machine, but every transition is written to the database.
Each call rebuilds the machine from the stored row. Crash-safe.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from device_fsm.db.models import Device as DeviceModel, DeviceEvent as EventModel

from .device_states import DeviceState, DeviceTrigger
from .errors import DeviceNotFoundError, InvalidTransitionError
from .fsm_engine import TransitionResult, label
from .vending import build_vending_machine


logger = logging.getLogger(__name__)


class DeviceFSM:
    """
    FSM that persists to the database.
    Every accepted trigger = one commit.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_device(self, inventory: int, name: Optional[str] = None) -> DeviceModel:
        """Store a new device in its starting state (NO_INPUT, or EXHAUSTED when empty)"""
        machine = build_vending_machine(inventory)

        device = DeviceModel(
            id=uuid.uuid4(),
            name=name,
            state=machine.current_state.value,
            inventory=machine.inventory,
        )
        self.session.add(device)

        self.session.add(EventModel(
            id=uuid.uuid4(),
            device_id=device.id,
            step=0,
            from_state="NONE",
            trigger="DEVICE_CREATED",
            to_state=machine.current_state.value,
            effects=[],
            occurred_at=datetime.now(timezone.utc),
        ))

        await self.session.commit()
        logger.info("Created device %s in %s with %d item(s)", device.id, device.state, device.inventory)
        return device

    async def apply_trigger(self, device_id: uuid.UUID, trigger: DeviceTrigger) -> TransitionResult:
        """
        Apply a trigger to a stored device.
        Rejected triggers raise InvalidTransitionError and write nothing.
        """

        # 1. Load device from database (with row lock so concurrent callers queue up)
        result = await self.session.execute(
            select(DeviceModel).where(DeviceModel.id == device_id).with_for_update()
        )
        device = result.scalar_one_or_none()

        if not device:
            raise DeviceNotFoundError(f"Device {device_id} not found in database")

        # 2. Rebuild the machine exactly where the row says it is
        machine = build_vending_machine(device.inventory, current_state=DeviceState(device.state))

        # 3. Apply; on rejection roll back the lock and let the caller decide
        try:
            outcome = machine.apply(trigger)
        except InvalidTransitionError:
            await self.session.rollback()
            raise

        # 4. Append one IMMUTABLE log row per step taken
        count = await self.session.execute(
            select(func.count()).select_from(EventModel).where(EventModel.device_id == device_id)
        )
        next_step = count.scalar_one()
        now = datetime.now(timezone.utc)
        for offset, step in enumerate(machine.history()):
            self.session.add(EventModel(
                id=uuid.uuid4(),
                device_id=device.id,
                step=next_step + offset,
                from_state=label(step.previous_state),
                trigger=label(step.trigger),
                to_state=label(step.new_state),
                effects=list(step.effects),
                occurred_at=now,
            ))

        # 5. Update device's current state
        if outcome.changed:
            device.state_entered_at = now
        device.state = label(outcome.new_state)
        device.inventory = machine.inventory
        device.updated_at = now

        # 6. Commit
        await self.session.commit()
        logger.info("Device %s: %s", str(device_id)[:8], outcome.message)

        return outcome

    async def get_device(self, device_id: uuid.UUID) -> DeviceModel:
        result = await self.session.execute(select(DeviceModel).where(DeviceModel.id == device_id))
        device = result.scalar_one_or_none()
        if not device:
            raise DeviceNotFoundError(f"Device {device_id} not found in database")
        return device

    async def history(self, device_id: uuid.UUID) -> list:
        """Full audit trail, oldest first"""
        await self.get_device(device_id)
        result = await self.session.execute(
            select(EventModel).where(EventModel.device_id == device_id).order_by(EventModel.step)
        )
        return list(result.scalars().all())
