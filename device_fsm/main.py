"""
Device FSM Simulator - API
==========================
FastAPI application for creating vending devices and driving them with triggers
"""

import uuid
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from device_fsm import __version__
from device_fsm.config import settings
from device_fsm.core.device_fsm_db import DeviceFSM
from device_fsm.core.device_states import DeviceState, DeviceTrigger
from device_fsm.core.errors import DeviceNotFoundError, InvalidTransitionError
from device_fsm.core.fsm_engine import label
from device_fsm.db.database import get_session
from device_fsm.db.models import Device as DeviceModel
from device_fsm.log_config import configure_logging


configure_logging(settings.log_level)

app = FastAPI(
    title="Device FSM Simulator",
    description="Table-driven state machine for vending-style devices",
    version=__version__,
)


# ── Request/Response Models ───────────────────────────────────────────────────

class DeviceCreateRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    inventory: int = Field(..., ge=0)


class TriggerRequest(BaseModel):
    trigger: DeviceTrigger


def _device_body(device: DeviceModel) -> dict:
    return {
        "id": str(device.id),
        "name": device.name,
        "state": device.state,
        "inventory": device.inventory,
        "state_entered_at": device.state_entered_at.isoformat() if device.state_entered_at else None,
        "created_at": device.created_at.isoformat(),
        "updated_at": device.updated_at.isoformat(),
    }


# ── Endpoints ─────────────────────────────────────────────────────────────────

@app.get("/")
async def root():
    return {
        "service": "Device FSM Simulator",
        "version": __version__,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "healthy"}


@app.post("/devices", status_code=201)
async def create_device(request: DeviceCreateRequest, session: AsyncSession = Depends(get_session)):
    """
    Create a device with some stock.
    It starts in NO_INPUT, or EXHAUSTED if inventory is 0.
    """
    device = await DeviceFSM(session).create_device(request.inventory, name=request.name)
    return _device_body(device)


@app.get("/devices")
async def list_devices(
    limit: int = 10,
    state: Optional[DeviceState] = None,
    session: AsyncSession = Depends(get_session),
):
    """List devices with optional state filter"""
    query = select(DeviceModel).order_by(DeviceModel.created_at).limit(limit)
    if state:
        query = query.where(DeviceModel.state == state.value)

    result = await session.execute(query)
    devices = result.scalars().all()

    return {
        "count": len(devices),
        "devices": [_device_body(device) for device in devices],
    }


@app.get("/devices/{device_id}")
async def get_device(device_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    """Get current state of a device"""
    try:
        device = await DeviceFSM(session).get_device(device_id)
    except DeviceNotFoundError:
        raise HTTPException(status_code=404, detail="Device not found")
    return _device_body(device)


@app.post("/devices/{device_id}/triggers")
async def apply_trigger(
    device_id: uuid.UUID,
    request: TriggerRequest,
    session: AsyncSession = Depends(get_session),
):
    """
    Apply one trigger.
    Illegal moves come back as 409 with accepted=false; the device is untouched.
    """
    try:
        result = await DeviceFSM(session).apply_trigger(device_id, request.trigger)
    except DeviceNotFoundError:
        raise HTTPException(status_code=404, detail="Device not found")
    except InvalidTransitionError as e:
        return JSONResponse(
            status_code=409,
            content={
                "accepted": False,
                "state": label(e.state),
                "message": str(e),
            },
        )

    return result.as_dict()


@app.get("/devices/{device_id}/history")
async def get_device_history(device_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    """Get full event history for a device (audit trail)"""
    fsm = DeviceFSM(session)
    try:
        device = await fsm.get_device(device_id)
        events = await fsm.history(device_id)
    except DeviceNotFoundError:
        raise HTTPException(status_code=404, detail="Device not found")

    return {
        "device_id": str(device_id),
        "current_state": device.state,
        "event_count": len(events),
        "events": [
            {
                "step": e.step,
                "from_state": e.from_state,
                "trigger": e.trigger,
                "to_state": e.to_state,
                "effects": e.effects,
                "occurred_at": e.occurred_at.isoformat(),
            }
            for e in events
        ]
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
