"""
Database Models
===============
Device = current state + stock
DeviceEvent = immutable history (audit log)
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, DateTime, JSON, ForeignKey, Uuid
from sqlalchemy.orm import DeclarativeBase, relationship


def utcnow():
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Device(Base):
    """
    The Device table stores the CURRENT state.
    Think of it as a snapshot: where is this device RIGHT NOW?
    """
    __tablename__ = "devices"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=True)

    # FSM state - THE SINGLE SOURCE OF TRUTH
    state = Column(String(50), nullable=False, default="NO_INPUT")
    state_entered_at = Column(DateTime(timezone=True), default=utcnow)

    # Stock left; never negative
    inventory = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationship to events
    events = relationship("DeviceEvent", back_populates="device", order_by="DeviceEvent.step")


class DeviceEvent(Base):
    """
    The Event Log - IMMUTABLE history.
    Every accepted step creates a new row here.
    Never updated or deleted - append-only.
    """
    __tablename__ = "device_events"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    device_id = Column(Uuid(as_uuid=True), ForeignKey("devices.id"), nullable=False)
    step = Column(Integer, nullable=False)  # 0 = creation, then 1, 2, ... per device

    # What happened?
    from_state = Column(String(50), nullable=False)
    trigger = Column(String(50), nullable=False)
    to_state = Column(String(50), nullable=False)

    # Effects that ran during the step ("refund", "dispense")
    effects = Column(JSON, nullable=True)

    # When?
    occurred_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationship
    device = relationship("Device", back_populates="events")
