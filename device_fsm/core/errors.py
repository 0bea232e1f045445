"""
Device FSM Errors
=================
Construction problems are fatal, rejected triggers are not
"""

from typing import Any, Hashable, Optional


class DeviceFSMError(Exception):
    """Base class for everything this package raises on purpose"""


class ConfigurationError(DeviceFSMError, ValueError):
    """Malformed transition table or invalid initial state"""


class InvalidTransitionError(DeviceFSMError, ValueError):
    """
    A (state, trigger) pair the machine refuses.
    The machine is untouched; `result` is the rejection record.
    """

    def __init__(self, state: Hashable, trigger: Any, message: str, result: Optional[Any] = None):
        super().__init__(message)
        self.state = state
        self.trigger = trigger
        self.result = result


class UnknownTriggerError(InvalidTransitionError):
    """Trigger is not part of the declared vocabulary"""


class DeviceNotFoundError(DeviceFSMError, LookupError):
    """No persisted device with the requested id"""
