"""Exceptions raised by the crash game engine and its collaborators."""


class CrashGameError(Exception):
    """Base class for all crash game errors"""
    pass


# ---- Round state ----

class InvalidStateTransition(CrashGameError):
    """Raised when the round is asked to move to a phase it cannot reach."""
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move round from {current} to {target}")


class SchedulerStopped(CrashGameError):
    """The round scheduler was stopped before the call could run."""
    pass


# ---- Client protocol ----

class ProtocolError(CrashGameError):
    """Malformed or unknown inbound client message."""
    pass


# ---- Collaborators ----

class PayoutError(CrashGameError):
    """The payout gateway refused or failed to settle a withdrawal."""
    pass


class RoundRecordError(CrashGameError):
    """The round outcome could not be persisted."""
    pass
