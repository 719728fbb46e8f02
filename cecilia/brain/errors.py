"""Errors raised by the automation core.

Connection and validation errors surface to the caller. Task failures are
raised only by agent transports; the task engine catches them and records
them in the task's terminal state.
"""


class AutomationError(Exception):
    """Base class for every error raised by the automation core."""


class NotConnected(AutomationError):
    """The operation needs an active link to the automation agent."""

    def __init__(self, message: str = "Not connected to the automation agent"):
        super().__init__(message)


class AuthenticationFailed(AutomationError):
    """The automation agent rejected the credential."""


class InvalidTaskDraft(AutomationError, ValueError):
    """A task draft or its options failed validation."""


class TaskFailure(AutomationError):
    """Agent-side failure while executing a task."""

    transient = False


class TransientTaskFailure(TaskFailure):
    """Failure worth retrying (agent busy, flaky UI, dropped frame)."""

    transient = True


class PermanentTaskFailure(TaskFailure):
    """Failure that will not go away on retry."""


class TimeoutExceeded(TaskFailure):
    """The task did not finish within the caller's timeout."""

    def __init__(self, message: str = "timeout exceeded"):
        super().__init__(message)
