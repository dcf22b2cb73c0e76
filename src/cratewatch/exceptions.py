# src/cratewatch/exceptions.py

"""
Exception hierarchy for cratewatch.
"""


class CratewatchError(Exception):
    """Base class for all cratewatch errors."""

    pass


class ConfigurationError(CratewatchError):
    """Raised when the configuration file is missing, malformed or invalid."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        full_message = message
        if path:
            full_message += f" (Config: '{path}')"
        super().__init__(full_message)


class InvariantViolation(CratewatchError):
    """
    The model or an input had a shape that must never occur.

    Aborts the current synchronization unit. It is caught and logged at the
    nearest event-handler boundary, never retried.
    """

    pass


class RunnableDecodeError(InvariantViolation):
    """A raw runnable record could not be decoded into a descriptor."""

    def __init__(self, message: str, label: str | None = None):
        self.label = label
        super().__init__(message)
        if label is not None:
            self.add_note(f"Runnable label: {label!r}")


class CollaboratorError(CratewatchError):
    """An external collaborator (cargo, rust-analyzer) failed."""

    def __init__(self, message: str, details: Exception | None = None):
        self.details = details
        super().__init__(message)
        if details:
            self.add_note(f"Original error: {type(details).__name__}: {details}")


class MonitoringSetupError(CratewatchError):
    """Filesystem monitoring could not be scheduled for a workspace."""

    pass


class RunInProgressError(CratewatchError):
    """A test run was requested while another one is still active."""

    pass


def invariant(condition: bool, message: str) -> None:
    """Raise InvariantViolation with `message` unless `condition` holds."""
    if not condition:
        raise InvariantViolation(message)

# 🔼⚙️
