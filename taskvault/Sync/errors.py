# errors.py
# Description: Exception taxonomy shared by the sync core
#
# Imports
from typing import Optional
#
########################################################################################################################
#
# Classes:

class TaskVaultError(Exception):
    """Base class for all taskvault errors."""
    pass


class ConfigurationError(TaskVaultError):
    """Required configuration (usually the API token) is missing or invalid."""
    pass


class TransportError(TaskVaultError):
    """A fetch or dispatch could not reach the remote or got no usable answer."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteRejection(TaskVaultError):
    """The remote refused one command of a batch."""

    def __init__(self, entity_id: str, code: Optional[str] = None, message: str = "",
                 correlation_id: Optional[str] = None, command_type: Optional[str] = None):
        super().__init__(f"Command {command_type or ''} for {entity_id} rejected: {code} {message}".strip())
        self.entity_id = entity_id
        self.code = code
        self.message = message
        self.correlation_id = correlation_id
        self.command_type = command_type


class LocalTreeError(TaskVaultError):
    """A create, move or metadata write on the local tree failed."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class NameConflict(LocalTreeError):
    """The target path of a create or move is already occupied."""
    pass


class InvariantViolation(TaskVaultError):
    """The Identity Index points at a missing or wrong-kind location."""

    def __init__(self, kind, entity_id: str, path: Optional[str], reason: str):
        super().__init__(f"{kind.value} {entity_id} at {path}: {reason}")
        self.kind = kind
        self.entity_id = entity_id
        self.path = path
        self.reason = reason

#
# End of errors.py
########################################################################################################################
