# remote_service.py
# Description: Interface of the remote task service consumed by the sync core
#
# Imports
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional
#
# Local Imports
from .schemas import Command, Project, Section, Task
#
########################################################################################################################
#
# Classes:

@dataclass
class FetchResult:
    """Entity sets returned by one fetch."""
    projects: List[Project] = field(default_factory=list)
    sections: List[Section] = field(default_factory=list)
    tasks: List[Task] = field(default_factory=list)
    next_cursor: Optional[str] = None
    full: bool = False


@dataclass
class CommandStatus:
    """Outcome of one command, addressed by its correlation id."""
    correlation_id: str
    accepted: bool
    error_code: Optional[str] = None
    error_message: str = ""


@dataclass
class DispatchResult:
    """Per-command outcomes of one dispatched batch."""
    statuses: Dict[str, CommandStatus] = field(default_factory=dict)
    temp_id_mapping: Dict[str, str] = field(default_factory=dict)
    next_cursor: Optional[str] = None


class RemoteTaskService(ABC):
    """Remote side of the synchronisation.

    Implementations raise ``TransportError`` when no usable answer came back
    and ``ConfigurationError`` when they cannot even attempt the call.
    """

    @abstractmethod
    async def fetch(self, cursor: Optional[str], full: bool) -> FetchResult:
        """Fetch everything (``full``) or the changes since ``cursor``."""
        pass

    @abstractmethod
    async def dispatch(self, commands: List[Command]) -> DispatchResult:
        """Send a batch of commands in a single call."""
        pass

    async def close(self) -> None:
        """Release any held connection resources."""
        return None

#
# End of remote_service.py
########################################################################################################################
