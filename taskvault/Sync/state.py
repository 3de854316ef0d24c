# state.py
# Description: The single owned handle on the mutable sync state
#
# Imports
import asyncio
from dataclasses import dataclass, field
#
# Local Imports
from .cursor_store import CursorStore
from .identity_index import IdentityIndex
from .models import SnapshotCache
#
########################################################################################################################
#
# Classes:

@dataclass
class SyncState:
    """Identity Index, SnapshotCache and cursor store, passed by handle.

    Only the reconciliation engine and the command queue's result step write
    to the index and cache; the change detector reads them. ``reconciling``
    is raised for the duration of a pass so local edit notifications caused
    by the engine's own writes are ignored; ``mutation_lock`` serialises
    passes and the application of batch results.
    """
    cursor_store: CursorStore
    index: IdentityIndex = field(default_factory=IdentityIndex)
    cache: SnapshotCache = field(default_factory=SnapshotCache)
    reconciling: bool = False
    mutation_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

#
# End of state.py
########################################################################################################################
