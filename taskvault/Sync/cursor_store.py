# cursor_store.py
# Description: Persists the opaque sync cursor between runs
#
# Imports
from pathlib import Path
from typing import Optional, Union
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from ..Utils.atomic_file_ops import atomic_write_text, read_text_if_exists
#
########################################################################################################################
#
# Classes:

class CursorStore:
    """Single-file store for the sync cursor. An absent or empty file means 'no cursor'."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[str]:
        try:
            cursor = read_text_if_exists(self.path).strip()
        except OSError as e:
            logger.warning(f"Could not read sync cursor from {self.path}: {e}")
            return None
        return cursor or None

    def save(self, cursor: Optional[str]) -> None:
        atomic_write_text(self.path, cursor or "")
        logger.debug(f"Persisted sync cursor to {self.path}")

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.info(f"Cleared sync cursor at {self.path}")

#
# End of cursor_store.py
########################################################################################################################
