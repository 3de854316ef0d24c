"""
Atomic writes for vault documents and the sync state files.

Every rewrite goes to a hidden sibling first and is swapped in with
``os.replace``; a crash mid-write leaves the previous document intact. Hidden
siblings are never picked up by the tree store or the file watcher.
"""

import os
import stat
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, TextIO, Union
from loguru import logger


DEFAULT_FILE_MODE = 0o644


def _target_mode(target: Path) -> int:
    """Permissions the rewritten file should carry: the current ones, if it exists."""
    try:
        return stat.S_IMODE(target.stat().st_mode)
    except FileNotFoundError:
        return DEFAULT_FILE_MODE


@contextmanager
def atomic_replace(file_path: Union[str, Path], encoding: str = 'utf-8') -> Iterator[TextIO]:
    """
    Yield a text handle whose content replaces ``file_path`` on clean exit.

    Raises:
        OSError: If the sibling cannot be created, synced or swapped in
    """
    target = Path(file_path)
    target.parent.mkdir(parents=True, exist_ok=True)
    mode = _target_mode(target)

    fd, sibling = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".partial")
    try:
        with os.fdopen(fd, 'w', encoding=encoding, newline='') as handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(sibling, mode)
        os.replace(sibling, target)
    except BaseException:
        if os.path.exists(sibling):
            try:
                os.unlink(sibling)
            except OSError as cleanup_error:
                logger.warning(f"Could not remove partial write {sibling}: {cleanup_error}")
        raise


def atomic_write_text(file_path: Union[str, Path], content: str, encoding: str = 'utf-8') -> None:
    """Replace ``file_path`` with ``content`` in one step."""
    try:
        with atomic_replace(file_path, encoding) as handle:
            handle.write(content)
    except OSError as e:
        logger.error(f"Failed to write {file_path}: {e}")
        raise
    logger.debug(f"Wrote {len(content)} chars to {file_path}")


def read_text_if_exists(file_path: Union[str, Path], encoding: str = 'utf-8') -> str:
    """Return the file's text, or an empty string when it does not exist."""
    try:
        return Path(file_path).read_text(encoding=encoding)
    except FileNotFoundError:
        return ""
