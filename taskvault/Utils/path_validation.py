"""
Path helpers for the vault.

Remote names become folder and file names, so they are sanitised before they
touch the disk, and every vault-relative path is checked against the vault
root before it is resolved.
"""

import posixpath
import re
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, Optional, Union
from loguru import logger


# Characters that are unsafe in a file name on at least one supported platform
UNSAFE_NAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def sanitize_name(name: Optional[str]) -> str:
    """
    Make a remote name safe to use as a single path component.

    Every unsafe character is replaced with an underscore and surrounding
    whitespace is trimmed. The mapping is deterministic, so the same name
    always produces the same component.

    Args:
        name: Raw entity name (may be None)

    Returns:
        The sanitised name, or an empty string when nothing usable remains
    """
    if not name:
        return ""
    cleaned = UNSAFE_NAME_CHARS.sub("_", name).strip()
    # "." and ".." would address the parent tree rather than a child
    if cleaned.strip(".") == "":
        return ""
    return cleaned


def join_vault_path(*parts: str) -> str:
    """Join vault-relative components into a normalised POSIX path."""
    usable = [p.strip("/") for p in parts if p and p.strip("/")]
    if not usable:
        return ""
    return posixpath.normpath("/".join(usable))


def parent_of(path: str) -> str:
    """Return the vault-relative parent folder of *path* ('' for top level)."""
    return posixpath.dirname(path)


def stem_of(path: str) -> str:
    """Return the final component of *path* without its extension."""
    return PurePosixPath(path).stem


def is_within(path: str, prefix: str) -> bool:
    """True when *path* equals *prefix* or sits somewhere below it."""
    if not prefix:
        return True
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")


def is_within_any(path: str, prefixes: Iterable[str]) -> bool:
    return any(is_within(path, prefix) for prefix in prefixes)


def rebase_paths(old_prefix: str, new_prefix: str, paths: Iterable[str]) -> Dict[str, str]:
    """
    Rewrite the leading folder of every path that lives under *old_prefix*.

    Args:
        old_prefix: Folder that was renamed or moved
        new_prefix: Its new location
        paths: Paths to consider

    Returns:
        Mapping of each affected original path to its rebased path; paths
        outside *old_prefix* are left out
    """
    old_prefix = old_prefix.rstrip("/")
    new_prefix = new_prefix.rstrip("/")
    rebased: Dict[str, str] = {}
    for path in paths:
        if path == old_prefix:
            rebased[path] = new_prefix
        elif is_within(path, old_prefix):
            rebased[path] = new_prefix + path[len(old_prefix):]
    return rebased


def validate_path(user_path: Union[str, Path], base_directory: Union[str, Path]) -> Path:
    """
    Validates that a vault-relative path stays within the vault root.

    Args:
        user_path: The path provided by the caller
        base_directory: The allowed base directory

    Returns:
        Path: The validated absolute path

    Raises:
        ValueError: If the path is absolute or attempts directory traversal
    """
    user_path = Path(user_path)
    base_directory = Path(base_directory).resolve()

    if user_path.is_absolute():
        raise ValueError(f"Path '{user_path}' must be relative to the vault")

    full_path = (base_directory / user_path).resolve()
    try:
        full_path.relative_to(base_directory)
    except ValueError:
        logger.warning(f"Path traversal attempt detected: {user_path} -> {full_path}")
        raise ValueError(f"Path '{user_path}' is outside the allowed directory")

    return full_path
