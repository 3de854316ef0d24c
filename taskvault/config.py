# taskvault/config.py
# Description: Configuration management for taskvault.
#
# Imports
import copy
import os
import sys
if sys.version_info < (3, 11):
    import tomli as tomllib
else:
    import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
#
# Third-Party Imports
import toml
from loguru import logger
#
# Local Imports
from .Sync.errors import ConfigurationError
#
########################################################################################################################
#
# Constants and defaults:

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "taskvault" / "config.toml"
DEFAULT_STATE_DIR = Path.home() / ".local" / "share" / "taskvault"
DEFAULT_SYNC_URL = "https://api.todoist.com/sync/v9/sync"

CONFIG_TOML_CONTENT = """
# Configuration for taskvault.
# Settings here override the built-in defaults.

[todoist]
# Leave blank to read the token from the environment variable named below.
api_token = ""
api_token_env_var = "TODOIST_API_TOKEN"
sync_url = "https://api.todoist.com/sync/v9/sync"
timeout_seconds = 30.0

[vault]
root = "~/TaskVault"
base_folder = "Todoist"
done_folder = "Done"
archive_folder = "Archive"
trash_folder = "Trash"

[sync]
debounce_seconds = 1.0
# 0 disables periodic passes while watching.
sync_interval_seconds = 0
state_dir = "~/.local/share/taskvault"

[logging]
level = "INFO"
log_file = ""
"""

DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)

_CONFIG_CACHE: Optional[Dict[str, Any]] = None

#
########################################################################################################################
#
# Functions:

def deep_merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge *override* on top of a copy of *base*."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(force_reload: bool = False, config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Loads settings from ~/.config/taskvault/config.toml.
    If the file doesn't exist, it's created with the default values.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload and config_path is None:
        return _CONFIG_CACHE

    path = config_path or DEFAULT_CONFIG_PATH
    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)

    if not path.exists():
        logger.info(f"Config file not found at {path}. Creating it with default values.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(CONFIG_TOML_CONTENT, encoding="utf-8")
        except OSError as e:
            logger.error(f"Could not create default config file {path}: {e}. Using internal defaults.")
    else:
        try:
            with open(path, "rb") as f:
                user_config = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config)
            logger.debug(f"Loaded config from {path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {path}: {e}. Using internal defaults.")

    if config_path is None:
        _CONFIG_CACHE = loaded_config
    return loaded_config


def get_setting(section: str, key: str, default: Any = None, config: Optional[Dict[str, Any]] = None) -> Any:
    """Helper to get a specific setting from the given or the loaded configuration."""
    config = config if config is not None else load_config()
    section_data = config.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


def save_setting(section: str, key: str, value: Any, config_path: Optional[Path] = None) -> bool:
    """
    Saves a single setting to the user's TOML configuration file.

    Returns:
        True if the setting was saved successfully, False otherwise.
    """
    global _CONFIG_CACHE
    path = config_path or DEFAULT_CONFIG_PATH
    logger.info(f"Saving setting [{section}].{key}")

    config_data: Dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, "rb") as f:
                config_data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Corrupted config file at {path}. Cannot save. Error: {e}")
            return False

    config_data.setdefault(section, {})[key] = value
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            toml.dump(config_data, f)
    except OSError as e:
        logger.error(f"Could not write config file {path}: {e}")
        return False

    _CONFIG_CACHE = None
    return True


@dataclass
class SyncSettings:
    """Everything the sync core needs, resolved once and injected."""
    vault_root: Path
    api_token: str = ""
    base_folder: str = "Todoist"
    done_folder: str = "Done"
    archive_folder: str = "Archive"
    trash_folder: str = "Trash"
    debounce_seconds: float = 1.0
    sync_interval_seconds: float = 0.0
    state_dir: Path = DEFAULT_STATE_DIR
    sync_url: str = DEFAULT_SYNC_URL
    timeout_seconds: float = 30.0

    @property
    def cursor_path(self) -> Path:
        return self.state_dir / "sync_cursor.txt"

    def require_token(self) -> str:
        if not self.api_token:
            raise ConfigurationError(
                "No Todoist API token configured. Set [todoist].api_token or the token environment variable."
            )
        return self.api_token

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "SyncSettings":
        """Build settings from a loaded configuration dictionary."""
        config = config if config is not None else load_config()
        todoist = config.get("todoist", {})
        vault = config.get("vault", {})
        sync = config.get("sync", {})

        token = todoist.get("api_token") or ""
        if not token:
            env_var = todoist.get("api_token_env_var") or "TODOIST_API_TOKEN"
            token = os.getenv(env_var, "")

        return cls(
            vault_root=Path(vault.get("root", "~/TaskVault")).expanduser(),
            api_token=token,
            base_folder=vault.get("base_folder", "Todoist"),
            done_folder=vault.get("done_folder", "Done"),
            archive_folder=vault.get("archive_folder", "Archive"),
            trash_folder=vault.get("trash_folder", "Trash"),
            debounce_seconds=float(sync.get("debounce_seconds", 1.0)),
            sync_interval_seconds=float(sync.get("sync_interval_seconds", 0)),
            state_dir=Path(sync.get("state_dir", str(DEFAULT_STATE_DIR))).expanduser(),
            sync_url=todoist.get("sync_url", DEFAULT_SYNC_URL),
            timeout_seconds=float(todoist.get("timeout_seconds", 30.0)),
        )

#
# End of config.py
########################################################################################################################
