"""
Loading and saving the desk configuration.

The config lives in ~/.config/homedesk/config.json with credentials
encrypted. HOMEDESK_* environment variables (optionally from a .env file)
override individual fields at load time.
"""

import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from shared.constants import CONFIG_FILENAME, DEFAULT_CONFIG_DIR, DEFAULT_LOCAL_STORE
from shared.models import DeskConfig, StorageProvider

logger = logging.getLogger(__name__)

ENV_PREFIX = "HOMEDESK_"

# env suffix -> (field name, converter)
ENV_FIELDS = {
    "PROVIDER": ("provider", StorageProvider),
    "ENDPOINT": ("endpoint", str),
    "BUCKET": ("bucket", str),
    "ACCESS_KEY_ID": ("access_key_id", str),
    "SECRET_ACCESS_KEY": ("secret_access_key", str),
    "REGION": ("region", str),
    "SMALL_TIMEOUT": ("small_timeout", float),
    "LARGE_TIMEOUT": ("large_timeout", float),
    "MAX_SAVE_ATTEMPTS": ("max_save_attempts", int),
    "RETRY_BACKOFF": ("retry_backoff", float),
}


def config_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if env is None else env
    return Path(env.get(f"{ENV_PREFIX}CONFIG_DIR") or DEFAULT_CONFIG_DIR).expanduser()


def config_path(env: Optional[Mapping[str, str]] = None) -> Path:
    return config_dir(env) / CONFIG_FILENAME


def default_config() -> DeskConfig:
    """Local filesystem backend, used until `homedesk init` is run."""
    return DeskConfig(
        provider=StorageProvider.LOCAL,
        endpoint=str(Path(DEFAULT_LOCAL_STORE).expanduser()),
        bucket="default",
    )


def apply_env_overrides(config: DeskConfig, env: Mapping[str, str]) -> DeskConfig:
    """
    Raises:
        ValueError: If an override cannot be converted
    """
    changes = {}
    for suffix, (field_name, convert) in ENV_FIELDS.items():
        raw = env.get(ENV_PREFIX + suffix)
        if raw is None or raw == "":
            continue
        try:
            changes[field_name] = convert(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {ENV_PREFIX}{suffix}: {raw!r}") from e
    if changes:
        logger.debug(f"Config overrides from environment: {sorted(changes)}")
        return replace(config, **changes)
    return config


def load_config(path: Optional[Path] = None,
                env: Optional[Mapping[str, str]] = None) -> DeskConfig:
    """
    Read the config file (or the defaults when there is none) and apply
    environment overrides.

    Args:
        path: Config file, defaults to ~/.config/homedesk/config.json
        env: Environment mapping; the process environment plus .env if None
    """
    if env is None:
        load_dotenv(override=False)
        env = os.environ

    path = Path(path) if path else config_path(env)
    if path.exists():
        config = DeskConfig.from_json(path.read_text())
        logger.debug(f"Loaded config from {path}")
    else:
        logger.debug(f"No config at {path}, using defaults")
        config = default_config()

    return apply_env_overrides(config, env)


def save_config(config: DeskConfig, path: Optional[Path] = None) -> Path:
    path = Path(path) if path else config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(config.to_json())
    try:
        os.chmod(path, 0o600)
    except OSError as e:
        logger.warning(f"Could not restrict permissions on {path}: {e}")
    return path
