"""Configuration loading utilities.

Settings come from a YAML file with environment variables layered on top.
A ``.env`` file next to the process is honoured, so broker credentials can
stay out of the YAML.
"""

import logging
import os
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar, Union

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).parent.parent.parent

CONFIG_ENV_VAR = "CLIMADASH_CONFIG"

T = TypeVar("T")


def get_environment() -> str:
    """Get the current environment name.

    Returns:
        Environment name from CLIMADASH_ENV, defaults to 'climadash'.
    """
    return os.getenv("CLIMADASH_ENV", "climadash")


def get_config_path(
    config_name: Optional[str] = None,
    config_dir: Optional[Union[str, Path]] = None,
) -> Path:
    """Path of a config file under the repo's ``config`` directory.

    Args:
        config_name: File name. Defaults to ``{environment}.yaml``.
        config_dir: Directory to look in. Defaults to ``<repo>/config``.
    """
    directory = Path(config_dir) if config_dir is not None else REPO_ROOT / "config"
    return directory / (config_name or f"{get_environment()}.yaml")


def resolve_config_path(explicit: Optional[Union[str, Path]] = None) -> Optional[Path]:
    """Pick the config file to load.

    An explicit path wins, then the CLIMADASH_CONFIG variable, then the
    environment's default file if it exists. An explicit path or variable is
    returned even when missing so the caller fails loudly.

    Returns:
        Path to load, or None to run on built-in defaults.
    """
    if explicit is not None:
        return Path(explicit)
    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return Path(from_env)
    default_path = get_config_path()
    return default_path if default_path.exists() else None


def load_yaml_config(
    config_path: Optional[Union[str, Path]] = None,
    load_env: bool = True,
) -> dict:
    """Load a YAML configuration file.

    Args:
        config_path: Path to config file. If None, uses get_config_path().
        load_env: Whether to load .env file first.

    Returns:
        Configuration dictionary; an empty file gives ``{}``.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValueError: If the file does not hold a mapping.
        yaml.YAMLError: If config file is invalid YAML.
    """
    if load_env:
        load_dotenv()

    path = Path(config_path) if config_path is not None else get_config_path()
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    logger.debug(f"Loaded configuration from {path}")
    return data


def env_value(name: str, cast: Callable[[str], T] = str) -> Optional[T]:
    """Read an environment override.

    Unset and empty variables both count as absent.

    Raises:
        ValueError: If the value cannot be converted with ``cast``.
    """
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        return cast(raw)
    except ValueError as e:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from e


_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0", ""}


def parse_bool(value: Any, name: str) -> bool:
    """Interpret a YAML or environment flag.

    Accepts booleans, 0/1 and the usual true/false words in any case. An
    empty YAML value counts as false.

    Raises:
        ValueError: For any other value.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ValueError(f"{name} must be true or false, got {value!r}")


def get_log_level(config: dict) -> str:
    """Log level from config, INFO when unset."""
    level: Any = config.get("log_level") or "INFO"
    return str(level).upper()
