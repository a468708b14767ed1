"""Runtime settings for artifex: credentials, model chains, retry and cache knobs.

Values come from ~/.artifex/config.yaml, a .env file and ARTIFEX_* environment
variables, in increasing order of precedence.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import load_dotenv

from artifex.domain.models.common import FallbackChain, RetryPolicy

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".artifex"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_CACHE_DIR = DEFAULT_CONFIG_DIR / "cache"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "ARTIFEX_"

DEFAULT_MODEL_CHAINS: Dict[str, Tuple[str, ...]] = {
    "openai": ("gpt-4o", "gpt-4o-mini", "gpt-3.5-turbo"),
    "groq": ("llama-3.3-70b-versatile", "llama-3.1-8b-instant"),
}
DEFAULT_REPO_BRANCHES: Tuple[str, ...] = ("main", "master")

# --- Process-wide Settings ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}  # For testing purposes
_loaded = False

def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Reads the YAML settings file and exports the nearest .env file once per process.

    The .env file never overrides variables already present in the environment.

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (Medium priority)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug(".env file not found at or above current directory.")

    _loaded = True
    logger.info("Configuration loading process completed.")

def _env_name(key: str) -> str:
    if "." in key:
        return ENV_PREFIX + key.upper().replace(".", "_")
    return key.upper()

def _coerce(value: str) -> Any:
    if value.lower() == 'true':
        return True
    if value.lower() == 'false':
        return False
    try:
        return float(value) if '.' in value else int(value)
    except (ValueError, TypeError):
        return value

def _lookup_dotted(key: str) -> Any:
    """Resolves 'a.b.c' against nested YAML mappings, or a flat dotted key."""
    if key in _config:
        return _config[key]
    node: Any = _config
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node

def get_config(key: str, default: Any = None) -> Any:
    """Resolves a setting: test overrides, then ARTIFEX_* env vars, then YAML.

    Args:
        key: Dotted key such as 'retry.max_attempts', or a bare name such as
            'OPENAI_API_KEY' that maps directly to an environment variable.
        default: Returned when no source defines the key.
    """
    if key in _test_config:
        return _test_config[key]

    env_key = _env_name(key)
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    value = _lookup_dotted(key)
    if value is not None:
        return value

    logger.debug(f"Config key '{key}' not found in environment or loaded config. Returning default: {default}")
    return default

def find_dotenv_path() -> Optional[Path]:
    """Nearest .env file at or above the working directory."""
    try:
        cwd = Path.cwd()
        for path in [cwd] + list(cwd.parents):
            env_path = path / ENV_FILE_NAME
            if env_path.is_file():
                return env_path
    except OSError as e:
        logger.warning(f"Error searching for .env file: {e}")
    return None

# --- Convenience Functions ---

def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value else None

def get_openai_api_key() -> Optional[str]:
    """OpenAI key from OPENAI_API_KEY or openai.api_key."""
    return _optional_str(get_config('OPENAI_API_KEY') or get_config('openai.api_key'))

def get_groq_api_key() -> Optional[str]:
    """Groq key from GROQ_API_KEY or groq.api_key."""
    return _optional_str(get_config('GROQ_API_KEY') or get_config('groq.api_key'))

def get_github_token() -> Optional[str]:
    """GitHub token; anonymous access (60 requests/hour) when unset."""
    return _optional_str(get_config('GITHUB_TOKEN') or get_config('github.token'))

def get_default_provider() -> str:
    """Provider used when a command does not name one."""
    provider = get_config('ai.default_provider', 'openai')
    return str(provider) if provider else 'openai'

def get_model_chain(provider: Optional[str] = None) -> FallbackChain:
    """Ordered model fallback chain for a provider.

    Accepts a YAML list or a comma-separated string (environment variables).
    """
    selected = provider or get_default_provider()
    configured = get_config(f'ai.{selected}.models')
    if isinstance(configured, str):
        configured = [part.strip() for part in configured.split(',') if part.strip()]
    if configured:
        return tuple(str(model) for model in configured)
    return DEFAULT_MODEL_CHAINS.get(selected, DEFAULT_MODEL_CHAINS['openai'])

def get_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=int(get_config('retry.max_attempts', 3)),
        initial_delay_ms=int(get_config('retry.initial_delay_ms', 2000)),
        backoff_multiplier=float(get_config('retry.backoff_multiplier', 2.0)),
    )

def get_request_timeout() -> Optional[float]:
    """Per-attempt timeout in seconds; 0 or a negative value disables it."""
    timeout = float(get_config('request.timeout_seconds', 60))
    return timeout if timeout > 0 else None

def get_cache_ttl() -> float:
    return float(get_config('cache.ttl_seconds', 300))

def get_cache_max_items() -> Optional[int]:
    value = get_config('cache.max_items')
    return int(value) if value else None

def get_cache_directory() -> Optional[Path]:
    """Where responses and cooldowns persist between runs; None keeps them in memory."""
    value = get_config('cache.directory', str(DEFAULT_CACHE_DIR))
    return Path(str(value)).expanduser() if value else None

def set_config(key: str, value: Any) -> None:
    """Overrides a setting for the rest of the process."""
    _config[key] = value
    env_var = _env_name(key)
    os.environ[env_var] = str(value)
    logger.debug(f"Config set: {key}={value}, environment variable: {env_var}")

def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Pins settings ahead of every other source until clear_test_config runs."""
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")

def clear_test_config() -> None:
    """Drops the overrides installed by set_config_for_testing."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")

# Settings are read once, on first import
load_configuration()
