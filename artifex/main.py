"""Main entry point for the artifex application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Annotated, Any, Callable, Coroutine, Dict, Optional, Tuple

import diskcache
import typer

# --- Core Layer ---
from artifex.core.command_handler import CommandHandler
from artifex.core.services.analysis_service import AnalysisService
from artifex.core.services.key_service import KeyService
from artifex.core.services.repository_service import RepositoryService

# --- Domain Layer ---
from artifex.domain.interfaces.ai_model import AIModel
from artifex.domain.interfaces.cache import CacheService
from artifex.domain.models.errors import ConfigurationError

# --- Infrastructure Layer ---
# Config
from artifex.infrastructure.config.settings import (
    get_cache_directory,
    get_cache_max_items,
    get_cache_ttl,
    get_config,
    get_default_provider,
    get_github_token,
    get_groq_api_key,
    get_openai_api_key,
    get_request_timeout,
    get_retry_policy,
    load_configuration,
    set_config,
)
# UI
from artifex.infrastructure.cli.display import ConsoleDisplay
# AI Clients
from artifex.infrastructure.ai.openai.gpt_client import GptClient
from artifex.infrastructure.ai.groq.groq_client import GroqClient
# GitHub
from artifex.infrastructure.github.github_client import GitHubClient
# Cache
from artifex.infrastructure.cache.caching_service import DiskCacheStore, InMemoryCacheStore
from artifex.infrastructure.cache.coalescer import InFlightCoalescer
# Resilience
from artifex.infrastructure.resilience.api_retry import ApiRetryService
from artifex.infrastructure.resilience.executor import ResilientExecutor
from artifex.infrastructure.resilience.fallback import FallbackOrchestrator
from artifex.infrastructure.resilience.rate_limit_monitor import RateLimitMonitor
from artifex.infrastructure.resilience.rate_limit_state import PersistentRateLimitState, RateLimitState
# Monitoring
from artifex.infrastructure.monitoring.logger_setup import DEFAULT_LOG_FORMAT, setup_logging

logger = logging.getLogger(__name__)

PROVIDERS: Dict[str, Callable[..., AIModel]] = {
    "openai": GptClient,
    "groq": GroqClient,
}
PROVIDER_KEYS: Dict[str, Callable[[], Optional[str]]] = {
    "openai": get_openai_api_key,
    "groq": get_groq_api_key,
}

# --- Dependency Injection Container (Manual) ---

def _create_ai_model(provider: str) -> Optional[AIModel]:
    api_key = PROVIDER_KEYS[provider]()
    if not api_key:
        logger.warning(f"{provider} API key not found, {provider} client disabled.")
        return None
    try:
        return PROVIDERS[provider](api_key=api_key)
    except ConfigurationError as e:
        logger.error(f"Failed to initialize {provider} client: {e}")
        return None

def _select_ai_model(provider: Optional[str]) -> Tuple[str, Optional[AIModel]]:
    """The requested provider, else the configured default, else any configured one."""
    preferred = provider or get_default_provider()
    if preferred not in PROVIDERS:
        raise ConfigurationError(f"Unknown AI provider '{preferred}'. Choose one of: {', '.join(PROVIDERS)}.")
    model = _create_ai_model(preferred)
    if model is not None or provider:
        return preferred, model
    for name in PROVIDERS:
        if name != preferred:
            model = _create_ai_model(name)
            if model is not None:
                logger.warning(f"Default provider '{preferred}' not available, falling back to {name}.")
                return name, model
    return preferred, None

def _create_cache_store(directory: Optional[Path]) -> CacheService:
    """Disk-backed when a cache directory is configured, otherwise per-process."""
    if directory is not None:
        try:
            return DiskCacheStore(directory / "responses", default_ttl=get_cache_ttl())
        except (OSError, sqlite3.Error) as e:
            logger.error(f"Failed to initialize disk cache under {directory}: {e}. Caching in memory only.")
    return InMemoryCacheStore(default_ttl=get_cache_ttl(), max_items=get_cache_max_items())

def _open_state_store(directory: Optional[Path]) -> Optional[diskcache.Cache]:
    if directory is None:
        return None
    try:
        return diskcache.Cache(str(directory / "rate_limits"))
    except (OSError, sqlite3.Error) as e:
        logger.error(f"Failed to open rate-limit store under {directory}: {e}. Cooldowns will not persist.")
        return None

def _create_rate_limit_state(service: str, store: Optional[diskcache.Cache]) -> RateLimitState:
    if store is None:
        return RateLimitState(service=service)
    return PersistentRateLimitState(store, service=service)

def _create_executor(
    state: RateLimitState,
    cache: CacheService,
    coalescer: InFlightCoalescer,
    advance_on_limit: bool = True,
) -> ResilientExecutor:
    retry_service = ApiRetryService(
        rate_limit_state=state,
        policy=get_retry_policy(),
        service_name=state.service,
        timeout_s=get_request_timeout(),
    )
    return ResilientExecutor(cache, coalescer, FallbackOrchestrator(retry_service, advance_on_limit=advance_on_limit))

def create_dependencies(provider: Optional[str] = None) -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root. Each upstream gets its own
    RateLimitState, so a GitHub limit never blocks AI calls and vice versa;
    the cache and the in-flight coalescer are shared. With a cache directory
    configured, responses and cooldowns persist between invocations.
    """
    load_configuration()
    setup_logging(
        log_level=get_config('logging.level', 'WARNING'),
        log_format=get_config('logging.format', DEFAULT_LOG_FORMAT),
        log_file=get_config('logging.file'),
    )
    logger.info("Initializing application dependencies...")

    dependencies: Dict[str, Any] = {}
    dependencies['ui'] = ConsoleDisplay()
    cache_directory = get_cache_directory()
    dependencies['cache_service'] = _create_cache_store(cache_directory)
    state_store = _open_state_store(cache_directory)
    dependencies['coalescer'] = InFlightCoalescer()

    key_provider, ai_model = _select_ai_model(provider)
    dependencies['ai_model'] = ai_model
    ai_label = ai_model.provider_name if ai_model is not None else "AI"
    dependencies['ai_rate_limit'] = _create_rate_limit_state(ai_label, state_store)
    dependencies['github_rate_limit'] = _create_rate_limit_state("GitHub", state_store)
    dependencies['monitor'] = RateLimitMonitor(
        states=(dependencies['ai_rate_limit'], dependencies['github_rate_limit'])
    )

    ai_executor = _create_executor(dependencies['ai_rate_limit'], dependencies['cache_service'], dependencies['coalescer'])
    # A GitHub limit covers every branch, so it never advances the branch chain.
    github_executor = _create_executor(
        dependencies['github_rate_limit'], dependencies['cache_service'], dependencies['coalescer'],
        advance_on_limit=False,
    )
    dependencies['github_client'] = GitHubClient(
        executor=github_executor,
        token=get_github_token(),
        cache_ttl=get_cache_ttl(),
    )

    if ai_model is not None:
        logger.info(f"AI provider selected: {ai_model.__class__.__name__}")
        dependencies['analysis_service'] = AnalysisService(ai_model, ai_executor, cache_ttl=get_cache_ttl())
        dependencies['repository_service'] = RepositoryService(
            dependencies['github_client'], ai_model, ai_executor, cache_ttl=get_cache_ttl()
        )
    else:
        logger.error("No AI model clients could be initialized.")
        dependencies['analysis_service'] = None
        dependencies['repository_service'] = None

    dependencies['key_provider'] = key_provider
    dependencies['key_service'] = KeyService(
        model_factory=lambda key: PROVIDERS[key_provider](api_key=key),
        github_client=dependencies['github_client'],
    )

    dependencies['command_handler'] = CommandHandler(
        repository_service=dependencies['repository_service'],
        analysis_service=dependencies['analysis_service'],
        key_service=dependencies['key_service'],
        cache_service=dependencies['cache_service'],
        monitor=dependencies['monitor'],
        ui=dependencies['ui'],
    )
    logger.info("All dependencies initialized successfully.")
    return dependencies

# --- Get Wired-up Dependencies ---
_dependencies: Dict[Optional[str], Dict[str, Any]] = {}

def get_dependencies(provider: Optional[str] = None) -> Dict[str, Any]:
    """Returns the wired dependencies for a provider, creating them on first use."""
    if provider not in _dependencies:
        try:
            _dependencies[provider] = create_dependencies(provider)
        except ConfigurationError as e:
            logger.error(f"Fatal Error during application initialization: {e}")
            typer.echo(f"Configuration error: {e}", err=True)
            raise typer.Exit(code=1)
    return _dependencies[provider]

# --- Typer App Definition ---
app = typer.Typer(
    name="artifex",
    help="artifex: AI code review, test generation and repository overviews with resilient upstream calls.",
    add_completion=False,
)

# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, None], dependencies: Dict[str, Any]) -> None:
    """Runs an async command handler from a sync Typer command.

    The GitHub HTTP client is bound to the loop the command ran on, so it
    is closed before that loop goes away.
    """
    async def runner() -> None:
        try:
            await coro
        finally:
            await dependencies['github_client'].close()

    asyncio.run(runner())

# --- CLI Commands ---

# Shared provider option
ProviderOption = Annotated[
    Optional[str],
    typer.Option("--provider", "-p", help="AI provider to use ('openai', 'groq'). Uses default if not set.")
]

@app.command()
def overview(
    repository: Annotated[str, typer.Argument(help="GitHub repository as OWNER/REPO or URL.")],
    provider: ProviderOption = None,
):
    """Summarize the architecture of a GitHub repository."""
    dependencies = get_dependencies(provider)
    handler: CommandHandler = dependencies['command_handler']
    run_async(handler.handle_overview(repository), dependencies)

@app.command()
def review(
    file: Annotated[Path, typer.Argument(help="Path to the file to review.")],
    provider: ProviderOption = None,
):
    """Review a source file with the AI provider."""
    dependencies = get_dependencies(provider)
    handler: CommandHandler = dependencies['command_handler']
    run_async(handler.handle_review(str(file)), dependencies)

@app.command()
def tests(
    file: Annotated[Path, typer.Argument(help="Path to the file to generate tests for.")],
    provider: ProviderOption = None,
):
    """Generate test cases and edge cases for a source file."""
    dependencies = get_dependencies(provider)
    handler: CommandHandler = dependencies['command_handler']
    run_async(handler.handle_tests(str(file)), dependencies)

@app.command(name="validate-key")
def validate_key_command(
    key: Annotated[Optional[str], typer.Option("--key", "-k", help="AI provider API key (configured key if omitted).")] = None,
    github_token: Annotated[Optional[str], typer.Option("--github-token", help="GitHub token to check.")] = None,
    provider: ProviderOption = None,
):
    """Check an AI provider key and/or a GitHub token."""
    dependencies = get_dependencies(provider)
    if key is None and github_token is None:
        key = PROVIDER_KEYS[dependencies['key_provider']]()
    handler: CommandHandler = dependencies['command_handler']
    run_async(handler.handle_validate_key(key, github_token), dependencies)

@app.command()
def status(
    watch: Annotated[bool, typer.Option("--watch", "-w", help="Count an active cooldown down live.")] = False,
    provider: ProviderOption = None,
):
    """Show the current rate-limit cooldown for GitHub and the AI provider."""
    dependencies = get_dependencies(provider)
    handler: CommandHandler = dependencies['command_handler']
    run_async(handler.handle_status(watch), dependencies)

@app.command(name="clear-cache")
def clear_cache_command():
    """Clears the response cache."""
    dependencies = get_dependencies()
    handler: CommandHandler = dependencies['command_handler']
    run_async(handler.handle_clear_cache(), dependencies)

@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
):
    """artifex command line."""
    if verbose:
        set_config('logging.level', 'DEBUG')

# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()

if __name__ == "__main__":
    cli_entry_point()
