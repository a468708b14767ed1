"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py) and delegates the
work to the application services (RepositoryService, AnalysisService,
KeyService). Classified upstream failures are shown with their
user-facing explanation; rate limits also feed the RateLimitMonitor so the
cooldown banner stays accurate.
"""

import logging
from pathlib import Path
from typing import Optional

# Core Services Imports
from artifex.core.services.analysis_service import AnalysisService
from artifex.core.services.key_service import KeyService
from artifex.core.services.repository_service import RepositoryService, parse_repo_slug

# Domain Layer Imports
from artifex.domain.interfaces.cache import CacheService
from artifex.domain.models.errors import UpstreamError, UserFacingError

# Infrastructure Layer Imports
from artifex.infrastructure.cli.display import ConsoleDisplay
from artifex.infrastructure.resilience.rate_limit_monitor import RateLimitMonitor

logger = logging.getLogger(__name__)

MAX_INPUT_FILE_BYTES = 1024 * 1024


def _input_error(message: str) -> UserFacingError:
    return UserFacingError(title="Invalid Input", message=message, code="INPUT")


class CommandHandler:
    """Handles incoming commands and delegates to appropriate services."""

    def __init__(
        self,
        repository_service: Optional[RepositoryService],
        analysis_service: Optional[AnalysisService],
        key_service: KeyService,
        cache_service: CacheService,
        monitor: RateLimitMonitor,
        ui: ConsoleDisplay,
    ):
        """Initializes the CommandHandler with required services."""
        self.repository_service = repository_service
        self.analysis_service = analysis_service
        self.key_service = key_service
        self.cache_service = cache_service
        self.monitor = monitor
        self.ui = ui

    def _report_upstream_failure(self, error: UpstreamError) -> None:
        logger.error(f"Upstream call failed ({error.kind.value}, attempts={error.attempts}): {error}")
        if self.monitor.handle_api_error(error):
            self.ui.display_rate_limit(self.monitor.status())
        self.ui.display_error(error.user_error)

    def _read_file(self, file_path_str: str) -> Optional[str]:
        path = Path(file_path_str)
        if not path.is_file():
            self.ui.display_error(_input_error(f"File not found: {file_path_str}"))
            return None
        if path.stat().st_size > MAX_INPUT_FILE_BYTES:
            self.ui.display_error(_input_error(f"File is too large to analyse (limit {MAX_INPUT_FILE_BYTES} bytes)."))
            return None
        return path.read_text(encoding="utf-8", errors="replace")

    def _provider_missing(self, service: object) -> bool:
        if service is None:
            self.ui.display_error(
                UserFacingError(
                    title="No AI Provider",
                    message="No AI provider is configured. Set OPENAI_API_KEY or GROQ_API_KEY and try again.",
                    code="CONFIG",
                )
            )
            return True
        return False

    def _blocked_by_cooldown(self) -> bool:
        if self.monitor.check_before_call():
            self.ui.display_rate_limit(self.monitor.status())
            return True
        return False

    async def handle_overview(self, repo_slug: str) -> None:
        """Handles the 'overview' command for OWNER/REPO."""
        logger.info(f"Handling 'overview' command for: {repo_slug}")
        try:
            owner, repo = parse_repo_slug(repo_slug)
        except ValueError as e:
            self.ui.display_error(_input_error(str(e)))
            return
        if self._provider_missing(self.repository_service) or self._blocked_by_cooldown():
            return
        try:
            overview = await self.repository_service.describe_repository(owner, repo)
        except UpstreamError as e:
            self._report_upstream_failure(e)
            return

        self.ui.display_repo_files(overview.files, title=f"{owner}/{repo}: {len(overview.files)} source files")
        if overview.summary:
            self.ui.display_output(overview.summary, title="Architecture", subtitle=overview.model_name)
        else:
            self.ui.display_info("No source files found, so no summary was generated.")

    async def handle_review(self, file_path_str: str) -> None:
        """Handles the 'review' command for a local file."""
        logger.info(f"Handling 'review' command for file: {file_path_str}")
        content = self._read_file(file_path_str)
        if content is None or self._provider_missing(self.analysis_service) or self._blocked_by_cooldown():
            return
        try:
            review = await self.analysis_service.review_code(file_path_str, content)
        except UpstreamError as e:
            self._report_upstream_failure(e)
            return
        self.ui.display_review(review, title=f"Code Review: {file_path_str}")

    async def handle_tests(self, file_path_str: str) -> None:
        """Handles the 'tests' command for a local file."""
        logger.info(f"Handling 'tests' command for file: {file_path_str}")
        content = self._read_file(file_path_str)
        if content is None or self._provider_missing(self.analysis_service) or self._blocked_by_cooldown():
            return
        try:
            suite = await self.analysis_service.generate_tests(file_path_str, content)
        except UpstreamError as e:
            self._report_upstream_failure(e)
            return
        self.ui.display_test_suite(suite, title=f"Generated Tests: {file_path_str}")

    async def handle_validate_key(self, api_key: Optional[str], github_token: Optional[str] = None) -> None:
        """Handles the 'validate-key' command."""
        if not api_key and not github_token:
            self.ui.display_error(_input_error("Provide an API key or a GitHub token to validate."))
            return
        if api_key:
            result = await self.key_service.validate_ai_key(api_key)
            self._show_validation("AI provider key", result.valid, result.error)
        if github_token:
            result = await self.key_service.validate_github_token(github_token)
            self._show_validation("GitHub token", result.valid, result.error)

    def _show_validation(self, subject: str, valid: bool, note: Optional[str]) -> None:
        if valid:
            self.ui.display_info(f"{subject} is valid." + (f" {note}" if note else ""))
        else:
            self.ui.display_error(
                UserFacingError(title="Invalid Credential", message=note or f"{subject} was rejected.", code="AUTH_403")
            )

    async def handle_status(self, watch: bool = False) -> None:
        """Handles the 'status' command; with `watch`, counts the cooldown down live."""
        snapshot = self.monitor.status()
        if not watch or not snapshot.is_limited:
            self.ui.display_rate_limit(snapshot)
            return
        unsubscribe = self.monitor.subscribe(self.ui.display_rate_limit)
        try:
            with self.ui.live_banner():
                await self.monitor.run_countdown()
        finally:
            unsubscribe()

    async def handle_clear_cache(self) -> None:
        """Handles the 'clear-cache' command."""
        logger.info("Handling 'clear-cache' command")
        self.cache_service.clear()
        self.ui.display_info("Response cache cleared successfully.")
