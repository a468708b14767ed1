import contextlib
import logging
from typing import Any, Iterator, List, Optional

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from artifex.domain.interfaces.user_interface import UserInterface
from artifex.domain.models.ai import CodeReviewResult, GeneratedTestSuite, RepoFile
from artifex.domain.models.errors import UserFacingError
from artifex.domain.models.rate_limit import RateLimitSnapshot

logger = logging.getLogger(__name__)

SEVERITY_STYLES = {
    "critical": "bold red",
    "warning": "yellow",
    "info": "cyan",
    "suggestion": "dim",
}


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()
        self._live: Optional[Live] = None

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_output(self, output: str, **kwargs: Any) -> None:
        """Displays output text to the user, rendering Markdown.

        Args:
            output: The text to display.
            **kwargs: Additional arguments including:
                - title: Panel title (default: "AI")
                - subtitle: Optional panel subtitle, e.g. the model used
        """
        title = kwargs.get("title", "AI")
        panel = Panel(
            Markdown(str(output)),
            title=f"[bold white]{title}[/bold white]",
            subtitle=kwargs.get("subtitle"),
            title_align="left",
            border_style="blue",
            box=ROUNDED,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_error(self, error: UserFacingError, **kwargs: Any) -> None:
        """Displays a classified error with its title and code."""
        logger.debug(f"Displaying error {error.code}: {error.title}")
        panel = Panel(
            Text(error.message, style="white"),
            title=f"[bold red]{error.title}[/bold red]",
            subtitle=f"[dim]{error.code}[/dim]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1),
        )
        self.console.print(panel)

    # --- Rate-limit banner ---

    def _rate_limit_panel(self, snapshot: RateLimitSnapshot) -> Panel:
        if not snapshot.is_limited:
            return Panel(
                Text("No active rate limit. Requests can be sent.", style="green"),
                title="[bold green]Ready[/bold green]",
                border_style="green",
                box=SIMPLE,
                padding=(0, 1),
            )
        return Panel(
            Text(
                f"{snapshot.service} is rate limited. Please wait {snapshot.remaining_seconds} seconds before trying again.",
                style="white",
            ),
            title="[bold yellow]Rate Limit Active[/bold yellow]",
            subtitle=f"[yellow]{snapshot.remaining_seconds}s[/yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1),
        )

    def display_rate_limit(self, snapshot: RateLimitSnapshot) -> None:
        """Renders the banner; updates it in place while a live banner is open."""
        panel = self._rate_limit_panel(snapshot)
        if self._live is not None:
            self._live.update(panel)
        else:
            self.console.print(panel)

    @contextlib.contextmanager
    def live_banner(self) -> Iterator[None]:
        """Keeps one banner on screen that display_rate_limit refreshes."""
        with Live(console=self.console, refresh_per_second=4, transient=False) as live:
            self._live = live
            try:
                yield
            finally:
                self._live = None

    # --- Artifacts ---

    def display_repo_files(self, files: List[RepoFile], title: str = "Source files", limit: int = 50) -> None:
        table = Table(title=title, box=ROUNDED, border_style="cyan")
        table.add_column("Path", style="white")
        table.add_column("Size", style="dim", justify="right")
        for repo_file in files[:limit]:
            table.add_row(repo_file.path, str(repo_file.size) if repo_file.size is not None else "-")
        self.console.print(table)
        if len(files) > limit:
            self.console.print(f"[dim]... and {len(files) - limit} more[/dim]")

    def display_review(self, review: CodeReviewResult, title: str = "Code Review") -> None:
        self.display_output(
            f"{review.summary}\n\n**Score:** {review.overall_score}/100",
            title=title,
        )
        if review.issues:
            table = Table(box=ROUNDED, border_style="magenta", show_lines=False)
            table.add_column("Severity")
            table.add_column("Category", style="dim")
            table.add_column("Issue", style="white")
            table.add_column("Line", justify="right", style="dim")
            for issue in review.issues:
                style = SEVERITY_STYLES.get(issue.severity.lower(), "white")
                table.add_row(
                    f"[{style}]{issue.severity}[/{style}]",
                    issue.category,
                    issue.title,
                    str(issue.line) if issue.line is not None else "",
                )
            self.console.print(table)
        for heading, items in (("Strengths", review.strengths), ("Recommendations", review.recommendations)):
            if items:
                self.console.print(f"[bold]{heading}[/bold]")
                for item in items:
                    self.console.print(f"  - {item}")

    def display_test_suite(self, suite: GeneratedTestSuite, title: str = "Generated Tests") -> None:
        parts = [f"**Framework:** {suite.framework}"]
        if suite.setup:
            parts.append(f"```\n{suite.setup}\n```")
        for case in suite.test_cases:
            parts.append(f"### {case.name} ({case.type})\n{case.description}\n```\n{case.code}\n```")
        if suite.edge_cases:
            parts.append("**Edge cases:**\n" + "\n".join(f"- {edge}" for edge in suite.edge_cases))
        if suite.coverage_notes:
            parts.append(f"**Coverage:** {suite.coverage_notes}")
        self.display_output("\n\n".join(parts), title=title)
