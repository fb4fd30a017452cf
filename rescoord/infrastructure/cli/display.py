import logging
from typing import Any, Iterable, Optional, Tuple

from rich.console import Console
from rich.table import Table

from rescoord.domain.models.common import CacheStats
from rescoord.infrastructure.resilience.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

class ConsoleDisplay:
    """Renders component state for the CLI using the rich library."""

    def __init__(self, console: Optional[Console] = None):
        """Initializes the rich Console."""
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    @console.setter
    def console(self, value: Console) -> None:
        self._console = value

    def display_info(self, message: str) -> None:
        self.console.print(f"[blue]Info:[/blue] {message}")

    def display_error(self, message: str) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {message}")

    def display_settings(self, title: str, rows: Iterable[Tuple[str, Any]]) -> None:
        """Prints a two-column settings table."""
        table = Table(title=title, show_header=True, header_style="bold cyan")
        table.add_column("Setting")
        table.add_column("Value", justify="right")
        for name, value in rows:
            table.add_row(name, str(value))
        self.console.print(table)

    def display_cache_stats(self, name: str, stats: CacheStats) -> None:
        self.display_settings(f"Cache '{name}'", [
            ("size", f"{stats['size']} / {stats['max_size']}"),
            ("hits", stats["hit_count"]),
            ("misses", stats["miss_count"]),
            ("hit rate", f"{stats['hit_rate']:.1f}%"),
            ("memory", stats["memory_estimate"]),
        ])

    def display_rate_limiter(self, limiter: SlidingWindowRateLimiter) -> None:
        remaining = limiter.get_remaining_requests()
        wait_time = limiter.get_wait_time()
        style = "red" if remaining == 0 else "green"
        self.display_settings(f"Rate limiter '{limiter.options.name}'", [
            ("window", f"{limiter.max_requests} / {limiter.window_seconds}s"),
            ("remaining", f"[{style}]{remaining}[/{style}]"),
            ("limited", limiter.is_limited),
            ("next slot in", f"{wait_time:.2f}s"),
        ])
