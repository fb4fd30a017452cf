import pytest
from unittest.mock import MagicMock

from rich.table import Table

from rescoord.domain.models.resilience import RateLimiterOptions
from rescoord.infrastructure.cli.display import ConsoleDisplay
from rescoord.infrastructure.resilience.rate_limiter import SlidingWindowRateLimiter

@pytest.fixture
def mock_console():
    """Fixture to create a mock rich Console object."""
    return MagicMock()

@pytest.fixture
def console_display(mock_console: MagicMock):
    """Fixture to create a ConsoleDisplay instance with a mocked console."""
    display = ConsoleDisplay()
    display.console = mock_console # Inject the mock
    return display

def _printed_table(mock_console: MagicMock) -> Table:
    args, _ = mock_console.print.call_args
    assert isinstance(args[0], Table)
    return args[0]

def _table_rows(table: Table):
    names = list(table.columns[0].cells)
    values = list(table.columns[1].cells)
    return dict(zip(names, values))

def test_display_error(console_display: ConsoleDisplay, mock_console: MagicMock):
    """Test that display_error calls console.print with error formatting."""
    error_msg = "Something went wrong"
    console_display.display_error(error_msg)
    mock_console.print.assert_called_once_with(f"[bold red]Error:[/bold red] {error_msg}")

def test_display_info(console_display: ConsoleDisplay, mock_console: MagicMock):
    """Test that display_info calls console.print with info formatting."""
    info_msg = "Process completed"
    console_display.display_info(info_msg)
    mock_console.print.assert_called_once_with(f"[blue]Info:[/blue] {info_msg}")

def test_display_settings_prints_table(console_display: ConsoleDisplay, mock_console: MagicMock):
    console_display.display_settings("Batching", [("delay", "0.05s"), ("max_wait", None)])

    table = _printed_table(mock_console)
    assert table.title == "Batching"
    assert _table_rows(table) == {"delay": "0.05s", "max_wait": "None"}

def test_display_cache_stats(console_display: ConsoleDisplay, mock_console: MagicMock):
    stats = {
        "size": 2, "max_size": 10, "hit_count": 3, "miss_count": 1,
        "hit_rate": 75.0, "memory_estimate": "1.20 KB",
    }
    console_display.display_cache_stats("api", stats)

    table = _printed_table(mock_console)
    assert table.title == "Cache 'api'"
    rows = _table_rows(table)
    assert rows["size"] == "2 / 10"
    assert rows["hit rate"] == "75.0%"
    assert rows["memory"] == "1.20 KB"

def test_display_rate_limiter(console_display: ConsoleDisplay, mock_console: MagicMock):
    limiter = SlidingWindowRateLimiter(RateLimiterOptions(max_requests=1, window_seconds=30, name="news"))
    limiter.check_limit()
    console_display.display_rate_limiter(limiter)

    table = _printed_table(mock_console)
    assert table.title == "Rate limiter 'news'"
    rows = _table_rows(table)
    assert rows["remaining"] == "[red]0[/red]"
    assert rows["window"] == "1 / 30s"
