import os

import pytest
from typer.testing import CliRunner

from rescoord.infrastructure.cli.display import ConsoleDisplay
from rescoord.infrastructure.config import settings


class FakeClock:
    """Manually advanced clock for deterministic expiry and window tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()

@pytest.fixture
def fake_clock():
    return FakeClock()

@pytest.fixture(autouse=True)
def isolate_config(monkeypatch, tmp_path):
    """Keeps tests independent of the developer's config files and RESCOORD_* variables."""
    for name in list(os.environ):
        if name.startswith(settings.ENV_PREFIX):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    settings.load_configuration(config_file=tmp_path / "missing.yaml", force=True)
    yield
    settings.clear_test_config()

@pytest.fixture
def mock_console_display(mocker):
    """ Mocks the module level ConsoleDisplay of the CLI to capture output easily."""
    mock = mocker.MagicMock(spec=ConsoleDisplay)
    mocker.patch('rescoord.main.ui', mock)
    return mock

@pytest.fixture
def mock_setup_logging(mocker):
    """Keeps CLI invocations from replacing the root logger handlers."""
    return mocker.patch('rescoord.main.setup_logging')
