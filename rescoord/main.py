"""Main entry point for the rescoord CLI.

Sets up the Typer CLI application, performs dependency injection (Composition
Root) and defines the CLI commands. Components are built here as explicit
instances from configuration; nothing in the package is a global singleton.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from typing_extensions import Annotated

# --- Core Layer ---
from rescoord.core.services.fetch_service import FetchService

# --- Infrastructure Layer ---
# Config
from rescoord.infrastructure.config.settings import (
    get_backoff_policy, get_batch_delay, get_batch_max_wait, get_cache_config,
    get_config, get_rate_limiter_options, load_configuration
)
# UI
from rescoord.infrastructure.cli.display import ConsoleDisplay
# Cache
from rescoord.infrastructure.cache.cache_store import CacheStore
from rescoord.infrastructure.cache.persistent_cache import PersistentCacheStore
from rescoord.infrastructure.cache.storage_adapters import DiskCacheStorageAdapter
# Resilience
from rescoord.infrastructure.resilience.rate_limiter import SlidingWindowRateLimiter
from rescoord.infrastructure.resilience.request_batcher import RequestBatcher
from rescoord.infrastructure.resilience.retry_service import RetryService
# Monitoring
from rescoord.infrastructure.monitoring.logger_setup import level_from_name, setup_logging

logger = logging.getLogger(__name__)

# --- Dependency Injection (Manual) ---

def create_dependencies(
    cache_profile: str = "default",
    limiter_name: str = "default",
    storage_dir: Optional[Path] = None,
) -> Dict[str, Any]:
    """Creates and wires up the coordination components.

    This acts as the Composition Root.

    Args:
        cache_profile: Cache profile name (see ``get_cache_config``).
        limiter_name: Rate limiter name (see ``get_rate_limiter_options``).
        storage_dir: If given, the cache writes through to a disk store there.
    """
    logger.info("Initializing coordination components...")
    dependencies: Dict[str, Any] = {}

    cache_config = get_cache_config(cache_profile)
    if storage_dir is not None:
        dependencies['storage'] = DiskCacheStorageAdapter(directory=storage_dir, prefix=f"{cache_profile}:")
        dependencies['cache'] = PersistentCacheStore(
            dependencies['storage'], config=cache_config, name=cache_profile
        )
    else:
        dependencies['cache'] = CacheStore(config=cache_config, name=cache_profile)

    dependencies['rate_limiter'] = SlidingWindowRateLimiter(get_rate_limiter_options(limiter_name))
    dependencies['batcher'] = RequestBatcher(
        default_delay=get_batch_delay(),
        max_wait_seconds=get_batch_max_wait(),
    )
    dependencies['retry_service'] = RetryService.from_policy(
        get_backoff_policy(),
        rate_limiter=dependencies['rate_limiter'],
        cache_service=dependencies['cache'],
    )
    logger.info("All components initialized successfully.")
    return dependencies

# --- Typer App Definition ---
app = typer.Typer(
    name="rescoord",
    help="rescoord: cache, request batching and rate limiting for client-side data fetching.",
    add_completion=False,
)

ui = ConsoleDisplay()

ProfileOption = Annotated[
    str,
    typer.Option("--profile", "-p", help="Cache profile to use ('default', 'api', 'image' or a configured one).")
]
LimiterOption = Annotated[
    str,
    typer.Option("--limiter", "-l", help="Named rate limiter configuration.")
]

@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to a YAML configuration file.")
    ] = None,
):
    """Configures logging and loads configuration before any command."""
    if config_file is not None:
        load_configuration(config_file=config_file, force=True)
    else:
        load_configuration()
    log_level = logging.DEBUG if verbose else level_from_name(get_config('logging.level', 'WARNING'))
    setup_logging(
        log_level=log_level,
        log_file=get_config('logging.file'),
        rich_console=bool(get_config('logging.rich', True)),
    )

# --- CLI Commands ---

@app.command(name="config")
def config_command(
    profile: ProfileOption = "default",
    limiter: LimiterOption = "default",
):
    """Shows the effective cache, rate limiter, batching and retry settings."""
    cache_config = get_cache_config(profile)
    options = get_rate_limiter_options(limiter)
    policy = get_backoff_policy()
    max_wait = get_batch_max_wait()

    ui.display_settings(f"Cache profile '{profile}'", [
        ("max_size", cache_config.max_size),
        ("default_ttl", f"{cache_config.default_ttl}s"),
        ("cleanup_interval", f"{cache_config.cleanup_interval}s"),
        ("compression", cache_config.compression),
    ])
    ui.display_settings(f"Rate limiter '{limiter}'", [
        ("max_requests", options.max_requests),
        ("window", f"{options.window_seconds}s"),
    ])
    ui.display_settings("Batching", [
        ("delay", f"{get_batch_delay()}s"),
        ("max_wait", f"{max_wait}s" if max_wait is not None else "unbounded"),
    ])
    ui.display_settings("Retry", [
        ("max_retries", policy["max_retries"]),
        ("initial_delay", f"{policy['initial_delay']}s"),
        ("factor", policy["factor"]),
        ("max_delay", f"{policy['max_delay']}s"),
    ])

async def _simulate(
    requests: int,
    keys: int,
    rounds: int,
    profile: str,
    limiter: str,
    storage_dir: Optional[Path],
) -> Dict[str, Any]:
    deps = create_dependencies(profile, limiter, storage_dir)
    upstream_calls: List[int] = []

    async def upstream(params_list: List[Any]) -> List[Any]:
        # Stand-in for a remote API accepting many ids per request
        upstream_calls.append(len(params_list))
        await asyncio.sleep(0.01)
        return [{"id": params, "value": f"payload-{params}"} for params in params_list]

    service = FetchService(
        cache=deps['cache'],
        batcher=deps['batcher'],
        rate_limiter=deps['rate_limiter'],
        upstream_fn=upstream,
        tags=["simulation"],
    )
    denied = 0
    failed = 0
    try:
        for _ in range(rounds):
            batch = [(f"item-{i % keys}", i % keys) for i in range(requests)]
            for result in await service.fetch_many(batch):
                if isinstance(result, BaseException):
                    failed += 1
                elif result is None:
                    denied += 1
        return {
            "deps": deps,
            "upstream_calls": upstream_calls,
            "denied": denied,
            "failed": failed,
            "stats": deps['cache'].get_stats(),
        }
    finally:
        deps['cache'].destroy()
        if 'storage' in deps:
            deps['storage'].close()

@app.command(name="simulate")
def simulate_command(
    requests: Annotated[int, typer.Option("--requests", "-n", min=1, help="Fetches per round.")] = 20,
    keys: Annotated[int, typer.Option("--keys", "-k", min=1, help="Distinct keys requested.")] = 5,
    rounds: Annotated[int, typer.Option("--rounds", "-r", min=1, help="Number of rounds.")] = 2,
    profile: ProfileOption = "default",
    limiter: LimiterOption = "default",
    storage_dir: Annotated[
        Optional[Path],
        typer.Option("--storage-dir", help="Write the cache through to a disk store in this directory.")
    ] = None,
):
    """Drives a simulated upstream through the cache, batcher and rate limiter."""
    try:
        outcome = asyncio.run(_simulate(requests, keys, rounds, profile, limiter, storage_dir))
    except Exception as e:
        logger.error(f"Simulation failed: {e}", exc_info=True)
        ui.display_error(f"Simulation failed: {e}")
        raise typer.Exit(code=1)

    ui.display_info(
        f"{requests * rounds} fetches -> {len(outcome['upstream_calls'])} upstream calls "
        f"(batch sizes {outcome['upstream_calls']}), {outcome['denied']} denied, {outcome['failed']} failed"
    )
    ui.display_cache_stats(profile, outcome['stats'])
    ui.display_rate_limiter(outcome['deps']['rate_limiter'])

# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()

if __name__ == "__main__":
    cli_entry_point()
