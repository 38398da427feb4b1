"""
Command-line interface for domain-dash.

This module provides the CLI entry point with commands for:
- add / remove / list: manage monitored domains
- check: run one check cycle (all domains or a single one)
- watch: run the cycle scheduler until interrupted
- self-test: probe every provider with a known registered name
- config: configuration management (show, init, validate)

All commands accept --dry-run, which swaps network lookups for simulated
answers (names starting with 'available-' are free).
"""

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from . import __version__
from .config import (
    EngineConfig,
    HealthConfig,
    LoggingConfig,
    PersistenceConfig,
    ProviderConfig,
    RateLimitConfig,
    RateLimitRule,
    RetryConfig,
    RetryPolicy,
    SystemConfig,
    apply_env_overrides,
    create_default_config,
    default_state_file,
)
from .domain_validator import DomainValidator, build_fqdn
from .enums import AvailabilityStatus, EventType
from .events import Event
from .exceptions import CycleAlreadyRunningError, DomainDashError
from .models import Domain
from .orchestrator import DomainDash
from .state_store import StateStore


DEFAULT_CONFIG_PATH = Path.home() / ".domain_dash" / "config.json"

STATUS_LABELS = {
    AvailabilityStatus.AVAILABLE: "AVAILABLE",
    AvailabilityStatus.TAKEN: "taken",
    AvailabilityStatus.UNKNOWN: "unknown",
}


def load_config_from_file(config_path: Path) -> Optional[SystemConfig]:
    """
    Load configuration from a JSON file.

    Missing sections fall back to their defaults.

    Args:
        config_path: Path to the configuration file

    Returns:
        SystemConfig if successful, None otherwise
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        defaults = create_default_config()

        engine = EngineConfig(**data.get("engine", {}))
        rate_limits = RateLimitConfig(per_provider={
            **defaults.rate_limits.per_provider,
            **{
                pid: RateLimitRule(**rule)
                for pid, rule in data.get("rate_limits", {}).items()
            },
        })

        retry_data = data.get("retry", {})
        retry = RetryConfig(
            default=RetryPolicy(**retry_data.get("default", {})),
            per_provider={
                **defaults.retry.per_provider,
                **{
                    pid: RetryPolicy(**policy)
                    for pid, policy in retry_data.get("per_provider", {}).items()
                },
            },
        )

        persistence_data = data.get("persistence", {})
        state_file_path = persistence_data.get("state_file_path")
        persistence = PersistenceConfig(
            state_file_path=Path(state_file_path) if state_file_path else default_state_file(),
            hmac_secret=persistence_data.get("hmac_secret", defaults.persistence.hmac_secret),
        )

        return SystemConfig(
            engine=engine,
            rate_limits=rate_limits,
            retry=retry,
            health=HealthConfig(**data.get("health", {})),
            providers=ProviderConfig(**data.get("providers", {})),
            persistence=persistence,
            logging=LoggingConfig(**data.get("logging", {})),
            simulation_mode=data.get("simulation_mode", False),
        )

    except (json.JSONDecodeError, KeyError, TypeError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return None
    except FileNotFoundError:
        return None


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Args:
        config: SystemConfig to save
        config_path: Path to save the configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "engine": asdict(config.engine),
            "rate_limits": {
                pid: asdict(rule) for pid, rule in config.rate_limits.per_provider.items()
            },
            "retry": {
                "default": asdict(config.retry.default),
                "per_provider": {
                    pid: asdict(policy) for pid, policy in config.retry.per_provider.items()
                },
            },
            "health": asdict(config.health),
            "providers": asdict(config.providers),
            "persistence": {
                "state_file_path": (
                    str(config.persistence.state_file_path)
                    if config.persistence.state_file_path else None
                ),
                "hmac_secret": config.persistence.hmac_secret,
            },
            "logging": asdict(config.logging),
            "simulation_mode": config.simulation_mode,
        }

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        return True

    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def resolve_config(args: argparse.Namespace) -> Optional[SystemConfig]:
    """Load the config file (if any), then apply environment and flag overrides."""
    config = None
    config_path = getattr(args, "config", None)
    if config_path:
        config = load_config_from_file(Path(config_path))
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return None

    if config is None:
        config = create_default_config()

    apply_env_overrides(config)

    if getattr(args, "dry_run", False):
        config.simulation_mode = True
    if getattr(args, "state_file", None):
        config.persistence.state_file_path = Path(args.state_file)
    if getattr(args, "verbose", False):
        config.logging.level = "debug"

    return config


def open_storage(config: SystemConfig) -> StateStore:
    return StateStore(
        file_path=config.persistence.state_file_path,
        hmac_secret=config.persistence.hmac_secret,
    )


def format_domain(domain: Domain) -> list[str]:
    """Render a domain and its per-extension results as text lines."""
    lines = [f"{domain.name}  (last checked: {domain.last_checked or 'never'})"]
    for ext in domain.extensions:
        result = domain.results.get(ext)
        fqdn = build_fqdn(domain.name, ext)
        if result is None:
            lines.append(f"  {fqdn:<40} pending")
            continue
        label = STATUS_LABELS[result.status]
        extra = []
        if result.via:
            extra.append(f"via {result.via}")
        if result.degraded:
            extra.append("degraded")
        if result.warning:
            extra.append(f"warning: {result.warning}")
        if result.error:
            extra.append(f"error: {result.error}")
        suffix = f"  ({', '.join(extra)})" if extra else ""
        lines.append(f"  {fqdn:<40} {label}{suffix}")
    return lines


def print_event(event: Event) -> None:
    """Console subscriber for engine and scheduler events."""
    if event.type == EventType.AVAILABLE:
        print(f"*** {event['fqdn']} is AVAILABLE (via {event['via']})")
    elif event.type == EventType.CYCLE_STARTED:
        print(f"Cycle started: {event['domain_count']} domain(s)")
    elif event.type == EventType.CYCLE_COMPLETE:
        print(f"Cycle complete in {event['duration_ms'] / 1000:.1f}s")
    elif event.type == EventType.CYCLE_SKIPPED:
        print(f"Cycle skipped: {event['reason']}")
    elif event.type == EventType.CYCLE_FAILED:
        print(f"Cycle failed: {event['error']}", file=sys.stderr)
    elif event.type == EventType.PROVIDER_UNHEALTHY:
        print(f"Provider {event['provider']} is unhealthy", file=sys.stderr)
    elif event.type == EventType.PROVIDER_RECOVERED:
        print(f"Provider {event['provider']} recovered")
    elif event.type == EventType.DOMAIN_CHECK_FAILED:
        print(f"Check failed for {event['domain']}: {event['error']}", file=sys.stderr)


def cmd_add(args: argparse.Namespace) -> int:
    """Handle the 'add' command."""
    config = resolve_config(args)
    if config is None:
        return 1

    result = DomainValidator().validate(args.name)
    if not result.valid:
        print(f"Error: {result.error.message}", file=sys.stderr)
        return 1

    storage = open_storage(config)
    domain = storage.add_domain(result.canonical_name, args.extensions or None)
    print(f"Monitoring {domain.name}: {', '.join(domain.extensions)}")
    return 0


def cmd_remove(args: argparse.Namespace) -> int:
    """Handle the 'remove' command."""
    config = resolve_config(args)
    if config is None:
        return 1

    if open_storage(config).remove_domain(args.name):
        print(f"Removed {args.name}")
        return 0
    print(f"Not monitored: {args.name}", file=sys.stderr)
    return 1


def cmd_list(args: argparse.Namespace) -> int:
    """Handle the 'list' command."""
    config = resolve_config(args)
    if config is None:
        return 1

    storage = open_storage(config)
    domains = storage.get_domains()
    if not domains:
        print("No domains monitored. Use 'add' to add one.")
        return 0

    for domain in domains:
        print("\n".join(format_domain(domain)))

    stats = storage.get_stats()
    print(
        f"\n{stats['domains']} domain(s), {stats['available']} available, "
        f"{stats['taken']} taken, {stats['unknown']} unknown"
    )
    return 0


async def run_check(config: SystemConfig, name: Optional[str]) -> int:
    async with DomainDash(config) as app:
        app.events.subscribe_all(print_event)

        if name is not None:
            domain = app.storage.get_domain(name)
            if domain is None:
                result = DomainValidator().validate(name)
                if not result.valid:
                    print(f"Error: {result.error.message}", file=sys.stderr)
                    return 1
                domain = app.storage.add_domain(result.canonical_name)
            targets = [domain]
        else:
            targets = None

        try:
            checked = await app.scheduler.trigger_check(targets)
        except CycleAlreadyRunningError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            return 1

        for domain in checked:
            print("\n".join(format_domain(domain)))

        return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Handle the 'check' command."""
    config = resolve_config(args)
    if config is None:
        return 1
    return asyncio.run(run_check(config, args.name))


async def run_watch(config: SystemConfig, interval: Optional[float]) -> int:
    async with DomainDash(config) as app:
        app.events.subscribe_all(print_event)
        app.scheduler.start(interval)
        status = app.scheduler.get_status()
        print(
            f"Watching {status.domain_count} domain(s) every "
            f"{status.interval_minutes:g} minute(s). Press Ctrl+C to stop."
        )
        try:
            await asyncio.Event().wait()
        finally:
            app.scheduler.stop()
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    """Handle the 'watch' command."""
    config = resolve_config(args)
    if config is None:
        return 1

    if args.interval is not None:
        # Persist the new interval before the scheduler reads it
        storage = open_storage(config)
        storage.set_setting("checkInterval", args.interval)

    try:
        return asyncio.run(run_watch(config, args.interval))
    except KeyboardInterrupt:
        print("\nStopped.")
        return 0


async def run_self_test(config: SystemConfig, test_domain: str) -> int:
    async with DomainDash(config, storage=StateStore()) as app:
        failures = 0
        for provider_id in app.engine.provider_order:
            result = await app.engine.test_provider(provider_id, test_domain)
            ok = result.error is None
            failures += 0 if ok else 1
            verdict = STATUS_LABELS[result.status]
            detail = f"error: {result.error}" if result.error else verdict
            print(f"  [{'OK' if ok else 'FAIL'}] {provider_id:<6} {result.duration_ms:8.0f} ms  {detail}")

        health = app.engine.get_provider_health()
        healthy = sum(1 for h in health.values() if h["is_healthy"])
        print(f"{healthy}/{len(health)} provider(s) healthy")
        return 0 if failures == 0 else 1


def cmd_self_test(args: argparse.Namespace) -> int:
    """Handle the 'self-test' command."""
    config = resolve_config(args)
    if config is None:
        return 1
    print(f"Self-test against {args.domain}:")
    return asyncio.run(run_self_test(config, args.domain))


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else DEFAULT_CONFIG_PATH

    if args.action == "show":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"No configuration found at: {config_path}")
            print("Use 'config init' to create a default configuration.")
            return 1

        print(f"Configuration from: {config_path}")
        print(f"  Providers: {', '.join(config.engine.providers)}")
        print(f"  Concurrency: {config.engine.concurrency}")
        print(f"  Provider timeout: {config.engine.provider_timeout_seconds}s")
        print(f"  Check timeout: {config.engine.check_timeout_seconds}s")
        print(f"  Graceful degradation: {config.engine.graceful_degradation}")
        print(f"  Simulation mode: {config.simulation_mode}")
        print(f"  State file: {config.persistence.state_file_path}")
        print(f"  Log level: {config.logging.level}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        if save_config_to_file(create_default_config(), config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        return 1

    elif args.action == "validate":
        config = load_config_from_file(config_path)
        if config is None:
            print(f"Error: Could not load config from {config_path}", file=sys.stderr)
            return 1

        unknown = [pid for pid in config.engine.providers if pid not in config.rate_limits.per_provider]
        if unknown:
            print(f"Error: no rate limit rule for provider(s): {', '.join(unknown)}", file=sys.stderr)
            return 1

        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    parser.add_argument(
        "--state-file",
        help="Path to the state file (overrides configuration)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulation mode - no real network requests",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="domain-dash",
        description="Monitor domain availability across RDAP, WHOIS and DNS",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    add_parser = subparsers.add_parser("add", help="Monitor a domain name")
    add_parser.add_argument("name", help="Base name, e.g. 'mystartup'")
    add_parser.add_argument(
        "--ext", "-e",
        dest="extensions",
        action="append",
        help="Extension to monitor (repeatable, default: configured list)",
    )
    _add_common_arguments(add_parser)
    add_parser.set_defaults(func=cmd_add)

    remove_parser = subparsers.add_parser("remove", help="Stop monitoring a domain")
    remove_parser.add_argument("name", help="Base name to remove")
    _add_common_arguments(remove_parser)
    remove_parser.set_defaults(func=cmd_remove)

    list_parser = subparsers.add_parser("list", help="Show monitored domains and results")
    _add_common_arguments(list_parser)
    list_parser.set_defaults(func=cmd_list)

    check_parser = subparsers.add_parser("check", help="Run one check cycle now")
    check_parser.add_argument(
        "name",
        nargs="?",
        help="Only check this name (added if not yet monitored)",
    )
    _add_common_arguments(check_parser)
    check_parser.set_defaults(func=cmd_check)

    watch_parser = subparsers.add_parser("watch", help="Check periodically until interrupted")
    watch_parser.add_argument(
        "--interval", "-i",
        type=float,
        help="Minutes between cycles (minimum 1, persisted)",
    )
    _add_common_arguments(watch_parser)
    watch_parser.set_defaults(func=cmd_watch)

    self_test_parser = subparsers.add_parser(
        "self-test",
        help="Probe every provider to verify connectivity",
    )
    self_test_parser.add_argument(
        "--domain",
        default="google.com",
        help="Registered name used for the probe (default: google.com)",
    )
    _add_common_arguments(self_test_parser)
    self_test_parser.set_defaults(func=cmd_self_test)

    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except DomainDashError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
