"""CrowdPulse CLI entry point."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

env_file = Path(__file__).parent.parent / ".env"
load_dotenv(env_file)

from crowdpulse import __version__
from crowdpulse.config import Settings, get_settings
from crowdpulse.engine import AliasRules
from crowdpulse.scheduler import PredictionScheduler, TickResult
from crowdpulse.services.provider import PredictionProviderClient
from crowdpulse.storage import FileEventRepository, RepositoryError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)

CONFIG_TEMPLATE = """# CrowdPulse Configuration
# Operational parameters for the prediction scheduler.
# Secrets (Logfire token) belong in the .env file, not here.

scheduler:
  enabled: true
  cadence: "*/5 * * * *"
  timezone: "Asia/Kuala_Lumpur"
  lead_time_minutes: 60
  max_concurrency: null
  local_day_prefilter: false
  dedup_bucket_seconds: null

provider:
  endpoint: "http://localhost:8080/predict"
  timeout_seconds: 30
  health_timeout_seconds: 5
  forecast_minutes: 5
  source_tag: "external-model"

gates:
  prefix: "gate_"
  letter_offset: 3
"""


def _init_logfire() -> None:
    """Initialize Logfire if available, without failing commands."""
    try:
        from crowdpulse.observability import initialize_logfire

        initialize_logfire(get_settings())
    except Exception as e:
        logger.warning(f"Failed to initialize Logfire: {e}")


def _build_scheduler(
    settings: Settings, provider: PredictionProviderClient
) -> PredictionScheduler:
    repository = FileEventRepository(
        settings.data_dir, default_timezone=settings.scheduler.tzinfo
    )
    return PredictionScheduler(
        settings.scheduler,
        provider,
        repository,
        alias_rules=AliasRules.from_config(settings.gates),
        source=settings.provider.source_tag,
    )


def _print_tick(result: TickResult) -> None:
    print(f"Candidates: {result.candidates}")
    print(f"Live events: {result.live}")
    print(f"Succeeded: {result.succeeded}")
    print(f"Failed: {result.failed}")
    print(f"Skipped (in flight): {result.skipped_in_flight}")
    print(f"Duration: {result.duration_seconds:.2f}s\n")

    if result.error:
        print(f"Tick error: {result.error}\n")

    for outcome in result.outcomes:
        if outcome.success:
            print(
                f"  ✓ {outcome.event_id}: {outcome.readings_appended} readings "
                f"across {outcome.gates} gates"
            )
        else:
            print(f"  ✗ {outcome.event_id}: {outcome.failure} ({outcome.error})")
    if result.outcomes:
        print()


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize data directory structure and configuration file."""
    data_dir = Path("data").resolve()

    try:
        (data_dir / "events").mkdir(parents=True, exist_ok=True)
        logger.info(f"Created data directory: {data_dir}")

        config_path = data_dir / "config.yaml"
        if not config_path.exists():
            config_path.write_text(CONFIG_TEMPLATE)
            logger.info(f"Created config template: {config_path}")
        else:
            logger.info(f"Config file already exists: {config_path}")

        print(f"\n✓ Data directory initialized at {data_dir}")
        print("\nNext steps:")
        print("1. Copy .env.example to .env and add your Logfire token (optional)")
        print("2. Point provider.endpoint in data/config.yaml at the prediction model")
        print("3. Drop event documents into data/events/<event_id>.yaml")
        print("4. Run 'python -m crowdpulse run' to start the scheduler\n")

        return 0

    except Exception as e:
        logger.error(f"Failed to initialize: {e}")
        print(f"\n❌ Initialization failed: {e}\n")
        return 1


def cmd_config(args: argparse.Namespace) -> int:
    """Display merged configuration."""
    try:
        settings = get_settings()

        print("\n=== CrowdPulse Configuration ===\n")
        print(f"Data Directory: {settings.data_dir}")
        print(f"Environment: {settings.environment}\n")

        scheduler = settings.scheduler
        print("Scheduler:")
        print(f"  Enabled: {scheduler.enabled}")
        print(f"  Cadence: {scheduler.cadence}")
        print(f"  Timezone: {scheduler.timezone}")
        print(f"  Lead Time: {scheduler.lead_time_minutes} min")
        print(f"  Max Concurrency: {scheduler.max_concurrency or 'unbounded'}")
        print(f"  Local-Day Prefilter: {scheduler.local_day_prefilter}")
        print(f"  Dedup Bucket: {scheduler.dedup_bucket_seconds or 'off'}\n")

        provider = settings.provider
        print("Provider:")
        print(f"  Endpoint: {provider.endpoint}")
        print(f"  Timeout: {provider.timeout_seconds}s")
        print(f"  Health Timeout: {provider.health_timeout_seconds}s")
        print(f"  Forecast Minutes: {provider.forecast_minutes}")
        print(f"  Source Tag: {provider.source_tag}\n")

        print("Gate Aliases:")
        print(f"  Prefix: {settings.gates.prefix}")
        print(f"  Letter Offset: {settings.gates.letter_offset}\n")

        print("Observability:")
        print(f"  Logfire: {'✓ Set' if settings.logfire_token else '✗ Not set'}\n")

        return 0

    except ValidationError as e:
        print("\n❌ Configuration Error:\n")
        for error in e.errors():
            print(f"  • {'.'.join(str(x) for x in error['loc'])}: {error['msg']}")
        print()
        return 1
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        print(f"\n❌ Failed to load configuration: {e}\n")
        return 1


def cmd_status(args: argparse.Namespace) -> int:
    """Display tracked events and the size of their prediction series."""
    try:
        settings = get_settings()
        repository = FileEventRepository(
            settings.data_dir, default_timezone=settings.scheduler.tzinfo
        )

        if not repository.events_dir.exists():
            print(f"\n❌ Events directory not found: {repository.events_dir}")
            print("Run 'python -m crowdpulse init' to create it.\n")
            return 1

        events = asyncio.run(repository.list_events())

        print("\n=== CrowdPulse Event Status ===\n")
        print(f"Events: {len(events)}")
        if not events:
            print("  (None)")
        for event in events:
            readings = sum(len(s.timeframes) for s in event.series.values())
            forecast = "forecast" if event.forecast is not None else "no forecast"
            print(
                f"  • {event.id} ({event.name or 'unnamed'}): "
                f"{event.start_utc:%Y-%m-%d %H:%M} -> {event.end_utc:%Y-%m-%d %H:%M} UTC, "
                f"{forecast}, {len(event.series)} gates, {readings} readings"
            )
        print()

        return 0

    except Exception as e:
        logger.error(f"Failed to read status: {e}")
        print(f"\n❌ Failed to read status: {e}\n")
        return 1


def cmd_tick(args: argparse.Namespace) -> int:
    """Run a single prediction update across live events."""
    _init_logfire()

    try:
        settings = get_settings()
        print("\n=== Prediction Update ===\n")

        async def run() -> TickResult:
            async with PredictionProviderClient(settings.provider) as provider:
                scheduler = _build_scheduler(settings, provider)
                return await scheduler.trigger_now()

        result = asyncio.run(run())

        print("✓ Prediction update complete\n")
        _print_tick(result)

        return 0 if result.error is None else 1

    except (RepositoryError, ValueError) as e:
        logger.error(f"Prediction update failed: {e}")
        print(f"\n❌ Prediction update failed: {e}\n")
        return 1
    except Exception as e:
        logger.error(f"Prediction update failed: {e}", exc_info=True)
        print(f"\n❌ Prediction update failed: {e}\n")
        return 1


def cmd_health(args: argparse.Namespace) -> int:
    """Probe the prediction model's health endpoint."""
    try:
        settings = get_settings()

        async def run():
            async with PredictionProviderClient(settings.provider) as provider:
                return await provider.health_check()

        health = asyncio.run(run())

        print("\n=== Prediction Provider Health ===\n")
        print(f"Endpoint: {health.endpoint}")
        print(f"Healthy: {'✓ Yes' if health.healthy else '✗ No'}")
        if health.status_code is not None:
            print(f"Status Code: {health.status_code}")
        if health.error:
            print(f"Error: {health.error}")
        print()

        return 0 if health.healthy else 1

    except Exception as e:
        logger.error(f"Health check failed: {e}")
        print(f"\n❌ Health check failed: {e}\n")
        return 1


async def _run_forever(settings: Settings) -> None:
    async with PredictionProviderClient(settings.provider) as provider:
        scheduler = _build_scheduler(settings, provider)
        if not scheduler.start():
            print("Scheduler not started (disabled in configuration).\n")
            return

        next_run = scheduler.next_run_time()
        print(f"Next prediction update: {next_run}\n")
        print("Press Ctrl+C to stop.\n")
        try:
            await asyncio.Event().wait()
        finally:
            scheduler.stop()


def cmd_run(args: argparse.Namespace) -> int:
    """Start the prediction scheduler."""
    try:
        _init_logfire()

        if args.debug:
            logging.getLogger().setLevel(logging.DEBUG)

        settings = get_settings()

        print("\n=== CrowdPulse Prediction Scheduler ===\n")
        print(f"Version: {__version__}")
        print(f"Cadence: {settings.scheduler.cadence} ({settings.scheduler.timezone})")
        print(f"Provider: {settings.provider.endpoint}")
        print(f"Data Directory: {settings.data_dir}\n")

        if args.once:
            print("Running one prediction update...\n")

            async def run_once() -> TickResult:
                async with PredictionProviderClient(settings.provider) as provider:
                    return await _build_scheduler(settings, provider).run_tick()

            _print_tick(asyncio.run(run_once()))
            print("Prediction update complete.\n")
            return 0

        print("Starting scheduler...\n")
        asyncio.run(_run_forever(settings))

        return 0

    except KeyboardInterrupt:
        print("\n\nReceived interrupt signal. Shutting down...\n")
        return 0
    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}", exc_info=True)
        print(f"\nFailed to start: {e}\n")
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Serve the operational HTTP API with the scheduler attached."""
    try:
        import uvicorn

        from crowdpulse.api.server import create_app

        _init_logfire()

        if args.debug:
            logging.getLogger().setLevel(logging.DEBUG)

        app = create_app(get_settings())
        uvicorn.run(app, host=args.host, port=args.port, log_level="info")
        return 0

    except KeyboardInterrupt:
        print("\n\nReceived interrupt signal. Shutting down...\n")
        return 0
    except Exception as e:
        logger.error(f"Failed to start API server: {e}", exc_info=True)
        print(f"\nFailed to start: {e}\n")
        return 1


def main() -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="CrowdPulse: scheduled crowd-prediction updates for live events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"CrowdPulse {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    parser_init = subparsers.add_parser(
        "init",
        help="Initialize data directory and configuration file",
    )
    parser_init.set_defaults(func=cmd_init)

    parser_config = subparsers.add_parser(
        "config",
        help="Display merged configuration",
    )
    parser_config.set_defaults(func=cmd_config)

    parser_status = subparsers.add_parser(
        "status",
        help="Display tracked events and series sizes",
    )
    parser_status.set_defaults(func=cmd_status)

    parser_tick = subparsers.add_parser(
        "tick",
        help="Run one prediction update now",
    )
    parser_tick.set_defaults(func=cmd_tick)

    parser_health = subparsers.add_parser(
        "health",
        help="Check the prediction model's health endpoint",
    )
    parser_health.set_defaults(func=cmd_health)

    parser_run = subparsers.add_parser(
        "run",
        help="Start the prediction scheduler",
    )
    parser_run.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser_run.add_argument(
        "--once",
        action="store_true",
        help="Run a single prediction update then exit",
    )
    parser_run.set_defaults(func=cmd_run)

    parser_serve = subparsers.add_parser(
        "serve",
        help="Serve the operational API (starts the scheduler in-process)",
    )
    parser_serve.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser_serve.add_argument("--port", type=int, default=8000, help="Bind port")
    parser_serve.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser_serve.set_defaults(func=cmd_serve)

    args = parser.parse_args()

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
