"""Command-line interface for the LP manager price indexer."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from collections.abc import Sequence

from pydantic import ValidationError

from lpmanager_indexer.chain.reader import ChainReader
from lpmanager_indexer.config import ConfigError, IngestionConfig, Settings, get_settings
from lpmanager_indexer.errors import IndexerError
from lpmanager_indexer.ingestion import IngestionRun, RunOutcome, RunStage
from lpmanager_indexer.snapshot.builder import SnapshotBuilder
from lpmanager_indexer.snapshot.models import Snapshot
from lpmanager_indexer.storage.database import DatabaseManager
from lpmanager_indexer.storage.store import SnapshotStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def _configure_logging(level: int) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _exit_code(outcome: RunOutcome | None) -> int:
    if outcome is None or outcome.ok:
        return EXIT_OK
    return EXIT_CONFIG if outcome.stage == RunStage.CONFIG else EXIT_FAILED


def _print_snapshot(snapshot: Snapshot) -> None:
    print(json.dumps(snapshot.to_row(), indent=2))


async def _run_loop(config: IngestionConfig, *, interval: float, max_runs: int | None) -> RunOutcome | None:
    """Re-invoke the run on a fixed cadence, one run at a time."""
    try:
        config.validate()
    except ConfigError:
        # Reported as a structured config-stage outcome
        return await IngestionRun(config).run()

    last: RunOutcome | None = None
    runs = 0
    async with ChainReader.from_config(config) as reader, SnapshotStore.from_config(config) as store:
        ingestion = IngestionRun(config, reader=reader, store=store)
        while max_runs is None or runs < max_runs:
            started = time.monotonic()
            last = await ingestion.run()
            runs += 1
            if not last.ok:
                logger.error("Run %d %s", runs, last.describe())
                if last.stage == RunStage.CONFIG:
                    break
            if max_runs is not None and runs >= max_runs:
                break
            await asyncio.sleep(max(0.0, interval - (time.monotonic() - started)))
    return last


def command_run(args: argparse.Namespace, settings: Settings) -> int:
    """Run ingestion once, or repeatedly with --loop."""
    config = IngestionConfig.from_settings(settings)

    if args.dry_run:
        return command_dry_run(config)

    try:
        if args.loop:
            interval = args.interval if args.interval is not None else settings.run_interval_seconds
            outcome = asyncio.run(_run_loop(config, interval=interval, max_runs=args.max_runs))
        else:
            outcome = asyncio.run(IngestionRun(config).run())
    except KeyboardInterrupt:
        print("Interrupted")
        return EXIT_INTERRUPTED

    if outcome is not None:
        print(f"Ingestion run {outcome.describe()}")
        if outcome.snapshot is not None:
            _print_snapshot(outcome.snapshot)
    return _exit_code(outcome)


async def _build_only(config: IngestionConfig) -> Snapshot:
    config.validate(require_store=False)
    async with ChainReader.from_config(config) as reader:
        builder = SnapshotBuilder(reader, pin_to_block=config.pin_reads_to_block)
        return await builder.build(config.valuation_target())


def command_dry_run(config: IngestionConfig) -> int:
    """Build one snapshot and print it without storing."""
    try:
        snapshot = asyncio.run(_build_only(config))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except IndexerError as e:
        print(f"Read failed: {type(e).__name__}: {e}", file=sys.stderr)
        return EXIT_FAILED
    _print_snapshot(snapshot)
    return EXIT_OK


def command_check_config(args: argparse.Namespace, settings: Settings) -> int:
    """Print active configuration (secrets redacted) and what is missing."""
    config = IngestionConfig.from_settings(settings)
    print("LP manager indexer configuration")
    print(json.dumps(settings.redacted_summary(), indent=2))
    if config.amount_in_decimals is not None:
        print(f"amount_in: {config.amount_in}")

    missing = config.missing()
    if missing:
        print(f"Missing required variables: {', '.join(missing)}")
        return EXIT_CONFIG
    try:
        config.validate()
    except ConfigError as e:
        print(f"Invalid configuration: {e}")
        return EXIT_CONFIG
    print("All required variables are set")
    return EXIT_OK


async def _check(config: IngestionConfig) -> list[tuple[str, bool, str]]:
    results: list[tuple[str, bool, str]] = []
    assert config.database_url and config.contract_address

    async with ChainReader.from_config(config) as reader:
        healthy = await reader.health_check()
        results.append(("rpc", healthy, config.rpc_url or ""))
        if healthy:
            try:
                chain_id = await reader.chain_id()
                results.append(("chain_id", chain_id == config.chain_id, f"node={chain_id} configured={config.chain_id}"))
                has_code = await reader.has_code(config.contract_address)
                results.append(("contract", has_code, config.contract_address))
                builder = SnapshotBuilder(reader, pin_to_block=config.pin_reads_to_block)
                snapshot = await builder.build(config.valuation_target())
                results.append(
                    (
                        "valuation",
                        True,
                        f"block={snapshot.block_number} spot={snapshot.fetch_spot} oracle={snapshot.fetch_oracle}",
                    )
                )
            except IndexerError as e:
                results.append(("valuation", False, f"{type(e).__name__}: {e}"))

    db = DatabaseManager(config.database_url, password=config.database_password)
    try:
        await db.ping()
        results.append(("database", True, "reachable"))
    except Exception as e:
        results.append(("database", False, f"{type(e).__name__}: {e}"))
    finally:
        await db.dispose_async()
    return results


def command_check(args: argparse.Namespace, settings: Settings) -> int:
    """Check RPC, contract and database connectivity without writing."""
    config = IngestionConfig.from_settings(settings)
    try:
        config.validate()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    results = asyncio.run(_check(config))
    for name, passed, detail in results:
        print(f"{'ok  ' if passed else 'FAIL'} {name}: {detail}")
    return EXIT_OK if all(passed for _, passed, _ in results) else EXIT_FAILED


async def _init_schema(config: IngestionConfig) -> None:
    assert config.database_url
    db = DatabaseManager(config.database_url, password=config.database_password)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()


def command_init_schema(args: argparse.Namespace, settings: Settings) -> int:
    """Create the price history table (development databases)."""
    config = IngestionConfig.from_settings(settings)
    if not config.database_url:
        print("Configuration error: DATABASE_URL is required", file=sys.stderr)
        return EXIT_CONFIG
    asyncio.run(_init_schema(config))
    print("Schema initialized")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lpmanager-indexer",
        description="Record LP manager spot/oracle valuations as append-only price history.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one ingestion cycle (or loop)")
    run_parser.add_argument("--loop", action="store_true", help="Re-run every RUN_INTERVAL_SECONDS")
    run_parser.add_argument("--interval", type=float, help="Override RUN_INTERVAL_SECONDS for --loop")
    run_parser.add_argument("--max-runs", type=int, help="Stop --loop after this many runs")
    run_parser.add_argument("--dry-run", action="store_true", help="Read and print a snapshot without storing")
    run_parser.set_defaults(func=command_run)

    check_config_parser = subparsers.add_parser("check-config", help="Show configuration with secrets redacted")
    check_config_parser.set_defaults(func=command_check_config)

    check_parser = subparsers.add_parser("check", help="Check RPC, contract and database connectivity")
    check_parser.set_defaults(func=command_check)

    init_parser = subparsers.add_parser("init-schema", help="Create the price history table")
    init_parser.set_defaults(func=command_init_schema)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        _configure_logging(logging.INFO)
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    _configure_logging(settings.get_logging_level())
    code: int = args.func(args, settings)
    return code


if __name__ == "__main__":
    sys.exit(main())
