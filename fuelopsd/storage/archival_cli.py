"""
Archival CLI for the fuelops data lifecycle engine.

This module provides the on-demand trigger for archival runs plus restore,
statistics, job history and archived-record queries.
"""

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Any, List, Optional

import structlog
import yaml

from ..config.archival_config import ArchivalSettings, load_archival_settings
from ..monitoring.archival_metrics import ArchivalMetricsCollector
from .archival_jobs import JobRecordStore, ArchivalLease
from .archival_models import ArchivalOptions, CancellationToken, ConflictPolicy, RetentionClass
from .archival_orchestrator import ArchivalOrchestrator
from .archival_registry import ArchivalRegistry, build_registry
from .archival_restore import ArchiveRestorer
from .archival_stats import ArchivalStatsReporter
from .retention_config import RetentionResolver, YamlRetentionSettings, write_default_config


def setup_logging(verbose: bool = False, log_file: Optional[str] = None):
    """Setup stdlib logging and route structlog through it."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=['event'])
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True
    )


@dataclass
class ArchivalServices:
    """Everything the CLI commands need, wired from one settings object."""
    settings: ArchivalSettings
    registry: ArchivalRegistry
    job_store: JobRecordStore
    resolver: RetentionResolver
    orchestrator: ArchivalOrchestrator
    restorer: ArchiveRestorer
    stats_reporter: ArchivalStatsReporter
    metrics: ArchivalMetricsCollector


def create_archival_services(settings: ArchivalSettings) -> ArchivalServices:
    """Build the registry, stores and components described by ``settings``."""
    registry = build_registry(settings.hot_db_path, settings.cold_db_path)
    job_store = JobRecordStore(settings.jobs_db_path)
    lease = ArchivalLease(settings.jobs_db_path, ttl=timedelta(hours=settings.lease_ttl_hours))
    resolver = RetentionResolver(YamlRetentionSettings(settings.retention_config_path))
    stats_reporter = ArchivalStatsReporter(registry, job_store)
    metrics = ArchivalMetricsCollector(stats_reporter)

    orchestrator = ArchivalOrchestrator(
        registry, resolver, job_store, lease=lease, metrics=metrics
    )
    return ArchivalServices(
        settings=settings,
        registry=registry,
        job_store=job_store,
        resolver=resolver,
        orchestrator=orchestrator,
        restorer=ArchiveRestorer(registry),
        stats_reporter=stats_reporter,
        metrics=metrics
    )


def _parse_date(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date (expected ISO format): {value}")


def _parse_filters(pairs: Optional[List[str]]) -> Dict[str, Any]:
    filters: Dict[str, Any] = {}
    for pair in pairs or []:
        if '=' not in pair:
            raise ValueError(f"Invalid filter {pair!r}, expected field=value")
        key, raw = pair.split('=', 1)
        # YAML scalars give numbers and booleans their natural types
        filters[key] = yaml.safe_load(raw)
    return filters


def _install_cancel_handlers(token: CancellationToken):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, token.cancel, "interrupted")
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable on this platform or thread
            pass


async def run_archival(services: ArchivalServices, args) -> int:
    """Run an archival pass and print the per-entity-type results."""
    settings = services.settings
    options = ArchivalOptions(
        months_to_keep=args.months or settings.months_to_keep,
        audit_log_months_to_keep=args.audit_months or settings.audit_log_months_to_keep,
        dry_run=args.dry_run,
        collections=args.collections,
        batch_size=args.batch_size or settings.batch_size,
        continue_on_error=args.continue_on_error
    )

    token = CancellationToken()
    _install_cancel_handlers(token)

    print(f"Starting archival (dry_run={options.dry_run})...")
    result = await services.orchestrator.run(options, initiated_by=args.initiated_by, cancel_token=token)

    verb = "would archive" if result.dry_run else "archived"
    for entity_type, collection in result.collections_archived.items():
        line = f"  {entity_type}: {verb} {collection.records_archived:,} records in {collection.duration_ms} ms"
        if collection.records_skipped:
            line += f" ({collection.records_skipped:,} skipped)"
        print(line)

    print(f"\nTotal records {verb}: {result.total_records_archived:,}")
    print(f"Duration: {result.total_duration_ms} ms")

    for error in result.errors:
        print(f"  Error: {error}")

    return 0 if result.success else 1


async def run_restore(services: ArchivalServices, args) -> int:
    result = await services.restorer.restore(
        args.entity_type,
        start_date=args.start,
        end_date=args.end,
        on_conflict=ConflictPolicy(args.on_conflict),
        batch_size=args.batch_size or services.settings.batch_size
    )
    print(f"Restored {result.records_restored:,} {args.entity_type} records")
    if result.records_skipped:
        print(f"Skipped {result.records_skipped:,} records (left in the archive)")
    return 0


async def show_stats(services: ArchivalServices, args) -> int:
    stats = await services.stats_reporter.get_stats()

    print("Archival Statistics")
    print("=" * 40)
    print(f"{'Entity type':<20}{'Active':>10}{'Archived':>10}")
    for entity_type in services.registry.names():
        active = stats.active_records.get(entity_type, 0)
        archived = stats.archived_records.get(entity_type, 0)
        print(f"{entity_type:<20}{active:>10,}{archived:>10,}")

    print(f"\nLast archival: {stats.last_archival_date or 'Never'}")
    print(f"Estimated space saved: {stats.total_space_saved}")
    return 0


async def show_history(services: ArchivalServices, args) -> int:
    jobs = await services.stats_reporter.get_history(limit=args.limit, collection_name=args.collection)

    print("Archival History")
    print("=" * 40)
    if not jobs:
        print("No archival jobs recorded")
        return 0

    for job in jobs:
        status_icon = "✓" if job.status.value == 'completed' else ("✗" if job.status.value == 'failed' else "…")
        print(f"{status_icon} #{job.id} {job.collection_name}: {job.records_archived:,} records, "
              f"{job.status.value}, started {job.archival_date.isoformat()}, by {job.initiated_by}")
        if job.error:
            print(f"  Error: {job.error}")
    return 0


async def show_policies(services: ArchivalServices, args) -> int:
    settings = services.settings

    print("Archival Retention Policies")
    print("=" * 50)
    for entity in services.registry:
        default_months = (settings.audit_log_months_to_keep
                          if entity.entity_type.retention_class == RetentionClass.AUDIT
                          else settings.months_to_keep)
        decision = await services.resolver.resolve(entity.name, default_months)
        status = f"{decision.months} months" if decision.enabled else "DISABLED"
        print(f"  {entity.name:<20}{status:<12} {entity.entity_type.hot_table} -> "
              f"{entity.entity_type.cold_table} ({entity.entity_type.date_field})")
    return 0


async def query_archive(services: ArchivalServices, args) -> int:
    documents = await services.restorer.query_archived(
        args.entity_type,
        filters=_parse_filters(args.filter),
        limit=args.limit,
        skip=args.skip,
        sort_field=args.sort_field,
        descending=not args.ascending
    )
    for document in documents:
        print(yaml.safe_dump(
            {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in document.items()},
            default_flow_style=True, sort_keys=False
        ).strip())
    print(f"\n{len(documents)} archived records")
    return 0


async def show_metrics(services: ArchivalServices, args) -> int:
    await services.metrics.collect()
    print(services.metrics.export_text())

    summary = services.metrics.get_metrics_summary()
    print(f"# collector={summary['collector_type']} collections={summary['collection_count']} "
          f"uptime={summary['uptime_seconds']:.1f}s")
    return 0


def init_config(settings: ArchivalSettings, args) -> int:
    path = write_default_config(settings.retention_config_path, overwrite=args.force)
    print(f"Wrote default retention configuration to {path}")
    return 0


COMMANDS = {
    'run': run_archival,
    'restore': run_restore,
    'stats': show_stats,
    'history': show_history,
    'policies': show_policies,
    'query': query_archive,
    'metrics': show_metrics,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='fuelops-archival',
        description="Fuelops Data Archival CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Archive everything past its retention period
  fuelops-archival run

  # See what would be archived without touching any data
  fuelops-archival run --dry-run

  # Archive specific entity types only
  fuelops-archival run --collections FuelRecord LPOEntry

  # Restore fuel records archived in January
  fuelops-archival restore FuelRecord --start 2024-01-01 --end 2024-01-31

  # Show active versus archived counts
  fuelops-archival stats
        """
    )

    parser.add_argument('--settings', default=None,
                        help='Path to archival settings file (default: configs/archival.yaml)')
    parser.add_argument('--retention-config', default=None,
                        help='Path to retention policy file')
    parser.add_argument('--hot-db', default=None, help='Path to the active records database')
    parser.add_argument('--cold-db', default=None, help='Path to the archive database')
    parser.add_argument('--jobs-db', default=None, help='Path to the job records database')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    run_parser = subparsers.add_parser('run', help='Run archival')
    run_parser.add_argument('--dry-run', action='store_true',
                            help='Count eligible records without moving anything')
    run_parser.add_argument('--collections', nargs='+',
                            help='Entity types to archive (default: all)')
    run_parser.add_argument('--batch-size', type=int, help='Records per batch')
    run_parser.add_argument('--months', type=int, help='Default months of data to keep')
    run_parser.add_argument('--audit-months', type=int, help='Default months of audit logs to keep')
    run_parser.add_argument('--continue-on-error', action='store_true',
                            help='Keep archiving other entity types after a failure')
    run_parser.add_argument('--initiated-by', default='cli', help='Recorded on job records')

    restore_parser = subparsers.add_parser('restore', help='Restore archived records')
    restore_parser.add_argument('entity_type', help='Entity type to restore')
    restore_parser.add_argument('--start', type=_parse_date, help='Earliest archival time (ISO)')
    restore_parser.add_argument('--end', type=_parse_date, help='Latest archival time (ISO)')
    restore_parser.add_argument('--on-conflict', choices=[p.value for p in ConflictPolicy],
                                default=ConflictPolicy.FAIL.value,
                                help='What to do when an active record has the same identity')
    restore_parser.add_argument('--batch-size', type=int, help='Records per batch')

    subparsers.add_parser('stats', help='Show active and archived record counts')

    history_parser = subparsers.add_parser('history', help='Show recent archival jobs')
    history_parser.add_argument('--limit', type=int, default=50, help='Number of jobs to show')
    history_parser.add_argument('--collection', help='Only jobs for this entity type')

    subparsers.add_parser('policies', help='Show effective retention per entity type')

    query_parser = subparsers.add_parser('query', help='Query archived records')
    query_parser.add_argument('entity_type', help='Entity type to query')
    query_parser.add_argument('--filter', nargs='+', metavar='FIELD=VALUE',
                              help='Equality filters on top-level fields')
    query_parser.add_argument('--limit', type=int, default=100)
    query_parser.add_argument('--skip', type=int, default=0)
    query_parser.add_argument('--sort-field', default='archivedAt')
    query_parser.add_argument('--ascending', action='store_true')

    subparsers.add_parser('metrics', help='Print Prometheus metrics')

    init_parser = subparsers.add_parser('init-config', help='Write the default retention policy file')
    init_parser.add_argument('--force', action='store_true', help='Overwrite an existing file')

    return parser


def _apply_overrides(settings: ArchivalSettings, args) -> ArchivalSettings:
    overrides = {
        'retention_config_path': args.retention_config,
        'hot_db_path': args.hot_db,
        'cold_db_path': args.cold_db,
        'jobs_db_path': args.jobs_db,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if not overrides:
        return settings
    return ArchivalSettings(**{**dict(settings), **overrides})


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = _apply_overrides(load_archival_settings(args.settings), args)
    except Exception as e:
        print(f"Invalid settings: {e}")
        return 1

    setup_logging(args.verbose or settings.log_level.upper() == 'DEBUG', settings.log_file)

    try:
        if args.command == 'init-config':
            return init_config(settings, args)

        handler = COMMANDS.get(args.command)
        if handler is None:
            print(f"Unknown command: {args.command}")
            return 1

        services = create_archival_services(settings)
        return asyncio.run(handler(services, args))

    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    except Exception as e:
        print(f"Error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
