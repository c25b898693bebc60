"""Command-line entry point for the open data sync engine.

Usage
-----
::

    pyopendata sync                      # sync the configured dataset ids
    pyopendata sync ID [ID ...]          # sync explicit ids
    pyopendata sync --ids-file ids.txt   # sync every UUID found in a text file
    pyopendata check --webhook URL       # dry run; POST detected updates
    pyopendata stats                     # summary of the local state
    pyopendata schedule --interval 21600 # sync forever on a fixed interval
    pyopendata discover CATEGORY ... [--sync]
    pyopendata discover --list           # datasets in the discovery registry
    pyopendata discover --add ID [ID ...]
    pyopendata discover --import ids.txt # register every valid UUID of a file
    pyopendata verify ID                 # check an id against the portal
    pyopendata sync --discovered         # sync the registered datasets
    pyopendata reset                     # forget state, cache and update log

Configuration comes from ``ODP_*`` environment variables
(see :meth:`pyopendata.config.OpenDataConfig.from_env`).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections import Counter
from collections.abc import Sequence
from pathlib import Path

from pyopendata.client import OpenDataClient
from pyopendata.config import OpenDataConfig
from pyopendata.exceptions import OpenDataError
from pyopendata.ingestion.normalize import extract_dataset_ids
from pyopendata.models.dataset import DatasetMetadata
from pyopendata.orchestrator import DiscoveryReport, SyncReport
from pyopendata.outcomes import Failure
from pyopendata.state.policy import DatasetChange
from pyopendata.state.registry import DiscoveredDataset, DiscoveryRegistry

_logger = logging.getLogger(__name__)


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _collect_ids(args: argparse.Namespace, config: OpenDataConfig) -> list[str] | None:
    """Ids named on the command line, ``None`` for the configured default list.

    With ``--discovered`` the registry ids are added and the result is never
    ``None``, so an empty registry syncs nothing.
    """
    ids: list[str] = list(getattr(args, "ids", None) or [])
    ids_file: Path | None = getattr(args, "ids_file", None)
    if ids_file is not None:
        ids.extend(extract_dataset_ids(ids_file.read_text(encoding="utf-8")))
    if getattr(args, "discovered", False):
        ids.extend(DiscoveryRegistry(config.discovery_file).ids())
        return ids
    return ids or None


def _print_changes(changes: Sequence[DatasetChange]) -> None:
    for index, change in enumerate(changes, start=1):
        print(f"  {index}. [{change.kind.value}] {change.title or change.id}")
        print(f"     id       : {change.id}")
        if change.provider:
            print(f"     provider : {change.provider}")
        print(f"     previous : {change.previous_update or '-'}")
        print(f"     current  : {change.new_update or '-'}")


def _print_sync_report(report: SyncReport) -> None:
    print(_section("SYNC REPORT"))
    print(f"  processed : {report.total_processed}")
    print(f"  new       : {len(report.new)}")
    print(f"  updated   : {len(report.updated)}")
    print(f"  unchanged : {len(report.unchanged)}")
    print(f"  failed    : {len(report.failed)}")
    if report.changes:
        print("\n  Changes:")
        _print_changes(report.changes)
    if report.failed:
        print("\n  Failures:")
        for failure in report.failed:
            print(f"    - {failure}")
    if report.save_error is not None:
        print(f"\n  STATE NOT SAVED: {report.save_error}")


def _print_discovery_report(report: DiscoveryReport) -> None:
    print(_section("DISCOVERY REPORT"))
    print(f"  pages fetched : {report.pages_fetched}")
    print(f"  dataset ids   : {len(report.dataset_ids)}")
    print(f"  registered    : {report.registered}")
    for category, count in report.per_category.items():
        print(f"    - {category}: {count}")
    if report.abandoned:
        print("\n  Abandoned:")
        for failure in report.abandoned:
            print(f"    - {failure}")
    if report.save_error is not None:
        print(f"\n  NOT SAVED: {report.save_error}")
    if report.sync is not None:
        _print_sync_report(report.sync)


def _print_registry(entries: Sequence[DiscoveredDataset]) -> None:
    for index, entry in enumerate(entries, start=1):
        print(f"  {index}. {entry.title_primary or entry.title_secondary or entry.id}")
        print(f"     id       : {entry.id}")
        if entry.provider_name:
            print(f"     provider : {entry.provider_name}")
        found = entry.discovered_at.isoformat() if entry.discovered_at else "-"
        print(f"     found    : {found} via {entry.source or '-'}")


def _print_metadata(metadata: DatasetMetadata) -> None:
    print(f"  title (primary)   : {metadata.title_ar or '-'}")
    print(f"  title (secondary) : {metadata.title_en or '-'}")
    print(f"  provider          : {metadata.provider_name or '-'}")
    print(f"  last update       : {metadata.updated_at or '-'}")
    print(f"  update frequency  : {metadata.update_frequency or '-'}")


async def _notify(client: OpenDataClient, changes: Sequence[DatasetChange], url: str | None) -> None:
    target = url or client.config.webhook_url
    if not target or not changes:
        return
    delivered = await client.notify(changes, target)
    print(f"\n  webhook   : {'delivered' if delivered else 'FAILED'} ({target})")


async def _cmd_sync(config: OpenDataConfig, args: argparse.Namespace) -> int:
    async with OpenDataClient(config) as client:
        report = await client.sync(_collect_ids(args, config))
        _print_sync_report(report)
        await _notify(client, report.changes, args.webhook)
    return 1 if report.save_error is not None else 0


async def _cmd_check(config: OpenDataConfig, args: argparse.Namespace) -> int:
    async with OpenDataClient(config) as client:
        changes = await client.check(_collect_ids(args, config))
        print(_section("UPDATE CHECK"))
        if not changes:
            print("  No new or updated datasets.")
            return 0
        print(f"  {len(changes)} change(s) detected:\n")
        _print_changes(changes)
        try:
            client.update_log.append(changes)
        except OpenDataError as exc:
            _logger.warning("Update log not written: %s", exc)
        await _notify(client, changes, args.webhook)
    return 0


async def _cmd_schedule(config: OpenDataConfig, args: argparse.Namespace) -> int:
    interval = args.interval if args.interval is not None else config.sync_interval
    async with OpenDataClient(config) as client:
        while True:
            # Re-read every run so datasets registered in between are picked up.
            report = await client.sync(_collect_ids(args, config))
            _print_sync_report(report)
            await _notify(client, report.changes, args.webhook)
            print(f"\n  next run in {interval:.0f}s")
            await asyncio.sleep(interval)


async def _cmd_discover(config: OpenDataConfig, args: argparse.Namespace) -> int:
    if args.list or args.export:
        state = DiscoveryRegistry(config.discovery_file).load()
        if args.export:
            for dataset_id in state.ids:
                print(dataset_id)
            return 0
        print(_section("DISCOVERED DATASETS"))
        print(f"  registry file : {config.discovery_file}")
        print(f"  datasets      : {len(state.discovered)}\n")
        if not state.discovered:
            print("  Nothing registered yet. Run: pyopendata discover")
            return 0
        _print_registry(state.discovered)
        return 0

    if args.add or args.import_file is not None:
        ids = list(args.add or [])
        source = "manual"
        if args.import_file is not None:
            ids.extend(extract_dataset_ids(args.import_file.read_text(encoding="utf-8")))
            source = "import"
        async with OpenDataClient(config) as client:
            known = set(client.discovered_ids())
            added, failures = await client.register(ids, source=source)
        print(_section("REGISTER"))
        print(f"  candidates : {len(ids)}")
        print(f"  known      : {len(known.intersection(ids))}")
        print(f"  added      : {len(added)}")
        print(f"  invalid    : {len(failures)}")
        if added:
            print()
            _print_registry(added)
        for failure in failures:
            print(f"    - {failure}")
        return 1 if failures else 0

    categories: list[str | None] = list(args.categories) or [None]
    async with OpenDataClient(config) as client:
        report = await client.discover(categories, sync=args.sync, page_size=args.page_size)
        _print_discovery_report(report)
    if report.save_error is not None or (report.sync is not None and report.sync.save_error is not None):
        return 1
    return 0


async def _cmd_verify(config: OpenDataConfig, args: argparse.Namespace) -> int:
    async with OpenDataClient(config) as client:
        metadata = await client.get_dataset_metadata(args.dataset_id)
        registered = args.dataset_id in client.discovered_ids()
    print(_section(f"VERIFY {args.dataset_id}"))
    if isinstance(metadata, Failure):
        print(f"  NOT FOUND: {metadata}")
        return 1
    _print_metadata(metadata)
    if args.dataset_id in config.dataset_ids:
        print("\n  Already in the configured dataset list.")
    if registered:
        print("\n  Already in the discovery registry.")
    return 0


def _cmd_stats(config: OpenDataConfig) -> int:
    client = OpenDataClient(config)
    state = client.load_state()
    print(_section("SYNC STATE"))
    print(f"  state file     : {config.state_file}")
    print(f"  datasets       : {state.total_datasets}")
    print(f"  last full sync : {state.last_full_sync.isoformat() if state.last_full_sync else 'never'}")
    print(f"  last discovery : {state.last_discovery.isoformat() if state.last_discovery else 'never'}")
    discovered = client.discovery_registry.load()
    print(f"  discovered     : {len(discovered.discovered)} ({config.discovery_file})")
    if not state.datasets:
        print("\n  Nothing synchronized yet. Run: pyopendata sync")
        return 0

    records = list(state.datasets.values())
    with_files = sum(1 for record in records if record.local_resource_ref)
    with_errors = [record for record in records if record.last_error]
    print(f"  with files     : {with_files}")
    print(f"  last error set : {len(with_errors)}")

    by_category = Counter(record.category or "uncategorized" for record in records)
    print("\n  Categories:")
    for category, count in by_category.most_common():
        print(f"    - {category}: {count}")

    by_frequency = Counter(record.update_frequency or "unknown" for record in records)
    print("\n  Update frequency:")
    for frequency, count in by_frequency.most_common():
        print(f"    - {frequency}: {count}")

    cache = client.cache_stats()
    print("\n  Cache:")
    print(f"    entries : {cache.count}")
    print(f"    bytes   : {cache.total_size_bytes}")

    recent = client.update_log.recent(5)
    if recent:
        print("\n  Recent updates:")
        for entry in recent:
            print(f"    {entry.get('timestamp', '?')}: {len(entry.get('updates') or [])} update(s)")

    if discovered.discovered:
        print("\n  Discovered by provider:")
        for provider, count in discovered.by_provider().most_common():
            print(f"    - {provider}: {count}")
    return 0


def _cmd_reset(config: OpenDataConfig) -> int:
    OpenDataClient(config).reset()
    print("State, cache and update log cleared.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pyopendata",
        description="Synchronize and cache datasets from the Saudi open data portal.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def _add_id_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("ids", nargs="*", help="Dataset ids (default: configured list)")
        p.add_argument("--ids-file", type=Path, help="Read dataset ids (UUIDs) from any text file")
        p.add_argument("--discovered", action="store_true", help="Add the ids of the discovery registry")

    p_sync = sub.add_parser("sync", help="Run a full sync now")
    _add_id_args(p_sync)
    p_sync.add_argument("--webhook", help="POST detected updates to this URL")

    p_check = sub.add_parser("check", help="Check for updates without downloading")
    _add_id_args(p_check)
    p_check.add_argument("--webhook", help="POST detected updates to this URL")

    sub.add_parser("stats", help="Print summary statistics of the local state")

    p_schedule = sub.add_parser("schedule", help="Sync forever on a fixed interval")
    _add_id_args(p_schedule)
    p_schedule.add_argument("--interval", type=float, help="Seconds between runs (default: ODP_SYNC_INTERVAL)")
    p_schedule.add_argument("--webhook", help="POST detected updates to this URL")

    p_discover = sub.add_parser("discover", help="Expand category listings into dataset ids")
    p_discover.add_argument("categories", nargs="*", help="Category names (default: whole catalog)")
    p_discover.add_argument("--sync", action="store_true", help="Sync every discovered dataset")
    p_discover.add_argument("--page-size", type=int, help="Listing page size")
    registry_mode = p_discover.add_mutually_exclusive_group()
    registry_mode.add_argument("--list", "-l", action="store_true", help="Show the discovery registry")
    registry_mode.add_argument("--export", "-e", action="store_true", help="Print registered ids, one per line")
    registry_mode.add_argument("--add", nargs="+", metavar="ID", help="Verify and register dataset ids")
    registry_mode.add_argument(
        "--import", dest="import_file", type=Path, metavar="FILE", help="Verify and register every UUID of a text file"
    )

    p_verify = sub.add_parser("verify", help="Check that a dataset id exists on the portal")
    p_verify.add_argument("dataset_id", help="Dataset id")

    sub.add_parser("reset", help="Forget sync state, cache and update log")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    try:
        config = OpenDataConfig.from_env()
        if args.command == "stats":
            return _cmd_stats(config)
        if args.command == "reset":
            return _cmd_reset(config)
        runners = {
            "sync": _cmd_sync,
            "check": _cmd_check,
            "schedule": _cmd_schedule,
            "discover": _cmd_discover,
            "verify": _cmd_verify,
        }
        return asyncio.run(runners[args.command](config, args))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    except OpenDataError as exc:
        _logger.error("%s", exc)
        return 1
    except OSError as exc:
        _logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
