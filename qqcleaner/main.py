import argparse
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from . import config
from .core import CleanerApp
from .exceptions import QQCleanerError
from .models import format_bytes
from .organization.actions import Delete, MoveTo
from .organization.selection import ALL_GROUPS, GroupFilter, TimeRange, filter_groups
from .reporting import ReportGenerator
from .scanning.index import GROUP_SORT_KEYS
from .settings import Settings, load_settings

EXIT_INTERRUPTED = 130


def setup_logging(log_dir: Path, verbose: bool) -> Path:
    """Sets up logging to both console and a timestamped file in log_dir."""
    log_level = logging.DEBUG if verbose else logging.INFO

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"qqcleaner_{datetime.now():%Y%m%d_%H%M%S}.log"

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )
    return log_file


def _iso_day(end_of_day: bool):
    def parse(value: str) -> datetime:
        try:
            dt = datetime.fromisoformat(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"not an ISO date: {value!r}")
        # A bare date as upper bound covers the whole day.
        if end_of_day and len(value) == 10:
            dt += timedelta(days=1) - timedelta(microseconds=1)
        return dt
    return parse


def _common_options() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(add_help=False)
    p.add_argument("--config", type=Path, default=None, help="TOML settings file (default: ./config.toml)")
    p.add_argument("--db-dir", type=Path, default=None, help="Directory holding files_in_chat.db / group_info.db")
    p.add_argument("--key-file", type=Path, default=None, help="File containing the database key")
    p.add_argument("--data-dir", type=Path, action="append", default=None,
                   help="Picture root (.../nt_data/Pic). Repeatable.")
    p.add_argument("--log-dir", type=Path, default=None, help="Where to write the log file")
    p.add_argument("--workers", type=int, default=None, help="Parallel workers for disk checks and actions")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    p.add_argument("--group", action="append", default=None, help="Group id to include. Repeatable; default all.")
    when = p.add_mutually_exclusive_group()
    when.add_argument("--older-than", type=int, default=None, metavar="DAYS",
                      help=f"Only files older than DAYS (presets: {', '.join(map(str, config.TIME_RANGE_PRESETS))})")
    when.add_argument("--since", type=_iso_day(False), default=None, help="Only files sent on/after this ISO date")
    p.add_argument("--until", type=_iso_day(True), default=None, help="Only files sent on/before this ISO date")
    return p


def parse_args(argv: Optional[List[str]] = None):
    common = _common_options()

    p = argparse.ArgumentParser(description="QQ Cleaner: find, delete or migrate QQ NT chat images")
    sub = p.add_subparsers(dest="command", required=True)

    stats = sub.add_parser("stats", parents=[common], help="Per-group size summary")
    stats.add_argument("--csv", type=Path, default=None, help="Also write the summary to CSV")
    stats.add_argument("--show-empty", action="store_true", help="Include groups with no files on disk")
    stats.add_argument("--min-size-mb", type=float, default=0, help="Hide groups smaller than this")
    stats.add_argument("--min-files", type=int, default=0, help="Hide groups with fewer files")
    stats.add_argument("--activity", choices=["all", "active", "inactive"], default="all")
    stats.add_argument("--activity-days", type=int, default=30)
    stats.add_argument("--sort", choices=list(GROUP_SORT_KEYS), default="size",
                       help="Order groups by size on disk, files on disk or name")

    sub.add_parser("list", parents=[common], help="Print the selected files")

    for name, helptext in (("clean", "Delete the selected files"),
                           ("migrate", "Move (or copy) the selected files to another directory")):
        cmd = sub.add_parser(name, parents=[common], help=helptext)
        cmd.add_argument("--yes", action="store_true", help="Actually modify files (default is a dry run)")
        cmd.add_argument("--report-csv", type=Path, default=None, help="Write per-file results to CSV")
        if name == "migrate":
            cmd.add_argument("--target", type=Path, default=None, help="Destination root")
            cmd.add_argument("--flat", action="store_true", help="Do not keep group/month folders")
            cmd.add_argument("--keep-source", action="store_true",
                             help="Copy instead of move: leave the originals in place")

    args = p.parse_args(argv)
    if args.workers is not None and args.workers < 1:
        p.error("--workers must be at least 1")
    if args.older_than is not None and args.older_than < 0:
        p.error("--older-than must not be negative")
    if args.older_than is not None and args.until is not None:
        p.error("--until cannot be combined with --older-than")
    try:
        build_time_range(args)
    except ValueError as e:
        p.error(str(e))
    return args


def apply_overrides(settings: Settings, args) -> Settings:
    """Command line flags win over the settings file."""
    if args.db_dir:
        settings.db_dir = args.db_dir
    if args.key_file:
        settings.key_file = args.key_file
    if args.data_dir:
        settings.data_dirs = list(args.data_dir)
    if args.log_dir:
        settings.log_dir = args.log_dir
    if args.workers:
        settings.max_workers = args.workers
    return settings


def build_time_range(args) -> TimeRange:
    if args.older_than is not None:
        return TimeRange.older_than(args.older_than)
    if args.since or args.until:
        start = args.since or datetime.min
        end = args.until or datetime.max
        return TimeRange.between(start, end)
    return TimeRange.all()


def print_stats(stats):
    print(f"{'Group':<40} {'Files':>7} {'Missing':>8} {'Size':>12}")
    for st in stats:
        name = f"{st.display_name} ({st.group_id})" if st.display_name != st.group_id else st.group_id
        print(f"{name[:40]:<40} {st.file_count:>7} {st.missing_count:>8} {st.format_size():>12}")
    total = sum(st.total_size for st in stats)
    print(f"{len(stats)} groups, {format_bytes(total)} on disk")


def print_selection(selection):
    for e in selection:
        path = e.absolute_path or "-"
        print(f"{e.sent_at:%Y-%m-%d %H:%M}  {e.group_id:<12} {e.status.value:<14} {path}")
    print(f"{len(selection)} files, {format_bytes(sum(e.size_bytes for e in selection))}")


def run(args, settings: Settings) -> int:
    app = CleanerApp(settings)
    index = app.load_index(show_progress=True)
    time_range = build_time_range(args)

    if args.command == "stats":
        group_filter = GroupFilter(
            hide_empty=not args.show_empty,
            min_size=int(args.min_size_mb * 1024 * 1024),
            min_file_count=args.min_files,
            activity=args.activity,
            activity_days=args.activity_days,
        )
        stats = index.group_stats(time_range, sort_by=args.sort)
        if args.group:
            wanted = set(args.group)
            stats = [st for st in stats if st.group_id in wanted]
        stats = filter_groups(stats, group_filter)
        print_stats(stats)
        if args.csv:
            ReportGenerator().write_group_summary(stats, args.csv)
        return 0

    groups = set(args.group) if args.group else ALL_GROUPS
    selection = app.select(groups, time_range)

    if args.command == "list":
        print_selection(selection)
        return 0

    if args.command == "clean":
        action = Delete()
    else:
        target = args.target or settings.migrate_target
        action = MoveTo(destination_root=target.resolve(), keep_structure=not args.flat,
                        keep_source=args.keep_source)

    dry_run = not args.yes
    if dry_run:
        logging.info("Dry run: pass --yes to modify files.")

    report = app.apply(selection, action, dry_run=dry_run, show_progress=True)

    reporter = ReportGenerator()
    print(reporter.summarize(report))
    if args.report_csv:
        reporter.write_action_report(report, args.report_csv)

    if report.interrupted:
        return EXIT_INTERRUPTED
    return 1 if report.failed else 0


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)

    try:
        settings = apply_overrides(load_settings(args.config), args)
    except QQCleanerError as e:
        sys.exit(f"Configuration error: {e}")

    log_file = setup_logging(settings.log_dir, args.verbose)

    logging.info("=== QQ Cleaner Started ===")
    logging.info(f"Command: {args.command}")
    logging.info(f"Log:     {log_file}")

    try:
        code = run(args, settings)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        sys.exit(EXIT_INTERRUPTED)
    except (QQCleanerError, FileNotFoundError) as e:
        logging.error(f"{type(e).__name__}: {e}")
        sys.exit(1)
    except Exception:
        logging.exception("Fatal error.")
        sys.exit(1)

    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
