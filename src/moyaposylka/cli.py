import argparse
import csv
import json
import sys
from pathlib import Path
from typing import Iterable, Iterator, Optional

from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.table import Table

from .models import TrackingAnswer
from .providers import REGISTRY as PROVIDER_REGISTRY
from .providers.moyaposylka import MoyaposylkaProvider
from .utils import format_local, wrap_every

# Load environment variables from .env if present
load_dotenv()

DEFAULT_TRACKS_FILE = "tracks.txt"
DEFAULT_CSV_FILE = "output_tracks.csv"
RECIPIENT_WRAP = 20

CSV_HEADER = [
    "tracking_number",
    "estimated_delivery",
    "recipient",
    "last_status",
    "location",
    "status_date",
    "delivered",
]

console = Console()
err_console = Console(stderr=True)


def setup_logging(verbose: bool = False) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level="DEBUG" if verbose else "INFO",
        colorize=True,
    )


def read_tracking_numbers(lines: Iterable[str]) -> Iterator[str]:
    """Yield stripped tracking numbers, skipping blank lines."""
    for line in lines:
        code = line.strip()
        if code:
            yield code


def resolve_all(
    provider: MoyaposylkaProvider, codes: Iterable[str]
) -> tuple[list[tuple[str, TrackingAnswer]], int]:
    """Resolve codes one after another; failures are reported and skipped."""
    results: list[tuple[str, TrackingAnswer]] = []
    failures = 0
    for code in codes:
        outcome = provider.track_or_reason(code)
        if isinstance(outcome, str):
            err_console.print(outcome, markup=False, soft_wrap=True)
            failures += 1
            continue
        if not outcome.events:
            err_console.print(
                f"No information for tracking number {code}", markup=False, soft_wrap=True
            )
            continue
        results.append((code, outcome))
    return results, failures


def build_table(results: list[tuple[str, TrackingAnswer]]) -> Table:
    table = Table(show_lines=True)
    table.add_column("Tracking number", no_wrap=True)
    table.add_column("Estimated delivery")
    table.add_column("Recipient")
    table.add_column("Last status")
    table.add_column("Status date", no_wrap=True)
    for code, answer in results:
        latest = answer.latest_event
        status = f"{latest.operation}\n{latest.location}" if latest else ""
        date = format_local(latest.event_date) if latest else ""
        table.add_row(
            code,
            answer.estimated_delivery,
            wrap_every(answer.recipient, RECIPIENT_WRAP),
            status,
            date,
            # Delivered parcels are highlighted
            style="green" if answer.delivered else None,
        )
    return table


def write_csv(results: list[tuple[str, TrackingAnswer]], path: Path) -> None:
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh)
        writer.writerow(CSV_HEADER)
        for code, answer in results:
            latest = answer.latest_event
            writer.writerow(
                [
                    code,
                    answer.estimated_delivery,
                    answer.recipient,
                    latest.operation if latest else "",
                    latest.location if latest else "",
                    format_local(latest.event_date) if latest else "",
                    "yes" if answer.delivered else "no",
                ]
            )


def emit(results: list[tuple[str, TrackingAnswer]], args: argparse.Namespace) -> None:
    if args.json:
        payload = [
            {"tracking_number": code, **answer.model_dump(mode="json", by_alias=True)}
            for code, answer in results
        ]
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    elif results:
        console.print(build_table(results))
    if args.csv:
        write_csv(results, Path(args.csv))
        if args.verbose:
            err_console.print(
                f"Wrote {len(results)} rows to {args.csv}", markup=False, soft_wrap=True
            )


def _provider(args: argparse.Namespace) -> MoyaposylkaProvider:
    provider_cls = PROVIDER_REGISTRY[MoyaposylkaProvider.provider]
    return provider_cls(api_key=args.apikey)


def _run(codes: Iterable[str], args: argparse.Namespace) -> int:
    results, failures = resolve_all(_provider(args), codes)
    emit(results, args)
    return 1 if failures else 0


def cmd_file(args: argparse.Namespace) -> int:
    path = Path(args.file)
    try:
        fh = path.open(encoding="utf-8")
    except OSError as exc:
        err_console.print(
            f"Cannot read tracking numbers from {path}: {exc}", markup=False, soft_wrap=True
        )
        return 2
    with fh:
        return _run(read_tracking_numbers(fh), args)


def cmd_track(args: argparse.Namespace) -> int:
    return _run(read_tracking_numbers(args.codes), args)


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--apikey",
        "-k",
        default=None,
        help="API key for moyaposylka.ru (defaults to $MOYAPOSYLKA_API_KEY)",
    )
    p.add_argument(
        "--csv",
        "-c",
        nargs="?",
        const=DEFAULT_CSV_FILE,
        default=None,
        help=f"Also write results as CSV (default path: {DEFAULT_CSV_FILE})",
    )
    p.add_argument("--json", action="store_true", help="Output JSON instead of a table")
    p.add_argument(
        "--verbose", "-v", action="store_true", help="Log requests and extra info"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="moyaposylka", description="Parcel tracking via moyaposylka.ru."
    )
    subparsers = parser.add_subparsers(dest="command")

    p_file = subparsers.add_parser("file", help="Track numbers listed in a file")
    p_file.add_argument(
        "--file",
        "-f",
        default=DEFAULT_TRACKS_FILE,
        help=f"File with one tracking number per line (default: {DEFAULT_TRACKS_FILE})",
    )
    _add_common(p_file)
    p_file.set_defaults(func=cmd_file)

    p_track = subparsers.add_parser("track", help="Track numbers given as arguments")
    p_track.add_argument("codes", nargs="+", help="Tracking numbers")
    _add_common(p_track)
    p_track.set_defaults(func=cmd_track)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        return 1
    setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
