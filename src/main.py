# src/main.py — v1
"""CLI entry point — ingest, process, answer, provenance, dead-letters, reviews, sweep.

Usage:
    regtruth ingest <file> --url <url> [--document-kind statute] [--process]
    regtruth process [--timeout 60]
    regtruth answer <topic> [--as-of 2026-01-01] [--context '{"turnover": 90000}']
    regtruth provenance <rule_id>
    regtruth dead-letters [--requeue <work_id>]
    regtruth reviews [--decide <conflict_id> --winner <item_id> --reviewer <name>]
    regtruth sweep

State persists between invocations only with STORE_BACKEND=sqlite (or --db).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from pathlib import Path

from regtruth.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        settings = _load_settings(args)
    except Exception as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1
    _setup_logging(settings, args.verbose)

    try:
        return asyncio.run(_run(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="regtruth",
        description=f"regtruth v{__version__} — regulatory evidence-to-rule pipeline",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--db", type=Path, default=None,
        help="SQLite database path (implies STORE_BACKEND=sqlite)",
    )
    parser.add_argument(
        "--replies", type=Path, default=None,
        help="Replay extraction replies from a JSON file instead of calling the service",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- ingest ---
    p_ingest = subparsers.add_parser("ingest", help="Ingest a fetched document")
    p_ingest.add_argument("file", type=Path, help="Path to the fetched bytes")
    p_ingest.add_argument("--url", required=True, help="Source URL of the document")
    p_ingest.add_argument("--content-type", default=None, help="MIME type reported by the fetcher")
    p_ingest.add_argument("--publisher", default=None)
    p_ingest.add_argument("--document-kind", default=None, help="e.g. statute, regulation, guidance")
    p_ingest.add_argument("--jurisdiction", default=None)
    p_ingest.add_argument("--etag", default=None)
    p_ingest.add_argument(
        "--process", action="store_true",
        help="Run the pipeline right after ingestion",
    )
    p_ingest.set_defaults(func=_cmd_ingest)

    # --- process ---
    p_process = subparsers.add_parser("process", help="Drain all pipeline stages")
    p_process.add_argument("--timeout", type=float, default=None, help="Give up after N seconds")
    p_process.set_defaults(func=_cmd_process)

    # --- answer ---
    p_answer = subparsers.add_parser("answer", help="Answer a topic for a date")
    p_answer.add_argument("topic", help="Topic key, e.g. VAT_RATE")
    p_answer.add_argument(
        "--as-of", type=date.fromisoformat, default=None,
        help="Date (YYYY-MM-DD, default: today)",
    )
    p_answer.add_argument(
        "--context", type=json.loads, default=None,
        help="JSON object evaluated against the rule's applies-when predicate",
    )
    p_answer.set_defaults(func=_cmd_answer)

    # --- provenance ---
    p_prov = subparsers.add_parser("provenance", help="Show the provenance chain of a rule")
    p_prov.add_argument("rule_id")
    p_prov.set_defaults(func=_cmd_provenance)

    # --- dead-letters ---
    p_dead = subparsers.add_parser("dead-letters", help="List or requeue dead-lettered work")
    p_dead.add_argument("--requeue", default=None, metavar="WORK_ID")
    p_dead.set_defaults(func=_cmd_dead_letters)

    # --- reviews ---
    p_rev = subparsers.add_parser("reviews", help="List pending reviews or decide a conflict")
    p_rev.add_argument("--decide", default=None, metavar="CONFLICT_ID")
    p_rev.add_argument("--winner", default=None, metavar="ITEM_ID")
    p_rev.add_argument("--reviewer", default=None)
    p_rev.add_argument("--note", default=None)
    p_rev.set_defaults(func=_cmd_reviews)

    # --- sweep ---
    p_sweep = subparsers.add_parser(
        "sweep", help="Re-check evidence staleness and list sources to re-fetch"
    )
    p_sweep.set_defaults(func=_cmd_sweep)

    return parser


def _load_settings(args: argparse.Namespace):
    from regtruth.config.settings import load_settings

    overrides: dict[str, object] = {}
    if args.db is not None:
        overrides.update(store_backend="sqlite", store_path=args.db)
    if args.replies is not None:
        overrides["extraction_provider"] = "static"
    return load_settings(**overrides)


async def _run(args: argparse.Namespace, settings) -> int:
    from regtruth.api.facade import RegTruthFacade
    from regtruth.llm.adapters.static_adapter import StaticExtractionClient

    client = StaticExtractionClient.from_file(args.replies) if args.replies else None
    facade = RegTruthFacade.create(settings, client=client)
    try:
        return await args.func(facade, args)
    finally:
        await facade.close()


async def _cmd_ingest(facade, args: argparse.Namespace) -> int:
    """Ingest one fetched document."""
    from regtruth.core.models import ChangeSignal, SourceMetadata

    file_path: Path = args.file
    if not file_path.exists():
        logger.error("File not found: %s", file_path)
        return 1

    result = await facade.ingest(
        args.url,
        file_path.read_bytes(),
        content_type_hint=args.content_type,
        change_signal=ChangeSignal(etag=args.etag) if args.etag else None,
        metadata=SourceMetadata(
            publisher=args.publisher,
            document_kind=args.document_kind,
            jurisdiction=args.jurisdiction,
        ),
    )
    print(f"\nEvidence {'created' if result.created else 'reused'}:")
    print(f"  ID:         {result.evidence_id}")
    print(f"  Authority:  {result.authority_tier}")
    print(f"  Class:      {result.content_class}")
    if args.process:
        return await _cmd_process(facade, argparse.Namespace(timeout=None))
    return 0


async def _cmd_process(facade, args: argparse.Namespace) -> int:
    """Drain the pipeline and print a summary."""
    summary = await facade.process(args.timeout)
    print("\nProcessing complete:")
    print(f"  Processed:        {summary.processed}")
    print(f"  Failed attempts:  {summary.failed}")
    print(f"  Dead letters:     {summary.dead_letters}")
    print(f"  Pending reviews:  {summary.pending_reviews}")
    print(f"  Published rules:  {summary.published_rules}")
    return 0


async def _cmd_answer(facade, args: argparse.Namespace) -> int:
    """Print the answer as JSON; exit code 2 on refusal."""
    result = await facade.answer(args.topic, args.as_of or date.today(), args.context)
    print(result.model_dump_json(indent=2))
    return 0 if result.success else 2


async def _cmd_provenance(facade, args: argparse.Namespace) -> int:
    chain = await facade.provenance(args.rule_id)
    print(chain.model_dump_json(indent=2))
    return 0 if chain.complete else 2


async def _cmd_dead_letters(facade, args: argparse.Namespace) -> int:
    if args.requeue:
        item = await facade.requeue(args.requeue)
        print(f"Requeued {item.id}")
        return 0
    items = await facade.dead_letters()
    if not items:
        print("No dead letters.")
    for item in items:
        print(f"  {item.id}  attempts={item.attempts}  {item.last_error or ''}")
    return 0


async def _cmd_reviews(facade, args: argparse.Namespace) -> int:
    if args.decide:
        if not args.winner or not args.reviewer:
            logger.error("--decide needs --winner and --reviewer")
            return 1
        resolution = await facade.decide_conflict(args.decide, args.winner, args.reviewer, args.note)
        print(f"Recorded {resolution.outcome} for {args.decide} ({resolution.id})")
        return 0
    pending = await facade.pending_reviews()
    if not pending:
        print("No pending reviews.")
    for r in pending:
        print(f"  [{r.priority}] {r.reason}  {r.entity_kind}={r.entity_id}  {r.detail or ''}")
    return 0


async def _cmd_sweep(facade, args: argparse.Namespace) -> int:
    """Print sweep totals, flagged rules and re-fetch requests."""
    report = await facade.sweep_staleness()
    print("\nStaleness sweep:")
    print(f"  Checked:        {report.checked}")
    print(f"  Updated:        {report.updated}")
    for status, count in sorted(report.statuses.items()):
        print(f"    {status:12s}{count}")
    print(f"  Flagged rules:  {len(report.flagged_rules)}")
    for rule_id in report.flagged_rules:
        print(f"    {rule_id}")
    print(f"  To re-fetch:    {len(report.refetch)}")
    for request in report.refetch:
        print(f"    [{request.authority_tier}] {request.staleness_status}  {request.source_url}")
    return 0


def _setup_logging(settings, verbose: bool) -> None:
    """Configure logging for CLI usage."""
    from regtruth.logging.logger import setup_logging

    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_format=settings.log_format,
        log_file=settings.log_file,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)


if __name__ == "__main__":
    sys.exit(main())
