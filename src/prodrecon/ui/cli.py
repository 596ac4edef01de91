from __future__ import annotations

import argparse
import logging
import sys
from signal import SIGINT, signal
from typing import TYPE_CHECKING
from uuid import UUID

from dotenv import load_dotenv

from prodrecon.app import build_services
from prodrecon.config import ConfigurationError, configure_logging
from prodrecon.domain.model import IngestionPolicy, JobStatus, ProductDomain, TenantContext
from prodrecon.domain.reconciliation import CandidateField

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from prodrecon.app import Services
    from prodrecon.domain.ingest_pipeline import JobProgress

log = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile product catalogs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("import", help="Import a source and wait for the job")
    ingest.add_argument("source", help="Path, file:// or attachment:// URI, or http(s) catalog URL")
    _add_tenant(ingest)
    ingest.add_argument(
        "--policy",
        choices=[policy.value for policy in IngestionPolicy],
        default=IngestionPolicy.STRICT.value,
        help="strict links immediately, suggestion queues links for review",
    )
    ingest.add_argument(
        "--source-domain",
        choices=[domain.value for domain in ProductDomain],
        default=ProductDomain.SUPPLIER_PRODUCT.value,
    )
    ingest.add_argument(
        "--target-domain",
        choices=[domain.value for domain in ProductDomain],
        default=ProductDomain.CATALOG_ANALYSIS.value,
    )
    ingest.add_argument("--origin", type=str, help="Supplier or marketplace identifier")
    ingest.add_argument(
        "--chunk-size",
        type=int,
        default=None,
        help="Rows per chunk (defaults to config, by source kind)",
    )
    ingest.add_argument(
        "--map",
        dest="mapping",
        action="append",
        default=[],
        metavar="HEADER=FIELD",
        help="Explicit column mapping; repeat per column",
    )

    for name, help_text in (
        ("resume", "Resume a paused or failed job and wait for it"),
        ("pause", "Request a pause at the next chunk boundary"),
        ("status", "Show job progress"),
        ("suggestions", "List pending link suggestions of a job"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("job_id", type=str)
        _add_tenant(command)

    confirm = subparsers.add_parser("confirm", help="Confirm link suggestions")
    confirm.add_argument("suggestion_ids", nargs="+", type=str)
    _add_tenant(confirm)

    unlink = subparsers.add_parser("unlink", help="Remove a link edge")
    unlink.add_argument("link_id", type=str)
    _add_tenant(unlink)

    serve = subparsers.add_parser("serve", help="Run the HTTP control surface")
    serve.add_argument("--host", default=DEFAULT_HOST)
    serve.add_argument("--port", type=int, default=DEFAULT_PORT)

    return parser.parse_args(list(argv))


def _add_tenant(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--tenant", required=True, help="Tenant the command acts for")


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise ValueError(f"Invalid UUID: {value}") from exc


def _parse_mapping(pairs: Sequence[str]) -> dict[str, str] | None:
    if not pairs:
        return None
    known = {field.value for field in CandidateField}
    mapping: dict[str, str] = {}
    for pair in pairs:
        header, sep, target = pair.partition("=")
        if not sep or not header.strip():
            raise ValueError(f"Invalid mapping {pair!r}, expected HEADER=FIELD")
        if target.strip() not in known:
            raise ValueError(f"Unknown field {target!r}; choose from {', '.join(sorted(known))}")
        mapping[header.strip()] = target.strip()
    return mapping


def _validate(args: argparse.Namespace) -> None:
    _parse_mapping(getattr(args, "mapping", []))
    for name in ("job_id", "link_id"):
        value = getattr(args, name, None)
        if value is not None:
            _parse_uuid(value)
    for value in getattr(args, "suggestion_ids", []):
        _parse_uuid(value)


def _log_progress(snapshot: JobProgress) -> None:
    counts = snapshot.counts
    log.info(
        "Job %s: status=%s offset=%s total=%s seen=%s matched=%s created=%s skipped=%s errored=%s",
        snapshot.job_id,
        snapshot.status,
        snapshot.source_offset,
        snapshot.total_count,
        counts.seen,
        counts.matched,
        counts.created,
        counts.skipped,
        counts.errored,
    )
    if snapshot.last_error:
        log.warning("Job %s last error: %s", snapshot.job_id, snapshot.last_error)
    for sample in snapshot.error_samples:
        log.info("  %s", sample)


def _wait_for(services: Services, tenant: TenantContext, job_id: UUID) -> JobProgress:
    services.runner.wait(job_id)
    return services.supervisor.snapshot(tenant, job_id)


def _run(args: argparse.Namespace) -> int:
    if args.command == "serve":
        import uvicorn

        from prodrecon.api import create_app

        services = build_services()
        try:
            uvicorn.run(create_app(services), host=args.host, port=args.port)
        finally:
            services.close(wait=False)
        return 0

    tenant = TenantContext(args.tenant)
    services = build_services()
    services.supervisor.subscribe(_log_progress)
    try:
        if args.command == "import":
            snapshot = services.supervisor.create_job(
                tenant,
                source=args.source,
                policy=IngestionPolicy(args.policy),
                source_domain=ProductDomain(args.source_domain),
                target_domain=ProductDomain(args.target_domain),
                origin=args.origin,
                chunk_size=args.chunk_size,
                column_mapping=_parse_mapping(args.mapping),
            )
            log.info("Started job %s", snapshot.job_id)
            final = _wait_for(services, tenant, snapshot.job_id)
            return 1 if final.status is JobStatus.FAILED else 0
        if args.command == "resume":
            job_id = _parse_uuid(args.job_id)
            services.supervisor.request_resume(tenant, job_id)
            final = _wait_for(services, tenant, job_id)
            return 1 if final.status is JobStatus.FAILED else 0
        if args.command == "pause":
            _log_progress(services.supervisor.request_pause(tenant, _parse_uuid(args.job_id)))
            return 0
        if args.command == "status":
            _log_progress(services.supervisor.snapshot(tenant, _parse_uuid(args.job_id)))
            return 0
        if args.command == "suggestions":
            job_id = _parse_uuid(args.job_id)
            services.supervisor.snapshot(tenant, job_id)
            for suggestion in services.pending_suggestions(tenant, job_id=job_id):
                log.info(
                    "%s %s <-> %s strategy=%s confidence=%s",
                    suggestion.id,
                    suggestion.left_id,
                    suggestion.right_id,
                    suggestion.strategy,
                    suggestion.confidence,
                )
            return 0
        if args.command == "confirm":
            ids = [_parse_uuid(value) for value in args.suggestion_ids]
            result = services.confirm_suggestions(tenant, ids)
            for item in result.items:
                if not item.succeeded:
                    log.warning("Suggestion %s not confirmed: %s", item.suggestion_id, item.error)
            log.info("Confirmed %s, failed %s", result.succeeded, result.failed)
            return 1 if result.failed else 0
        if args.command == "unlink":
            pair = services.unlink(tenant, _parse_uuid(args.link_id))
            log.info("Unlinked %s <-> %s", pair.left_id, pair.right_id)
            return 0
        raise ValueError(f"Unsupported command: {args.command}")
    finally:
        services.close()


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        _validate(parsed_args)
        configure_logging(level=logging.DEBUG if parsed_args.verbose else None)
    except (ValueError, ConfigurationError):
        configure_logging(level=logging.INFO)
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        code = _run(parsed_args)
    except Exception:
        log.exception("Fatal error")
        sys.exit(1)
    sys.exit(code)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
