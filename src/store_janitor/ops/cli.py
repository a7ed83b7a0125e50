#!/usr/bin/env python3
"""
Store janitor command line.

Usage:
    # Inventory of named graphs by category
    store-janitor graphs

    # Clear data graphs, keep every ontology graph
    store-janitor purge --mode data-only --dry-run
    store-janitor purge --mode data-only

    # Drop one workspace's schema and data graphs
    store-janitor purge --mode workspace-reset --tenant default --workspace w1

    # Remove dangling global ontologies (denylist from config, or --deny)
    store-janitor purge --mode dangling-cleanup --deny company --deny product

    # Job index audit, then reconciliation of jobs and document chunk sets
    store-janitor audit-jobs
    store-janitor reconcile
    store-janitor reconcile --job-id 42 --job-id 43 --skip-documents

    # Delete retired key families (patterns from config, or --pattern)
    store-janitor purge-keys --dry-run

Exit codes:
    0  run completed (per-item failures are listed in the report)
    1  a store was unreachable or the configuration/arguments were invalid
    130  interrupted; items already processed stay processed
"""

import argparse
import json
import sys
from typing import Any, List, Optional

from store_janitor.graph.classifier import GraphScope
from store_janitor.graph.policy import PurgeMode
from store_janitor.graph.purger import BulkGraphPurger
from store_janitor.kv.janitor import IndexConsistencyJanitor
from store_janitor.kv.keys import DocumentKeyspace, JobKeyspace
from store_janitor.shared.config import Config, load_config
from store_janitor.shared.connections import open_connections
from store_janitor.shared.errors import ConfigurationError, StoreConnectionError
from store_janitor.shared.observability import (
    end_run,
    get_logger,
    setup_logging,
    start_run,
    write_metrics,
)

from .report import Report, write_report

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="store-janitor",
        description="Reconcile the graph store and the key-value store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--report-dir",
        type=str,
        default=None,
        help="Report directory (default: report.report_dir from config)",
    )
    parser.add_argument(
        "--no-report", action="store_true", help="Do not write a JSON report file"
    )
    parser.add_argument(
        "--metrics-file",
        type=str,
        default=None,
        help="Write Prometheus metrics to this textfile after the run",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("graphs", help="Count named graphs and triples per category")

    purge = sub.add_parser("purge", help="Delete named graphs under a purge mode")
    purge.add_argument(
        "--mode",
        required=True,
        choices=[mode.value for mode in PurgeMode],
        help="Preservation policy to apply",
    )
    purge.add_argument("--tenant", default=None, help="Target tenant id")
    purge.add_argument("--workspace", default=None, help="Target workspace id")
    purge.add_argument(
        "--scope",
        default=None,
        choices=["global", "tenant", "workspace", "all"],
        help="Ontology scope searched by dangling-cleanup (default from config)",
    )
    purge.add_argument(
        "--deny",
        action="append",
        default=None,
        help="Dangling ontology id/label (repeatable; replaces the configured list)",
    )
    purge.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help="Concurrent graph deletes (default from config)",
    )
    purge.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be deleted without actually deleting",
    )

    sub.add_parser("audit-jobs", help="Report orphaned and stale job index entries")

    reconcile = sub.add_parser("reconcile", help="Remove dangling index references")
    reconcile.add_argument(
        "--job-id",
        action="append",
        default=None,
        help="Job id to remove from every index (repeatable; skips the audit)",
    )
    reconcile.add_argument("--skip-jobs", action="store_true", help="Skip job indexes")
    reconcile.add_argument(
        "--skip-documents", action="store_true", help="Skip document chunk sets"
    )
    reconcile.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be removed without actually removing",
    )

    keys = sub.add_parser("purge-keys", help="Delete keys of retired key families")
    keys.add_argument(
        "--pattern",
        action="append",
        default=None,
        help="Key pattern (repeatable; replaces the configured patterns)",
    )
    keys.add_argument(
        "--dry-run",
        action="store_true",
        help="Count matching keys without deleting",
    )
    return parser


def validate_args(args: argparse.Namespace) -> None:
    """Reject invalid combinations before any connection is opened."""
    if args.command == "purge":
        if args.mode == PurgeMode.WORKSPACE_RESET.value and not args.workspace:
            raise ConfigurationError("--mode workspace-reset requires --workspace")
        if args.mode == PurgeMode.DATA_ONLY.value and (args.tenant or args.workspace):
            raise ConfigurationError(
                "--mode data-only cannot be combined with --tenant or --workspace"
            )
        if args.max_workers is not None and args.max_workers < 1:
            raise ConfigurationError("--max-workers must be at least 1")
    if args.command == "reconcile":
        if args.skip_jobs and args.skip_documents:
            raise ConfigurationError("Cannot skip both jobs and documents")
        if args.skip_jobs and args.job_id:
            raise ConfigurationError("--job-id cannot be combined with --skip-jobs")


def _janitor(manager, config: Config, dry_run: bool = False) -> IndexConsistencyJanitor:
    return IndexConsistencyJanitor(
        manager.get_redis_client(),
        jobs=JobKeyspace.from_config(config.keyspace.jobs),
        documents=DocumentKeyspace.from_config(config.keyspace.documents),
        scan_count=config.scan.count,
        dry_run=dry_run,
    )


def _purger(manager, config: Config, args: argparse.Namespace) -> BulkGraphPurger:
    max_workers = getattr(args, "max_workers", None) or config.purge.max_workers
    return BulkGraphPurger(
        manager.get_graph_client(),
        page_size=config.graph_store.page_size,
        max_workers=max_workers,
        denylist=getattr(args, "deny", None) or config.policy.dangling_ontology_ids,
        placeholder_markers=config.policy.placeholder_markers,
        dangling_scope=getattr(args, "scope", None) or config.policy.dangling_scope,
    )


def execute(args: argparse.Namespace, config: Config, manager: Any) -> Report:
    """Run one command against the stores held by ``manager``."""
    if args.command == "graphs":
        return _purger(manager, config, args).inventory()

    if args.command == "purge":
        scope = None
        if args.tenant or args.workspace:
            scope = GraphScope(tenant_id=args.tenant, workspace_id=args.workspace)
        return _purger(manager, config, args).purge(
            args.mode, scope_filter=scope, dry_run=args.dry_run
        )

    if args.command == "audit-jobs":
        return _janitor(manager, config).audit_jobs()

    if args.command == "reconcile":
        return _janitor(manager, config, dry_run=args.dry_run).reconcile(
            job_ids=args.job_id,
            include_jobs=not args.skip_jobs,
            include_documents=not args.skip_documents,
        )

    if args.command == "purge-keys":
        patterns = args.pattern or config.keyspace.legacy_patterns
        return _janitor(manager, config, dry_run=args.dry_run).purge_key_patterns(
            patterns
        )

    raise ConfigurationError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config, settings = load_config()
    except Exception as e:
        print(f"Failed to load configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(settings.log_level)
    start_run(args.command, dry_run=getattr(args, "dry_run", False))
    try:
        return _run(args, config, settings)
    finally:
        end_run()


def _run(args: argparse.Namespace, config: Config, settings: Any) -> int:
    try:
        validate_args(args)
        with open_connections(settings=settings, config=config) as manager:
            report = execute(args, config, manager)
    except ConfigurationError as e:
        logger.error("Invalid arguments", error=str(e))
        return 1
    except StoreConnectionError as e:
        logger.error("Store unreachable; run aborted", store=e.store, error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("Run interrupted; processed items remain processed")
        return 130

    payload = report.to_dict()
    print(json.dumps(payload, indent=2))
    logger.info("Run complete", report=payload.get("summary", payload))

    if config.report.enabled and not args.no_report:
        report_file = write_report(
            report, args.report_dir or config.report.report_dir, args.command
        )
        logger.info("Report saved", path=str(report_file))

    if args.metrics_file:
        write_metrics(args.metrics_file)

    return 0


if __name__ == "__main__":
    sys.exit(main())
