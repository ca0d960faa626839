"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from ..audit import BudgetAuditor
from ..classification import build_default_engine
from ..config import Config, create_default_config, load_config
from ..exceptions import GuardianError
from ..learning import LearningStore
from ..matching import ReconciliationMatcher
from ..registry import CategoryRegistry, TTLCache
from ..review import DecisionWorkflow
from ..services import SyncService, build_summary, format_brl
from ..sources import (
    HttpBankStatementSource,
    HttpDocumentSource,
    StaticBankStatementSource,
    StaticDocumentSource,
)
from ..state_store import StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _add_override_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--competence-date", help="Override competence date (YYYY-MM-DD)")
    parser.add_argument("--due-date", help="Override due date (YYYY-MM-DD)")
    parser.add_argument("--paid-date", help="Override paid date (YYYY-MM-DD)")


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="guardian-engine",
        description="Classify, audit and reconcile financial movements for human approval",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--actor",
        type=str,
        default="cli",
        help="Actor recorded in the audit log (default: cli)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init-config command
    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    # sync command
    sync_parser = subparsers.add_parser(
        "sync", help="Fetch, classify, reconcile, audit and store new movements"
    )
    sync_parser.add_argument(
        "--window-days",
        type=int,
        help="Days back from today to fetch (default: from config)",
    )

    # approve / reject / reclassify commands
    approve_parser = subparsers.add_parser("approve", help="Approve a pending record")
    approve_parser.add_argument("record_id", help="Decision record ID")
    _add_override_args(approve_parser)

    reject_parser = subparsers.add_parser("reject", help="Reject a pending record")
    reject_parser.add_argument("record_id", help="Decision record ID")
    _add_override_args(reject_parser)

    reclassify_parser = subparsers.add_parser(
        "reclassify", help="Override the category of a record and approve it"
    )
    reclassify_parser.add_argument("record_id", help="Decision record ID")
    reclassify_parser.add_argument("label", help="New category label")
    _add_override_args(reclassify_parser)

    # clear-all command
    clear_parser = subparsers.add_parser("clear-all", help="Delete every decision record")
    clear_parser.add_argument(
        "--confirm",
        action="store_true",
        help="Required: confirm the deletion",
    )

    # status command
    subparsers.add_parser("status", help="Show record and learning statistics")

    # pending command
    pending_parser = subparsers.add_parser("pending", help="List records awaiting a decision")
    pending_parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum records to show (default: 50)",
    )

    # rules command
    subparsers.add_parser("rules", help="List learned classification rules")

    # history command
    history_parser = subparsers.add_parser("history", help="Show the audit log of a record")
    history_parser.add_argument("record_id", help="Decision record ID")

    # notify-preview command
    subparsers.add_parser("notify-preview", help="Print the daily summary payload as JSON")

    return parser


def _overrides(parsed: argparse.Namespace) -> dict[str, str]:
    overrides = {
        "competence_date": parsed.competence_date,
        "due_date": parsed.due_date,
        "paid_date": parsed.paid_date,
    }
    return {key: value for key, value in overrides.items() if value}


def _build_registry(config: Config, store: StateStore) -> CategoryRegistry:
    return CategoryRegistry(
        store,
        TTLCache(config.registry.cache_ttl_seconds),
        seed_defaults=config.registry.seed_defaults,
    )


def cmd_init_config(config_path: Path, force: bool) -> int:
    """Write a default config file."""
    if config_path.exists() and not force:
        print(f"❌ {config_path} already exists (use --force to overwrite)")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_sync(config: Config, window_days: int | None) -> int:
    """Run one sync cycle."""
    print("🔄 Running sync cycle...")

    store = StateStore(config.state_db_path)
    registry = _build_registry(config, store)
    learning = LearningStore(store)
    engine = build_default_engine(learning, config, registry=registry)

    if config.bank.is_configured:
        bank = HttpBankStatementSource(
            config.bank.base_url,
            token=config.bank.token,
            timeout=config.bank.timeout_seconds,
            max_retries=config.bank.max_retries,
        )
    else:
        print("⚠️  No bank feed configured")
        bank = StaticBankStatementSource()

    if config.documents.is_configured:
        documents = HttpDocumentSource(
            config.documents.base_url,
            token=config.documents.token,
            timeout=config.documents.timeout_seconds,
            max_retries=config.documents.max_retries,
        )
    else:
        print("⚠️  No document feed configured")
        documents = StaticDocumentSource()

    service = SyncService(
        bank_source=bank,
        document_source=documents,
        engine=engine,
        matcher=ReconciliationMatcher(config.reconciliation),
        auditor=BudgetAuditor(registry),
        store=store,
        config=config.sync,
        registry=registry,
        approval_threshold=config.classification.approval_threshold,
    )
    result = service.run_cycle(window_days=window_days)

    print()
    print("📊 Sync Results")
    print("=" * 40)
    print(f"  Status:              {result.state.value}")
    print(f"  Window:              {result.window_start} .. {result.window_end}")
    print(f"  Transactions:        {result.transactions_fetched}")
    print(f"  Documents:           {result.documents_fetched}")
    print(f"  Classified:          {result.classified}")
    print(f"  Automated (>90%):    {result.automated}")
    print(f"  Reconciled pairs:    {result.matched}")
    print(f"  Budget alerts:       {result.flagged}")
    print(f"  New records:         {result.inserted}")
    print(f"  Duplicates skipped:  {result.skipped_duplicates}")
    print(f"  Duration:            {result.duration_ms}ms")
    print()

    if result.degraded_sources:
        print(f"⚠️  Degraded sources: {', '.join(result.degraded_sources)}")
    if result.errors:
        print("⚠️  Errors encountered:")
        for error in result.errors:
            print(f"   - {error}")

    if result.success:
        print("✓ Sync completed successfully")
        return 0
    print("❌ Sync failed")
    return 1


def cmd_decide(config: Config, action: str, parsed: argparse.Namespace) -> int:
    """Apply one human decision (approve, reject, reclassify)."""
    store = StateStore(config.state_db_path)
    workflow = DecisionWorkflow(store, LearningStore(store))
    try:
        record = workflow.apply(
            action,
            record_id=parsed.record_id,
            new_label=getattr(parsed, "label", None),
            overrides=_overrides(parsed),
            actor=parsed.actor,
        )
    except GuardianError as e:
        print(f"❌ {e}")
        return 1

    print(f"✓ {record.id}: {record.status.value} as '{record.category_label}'")
    return 0


def cmd_clear_all(config: Config, confirm: bool, actor: str) -> int:
    """Delete every decision record."""
    store = StateStore(config.state_db_path)
    workflow = DecisionWorkflow(store, LearningStore(store))
    try:
        result = workflow.clear_all(confirm=confirm, actor=actor)
    except GuardianError as e:
        print(f"❌ {e}")
        return 1
    print(f"✓ Deleted {result.deleted} record(s)")
    return 0


def cmd_status(config: Config) -> int:
    """Show record and learning statistics."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Guardian Status")
    print("=" * 40)
    print(f"  Records total:          {stats['records_total']}")
    print(f"  Pending:                {stats['pending']}")
    print(f"    needing review:       {stats['pending_needs_review']}")
    print(f"    amount:               {format_brl(stats['pending_amount'])}")
    print(f"  Approved:               {stats['approved']}")
    print(f"  Rejected:               {stats['rejected']}")
    print(f"  Learned rules:          {stats['learning_rules']}")
    print(f"  Audit log entries:      {stats['audit_entries']}")
    print()

    return 0


def cmd_pending(config: Config, limit: int) -> int:
    """List records awaiting a decision."""
    store = StateStore(config.state_db_path)
    records = store.list_decision_records(status="pending", limit=limit)
    if not records:
        print("No pending records")
        return 0

    for record in records:
        flag = "⚠️ " if record.needs_review else "  "
        print(
            f"{flag}[{record.id}] {record.occurred_at} {format_brl(record.amount):>16} "
            f"{record.category_label} ({record.confidence:.0%}, {record.suggested_action.value})"
        )
        print(f"      {record.description}")
    print(f"\n✓ {len(records)} pending record(s)")
    return 0


def cmd_rules(config: Config) -> int:
    """List learned classification rules."""
    store = StateStore(config.state_db_path)
    rules = LearningStore(store).list_rules()
    if not rules:
        print("No learned rules yet")
        return 0

    for rule in rules:
        print(
            f"  📄 [{rule.id}] {' '.join(rule.tokens)} → {rule.category_label} "
            f"(hits {rule.hit_count}, {rule.derived_confidence:.0%})"
        )
    print(f"\n✓ {len(rules)} rule(s)")
    return 0


def cmd_history(config: Config, record_id: str) -> int:
    """Show the audit log of one record."""
    store = StateStore(config.state_db_path)
    entries = store.get_audit_log(record_id)
    if not entries:
        print(f"No audit entries for {record_id}")
        return 0

    for entry in entries:
        before = (entry.before_snapshot or {}).get("status")
        after = (entry.after_snapshot or {}).get("status")
        print(f"  {entry.timestamp} {entry.action.value:<10} {before} → {after} by {entry.actor}")
    return 0


def cmd_notify_preview(config: Config) -> int:
    """Print the daily summary payload."""
    store = StateStore(config.state_db_path)
    registry = _build_registry(config, store)
    payload = build_summary(store, registry)
    if payload is None:
        print("Nothing to report")
        return 0
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "sync":
        return cmd_sync(config, parsed.window_days)
    elif parsed.command in ("approve", "reject", "reclassify"):
        return cmd_decide(config, parsed.command, parsed)
    elif parsed.command == "clear-all":
        return cmd_clear_all(config, parsed.confirm, parsed.actor)
    elif parsed.command == "status":
        return cmd_status(config)
    elif parsed.command == "pending":
        return cmd_pending(config, parsed.limit)
    elif parsed.command == "rules":
        return cmd_rules(config)
    elif parsed.command == "history":
        return cmd_history(config, parsed.record_id)
    elif parsed.command == "notify-preview":
        return cmd_notify_preview(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
