"""CLI runner for duplicate-story detection.

Usage:
    python scripts/run_dedup.py init-db
    python scripts/run_dedup.py run --issue-id ISSUE
    python scripts/run_dedup.py run --issue-id ISSUE --lookback-days 7 --threshold 0.85
    python scripts/run_dedup.py inspect --issue-id ISSUE
"""

from __future__ import annotations

import argparse
import sys

from storydedup.core.config import get_config
from storydedup.core.database import init_db
from storydedup.core.exceptions import ConfigError
from storydedup.core.logger import get_logger, setup_logging
from storydedup.core.models import MatchConfig
from storydedup.storage import DuplicateGroupRepository
from storydedup.workflows import IssueDedupWorkflow, WorkflowResult

logger = get_logger(__name__)


def _print_result(result: WorkflowResult) -> None:
    """Print workflow result summary to stdout."""
    status = "SUCCESS" if result.success else "FAILED"
    print(f"\n{'=' * 60}")
    print(f"  Workflow:   {result.workflow_name}")
    print(f"  Status:     {status}")
    print(f"  Elapsed:    {result.elapsed_sec}s")
    print(f"  Posts:      {result.posts_loaded}")
    print(f"  Groups:     {result.groups_created}")
    print(f"  Duplicates: {result.duplicates}")
    print(f"  Unique:     {result.unique_posts}")
    if result.errors:
        print(f"  Errors:     {len(result.errors)}")
        for err in result.errors:
            print(f"    - [{err.get('step', '?')}] {err.get('error', '?')}")
    stats = result.data.get("stats")
    if stats:
        for key, value in stats.items():
            print(f"  {key}: {value}")
    print(f"{'=' * 60}\n")


def run_issue(
    issue_id: str,
    lookback_days: int | None = None,
    threshold: float | None = None,
    match_descriptions: bool | None = None,
) -> WorkflowResult:
    """Run detection for one issue, overriding config defaults as given.

    Raises:
        ConfigError: If an override is out of range.
    """
    defaults = get_config().dedup.defaults.model_dump()
    overrides = {
        "historical_lookback_days": lookback_days,
        "strictness_threshold": threshold,
        "match_descriptions": match_descriptions,
    }
    defaults.update({k: v for k, v in overrides.items() if v is not None})
    match_config = MatchConfig.build(**defaults)
    return IssueDedupWorkflow(issue_id, match_config).run()


def inspect_issue(issue_id: str) -> int:
    """Print the stored groups and members for an issue.

    Returns:
        Number of groups found.
    """
    repo = DuplicateGroupRepository()
    groups = repo.get_groups_for_issue(issue_id)
    print(f"\nIssue {issue_id}: {len(groups)} duplicate group(s)")
    for group in groups:
        print(f"\n[{group.detection_method.value}] {group.topic_signature}")
        print(f"  group:   {group.id}")
        print(f"  primary: {group.primary_post_id or '-'}")
        print(f"  score:   {group.similarity_score:.2f}")
        if group.explanation:
            print(f"  why:     {group.explanation}")
        for member in repo.get_members_for_group(group.id):
            print(f"    dup {member.post_id} ({member.similarity_score:.2f})")
    print()
    return len(groups)


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="storydedup - duplicate-story detection per issue",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python scripts/run_dedup.py init-db\n"
            "  python scripts/run_dedup.py run --issue-id 2026-10-19\n"
            "  python scripts/run_dedup.py inspect --issue-id 2026-10-19\n"
        ),
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-db", help="Create database tables")

    run_parser = subparsers.add_parser("run", help="Detect duplicates for an issue")
    run_parser.add_argument("--issue-id", required=True, help="Issue to process")
    run_parser.add_argument(
        "--lookback-days", type=int, default=None,
        help="Days of sent issues to compare against (default: config)",
    )
    run_parser.add_argument(
        "--threshold", type=float, default=None,
        help="Title similarity threshold in (0, 1] (default: config)",
    )
    run_parser.add_argument(
        "--match-descriptions", action="store_true", default=None,
        help="Also compare descriptions in the historical and title stages",
    )

    inspect_parser = subparsers.add_parser("inspect", help="Show stored groups for an issue")
    inspect_parser.add_argument("--issue-id", required=True, help="Issue to inspect")

    return parser


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = get_config()
    setup_logging(
        level=config.logging.level,
        format=config.logging.format,
        log_file=config.logging.file,
    )
    init_db()

    if args.command == "init-db":
        print("Database ready.")
        return

    if args.command == "inspect":
        inspect_issue(args.issue_id)
        return

    try:
        result = run_issue(
            args.issue_id,
            lookback_days=args.lookback_days,
            threshold=args.threshold,
            match_descriptions=args.match_descriptions,
        )
    except ConfigError as e:
        logger.error("invalid_arguments", error=str(e))
        print(f"Invalid arguments: {e}", file=sys.stderr)
        sys.exit(2)

    _print_result(result)
    sys.exit(0 if result.success else 1)


if __name__ == "__main__":
    main()
