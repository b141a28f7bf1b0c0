"""
cardsync status - Compare a card's status with the tracker's.
"""

from cardsync.lib.config import ProjectConfig, load_lifecycle_config
from cardsync.lib.constants import EXIT_DRIFT, EXIT_OK, EXIT_TRANSPORT, EXIT_VALIDATION
from cardsync.lib.errors import MalformedDocument
from cardsync.lib.store import CardStore
from cardsync.runner.locking import is_locked
from cardsync.tracker import GhTracker, TransportError
from cardsync.workflow.state_machine import next_status


def cmd_status(args, project_config: ProjectConfig) -> int:
    """Show card status, tracker status and open PRs. Read-only."""
    lifecycle = load_lifecycle_config(project_config.root)
    store = CardStore(project_config.cards_dir, project_config.archive_dir, lifecycle)

    try:
        doc = store.load(args.id).doc
    except (FileNotFoundError, ValueError, MalformedDocument) as e:
        print(f"ERROR: {e}")
        return EXIT_VALIDATION

    tracker = GhTracker(project_config.repo, project_config.gh_timeout)
    issue = doc.tracker_issue_number
    try:
        if issue is None:
            issue = tracker.find_issue_by_tag(doc.id)
        observed = tracker.get_issue_status(issue) if issue is not None else None
        prs = tracker.list_open_prs_for_id(doc.id)
    except TransportError as e:
        print(f"ERROR: {e}")
        return EXIT_TRANSPORT

    upcoming = next_status(doc.status)
    print(f"{doc.id}")
    print(f"  Card status:    {doc.status}")
    print(f"  Tracker status: {observed or '-'}{f' (issue #{issue})' if issue else ' (no issue)'}")
    print(f"  Next status:    {upcoming.value if upcoming else '- (terminal)'}")
    print(f"  Open PRs:       {', '.join(f'#{n}' for n in prs) or '-'}")
    if is_locked(project_config.lock_dir, doc.id):
        print("  A reconciliation pass is running for this card")

    if len(prs) > 1:
        print("  WARNING: more than one open PR; reconcile will refuse to run")

    if observed is not None and observed != doc.status:
        print("  DRIFT: card and tracker disagree; reconcile with --authority document|tracker")
        return EXIT_DRIFT
    return EXIT_OK
