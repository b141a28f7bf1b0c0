"""
cardsync check - Validate a card without touching the tracker.

With --pr, also validate the body of the card's open pull request.
"""

from cardsync.lib.config import ProjectConfig, load_lifecycle_config
from cardsync.lib.constants import EXIT_OK, EXIT_TRANSPORT, EXIT_VALIDATION
from cardsync.lib.errors import MalformedDocument
from cardsync.lib.prbody import validate_pr_body
from cardsync.lib.sections import SectionId, UnrecognizedSection
from cardsync.lib.store import CardStore
from cardsync.tracker import GhTracker, TransportError, check_gh_available


def cmd_check(args, project_config: ProjectConfig) -> int:
    """Parse a card and report its structure."""
    lifecycle = load_lifecycle_config(project_config.root)
    store = CardStore(project_config.cards_dir, project_config.archive_dir, lifecycle)

    try:
        loaded = store.load(args.id)
    except (FileNotFoundError, ValueError, MalformedDocument) as e:
        print(f"ERROR: {e}")
        return EXIT_VALIDATION

    doc = loaded.doc
    print(f"{doc.id}: {doc.title or '(untitled)'}")
    print(f"  File:   {loaded.path}{' (archived)' if loaded.archived else ''}")
    print(f"  Type:   {doc.type or '-'}")
    print(f"  Lane:   {doc.lane}")
    print(f"  Status: {doc.status}")
    print(f"  Issue:  {f'#{doc.tracker_issue_number}' if doc.tracker_issue_number else '-'}")

    found = [b.kind.value for b in doc.sections if isinstance(b.kind, SectionId)]
    other = [b.kind.raw_heading for b in doc.sections if isinstance(b.kind, UnrecognizedSection)]
    print(f"  Sections: {', '.join(found) or '-'}")
    if other:
        print(f"  Other headings (kept as-is): {', '.join(other)}")

    items = doc.acceptance_checklist
    if items:
        done = sum(1 for item in items if item.checked)
        print(f"  Acceptance Checklist: {done}/{len(items)}")

    children = doc.sub_issues
    if children:
        pending = sum(1 for c in children if c.number is None)
        print(f"  Sub-Issues: {len(children)} ({pending} not yet filed)")

    if doc.edited_since_reconcile:
        print("  Card edited since last reconciliation")

    if not args.pr:
        return EXIT_OK

    ok, msg = check_gh_available()
    if not ok:
        print(f"ERROR: {msg}")
        return EXIT_TRANSPORT

    tracker = GhTracker(project_config.repo, project_config.gh_timeout)
    try:
        prs = tracker.list_open_prs_for_id(doc.id)
        if not prs:
            print("  PR: none open")
            return EXIT_OK
        body = tracker.get_pr_body(prs[0])
    except TransportError as e:
        print(f"ERROR: {e}")
        return EXIT_TRANSPORT

    try:
        check = validate_pr_body(body)
    except MalformedDocument as e:
        print(f"ERROR: PR #{prs[0]}: {e}")
        return EXIT_VALIDATION
    print(f"  PR #{prs[0]}: issue link {'present' if check.has_issue_link else 'MISSING'}")
    if check.missing:
        print(f"    Missing sections: {', '.join(s.value for s in check.missing)}")
    return EXIT_OK if check.ok else EXIT_VALIDATION
