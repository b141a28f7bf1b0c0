"""
cardsync reconcile - Bring a card, its tracker issue and its PR in line.

Dry run by default; pass --execute to apply the plan.
"""

import argparse
import json
import signal
import threading

from cardsync.lib.config import ProjectConfig, load_lifecycle_config
from cardsync.lib.constants import (
    EXIT_DRIFT,
    EXIT_LOCKED,
    EXIT_OK,
    EXIT_STEP_FAILED,
    EXIT_TRANSPORT,
    EXIT_VALIDATION,
)
from cardsync.lib.errors import MalformedDocument
from cardsync.lib.store import CardStore
from cardsync.runner.locking import LockTimeout
from cardsync.tracker import GhTracker, TransportError
from cardsync.workflow.engine import ChildSignal, DuplicatePullRequest, Reconciler
from cardsync.workflow.state_machine import Authority, InvalidTransition, StatusDrift

COMPLETE_WORDS = {"", "done", "closed", "complete"}
OPEN_WORDS = {"open", "reopened"}


def parse_child_signal(value: str) -> ChildSignal:
    """Parse --child values: '12', '#12', '12:done' or '12:open'."""
    number, _, state = value.lstrip("#").partition(":")
    if not number.isdigit():
        raise argparse.ArgumentTypeError(f"expected an issue number, got '{value}'")
    state = state.strip().lower()
    if state in COMPLETE_WORDS:
        return ChildSignal(int(number), True)
    if state in OPEN_WORDS:
        return ChildSignal(int(number), False)
    raise argparse.ArgumentTypeError(f"unknown child state '{state}' (use done or open)")


def build_reconciler(project_config: ProjectConfig) -> Reconciler:
    lifecycle = load_lifecycle_config(project_config.root)
    store = CardStore(project_config.cards_dir, project_config.archive_dir, lifecycle)
    tracker = GhTracker(project_config.repo, project_config.gh_timeout)
    return Reconciler(tracker, store, project_config.lock_dir, project_config.lock_timeout)


def cmd_reconcile(args, project_config: ProjectConfig) -> int:
    """Run one reconciliation pass and print the plan."""
    card_id = args.id
    reconciler = build_reconciler(project_config)
    authority = Authority(args.authority) if args.authority else None

    # Ctrl-C stops further writes; the step in flight finishes
    cancel_event = threading.Event()
    original_sigint = signal.signal(signal.SIGINT, lambda *_: cancel_event.set())

    try:
        result = reconciler.reconcile(
            card_id,
            execute=args.execute,
            target=args.to,
            authority=authority,
            child_signals=args.child or [],
            cancel_event=cancel_event,
        )
    except LockTimeout as e:
        print(f"ERROR: {e}")
        return EXIT_LOCKED
    except StatusDrift as e:
        print(f"ERROR: {e}")
        print("  Use --authority document or --authority tracker")
        return EXIT_DRIFT
    except TransportError as e:
        print(f"ERROR: {e}")
        print("  Nothing was written. Re-run when the tracker is reachable.")
        return EXIT_TRANSPORT
    except (MalformedDocument, InvalidTransition, DuplicatePullRequest) as e:
        print(f"ERROR: {e}")
        return EXIT_VALIDATION
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}")
        return EXIT_VALIDATION
    finally:
        signal.signal(signal.SIGINT, original_sigint)

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(result.outcome.render_text(show_diff=args.diff))
        if result.status_before != result.status_after:
            print(f"Status: {result.status_before} -> {result.status_after}")
        for missing in result.not_found:
            print(f"Note: {missing}")
        for line in result.dropped:
            print(f"Warning: dropping Sub-Issues line not backed by a child: {line}")

    outcome = result.outcome
    if isinstance(outcome.error, TransportError):
        return EXIT_TRANSPORT
    if not outcome.ok:
        return EXIT_STEP_FAILED
    return EXIT_OK
