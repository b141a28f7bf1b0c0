#!/usr/bin/env python3
"""cardsync CLI entrypoint."""

import argparse
import logging
import sys
from pathlib import Path

from cardsync.lib.config import find_project_root, load_project_config
from cardsync.lib.constants import EXIT_VALIDATION, STATUSES
from cardsync.lib.validate import ValidationError
from cardsync.commands import check as cmd_check_module
from cardsync.commands import reconcile as cmd_reconcile_module
from cardsync.commands import status as cmd_status_module


def get_project_config(args):
    """Load project config from --root or the enclosing project."""
    root = Path(args.root).resolve() if args.root else find_project_root(Path.cwd())
    try:
        return load_project_config(root)
    except (ValueError, ValidationError) as e:
        print(f"ERROR: Invalid project configuration in {root}: {e}")
        sys.exit(EXIT_VALIDATION)


def cmd_reconcile(args):
    project_config = get_project_config(args)
    return cmd_reconcile_module.cmd_reconcile(args, project_config)


def cmd_check(args):
    project_config = get_project_config(args)
    return cmd_check_module.cmd_check(args, project_config)


def cmd_status(args):
    project_config = get_project_config(args)
    return cmd_status_module.cmd_status(args, project_config)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='cardsync', description='Card lifecycle reconciliation')
    parser.add_argument('--root', help='Project root (default: nearest directory with cardsync.env or .git)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # cardsync reconcile
    p_reconcile = subparsers.add_parser('reconcile', help='Plan (and optionally apply) a reconciliation pass')
    p_reconcile.add_argument('id', help='Card ID (e.g., ARCH-123)')
    p_reconcile.add_argument('--execute', action='store_true', help='Apply the plan (default: dry run)')
    p_reconcile.add_argument('--to', choices=STATUSES, metavar='STATUS',
                             help='Advance to this status (must be the next one)')
    p_reconcile.add_argument('--authority', choices=['document', 'tracker'],
                             help='Side that wins if card and tracker disagree on status')
    p_reconcile.add_argument('--child', action='append', type=cmd_reconcile_module.parse_child_signal,
                             metavar='N[:open]', help='Child issue N completed (or reopened); repeatable')
    p_reconcile.add_argument('--json', action='store_true', help='Print the plan as JSON')
    p_reconcile.add_argument('--diff', action='store_true', help='Show a diff for each planned write')
    p_reconcile.set_defaults(func=cmd_reconcile)

    # cardsync check
    p_check = subparsers.add_parser('check', help='Validate a card')
    p_check.add_argument('id', help='Card ID')
    p_check.add_argument('--pr', action='store_true', help='Also validate the open PR body')
    p_check.set_defaults(func=cmd_check)

    # cardsync status
    p_status = subparsers.add_parser('status', help='Compare card and tracker status')
    p_status.add_argument('id', help='Card ID')
    p_status.set_defaults(func=cmd_status)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
