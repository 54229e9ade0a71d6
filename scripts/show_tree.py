#!/usr/bin/env python3
"""
Display matrix downline tree.

Shows a distributor's downline with qualifying-period stats per node.

Usage:
    python scripts/show_tree.py --user-id 1 [--max-depth DEPTH] [--month YYYY-MM]
    python scripts/show_tree.py --user-id 1 --stats
    python scripts/show_tree.py --validate
"""

import sys
import os
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from core.db import get_session
from mlm_system.config.rule_set import get_rule_set
from mlm_system.errors import MLMError
from mlm_system.utils.chain_walker import ChainWalker
from mlm_system.utils.time_machine import timeMachine

import logging

logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def render_tree(node, prefix="", is_last=True, is_root=True):
    """Render DownlineNode as ASCII tree lines."""
    user = node.user
    active_marker = "✅" if user.isActive else "❌"
    leg = f"L{node.position.legPosition}" if node.position.legPosition else "root"
    name = f"{user.firstname or ''} {user.surname or ''}".strip() or f"user{user.userID}"

    line = (
        f"{name} (ID:{user.userID}) {active_marker} [{user.rank}] {leg} "
        f"PS=${node.personalSales} TV=${node.teamVolume} legs={node.activeLegs}"
    )

    if is_root:
        lines = [line]
        child_prefix = ""
    else:
        connector = "└─ " if is_last else "├─ "
        lines = [f"{prefix}{connector}{line}"]
        child_prefix = prefix + ("    " if is_last else "│   ")

    for i, child in enumerate(node.children):
        is_last_child = (i == len(node.children) - 1)
        lines.extend(render_tree(child, child_prefix, is_last_child, is_root=False))

    return lines


def print_tree(walker, user_id, max_depth, period):
    tree = walker.build_downline_tree(user_id, max_depth, period)

    print("\n" + "=" * 80)
    print(f"MATRIX DOWNLINE TREE ({period.label})")
    print("=" * 80)
    print("\nLegend:")
    print("  ✅ / ❌ = Active / inactive distributor")
    print("  [rank] = Stored rank")
    print("  Ln = Leg position under parent")
    print("  PS = Personal sales, TV = Team volume, legs = Active legs")
    print("\n" + "=" * 80 + "\n")
    for line in render_tree(tree):
        print(line)
    print("\n" + "=" * 80 + "\n")


def print_statistics(walker, user_id):
    stats = walker.get_matrix_stats(user_id)

    print("\n" + "=" * 80)
    print(f"MATRIX STATISTICS FOR USER {user_id}")
    print("=" * 80 + "\n")
    print(f"Level:            {stats['level']}")
    print(f"Position:         {stats['position']}")
    print(f"Leg position:     {stats['legPosition'] or '-'}")
    print(f"Total downline:   {stats['totalDownline']}")
    print(f"Direct children:  {stats['directChildren']}")
    print(f"Available slots:  {stats['availableSlots']}")
    print("\n" + "=" * 80 + "\n")


def print_validation(walker):
    report = walker.validate_matrix()

    print("\n" + "=" * 80)
    print("MATRIX VALIDATION")
    print("=" * 80 + "\n")
    print(f"Overfilled parents:  {report['overfilled'] or 'none'}")
    print(f"Positions too deep:  {report['tooDeep'] or 'none'}")
    print(f"Orphaned positions:  {report['orphans'] or 'none'}")

    if any(report.values()):
        print("\n⚠️  Matrix has problems, repair data before running commissions")
    else:
        print("\n✅ Matrix is consistent")
    print("\n" + "=" * 80 + "\n")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Display matrix downline tree')
    parser.add_argument('--user-id', type=int,
                        help='Distributor at the top of the tree')
    parser.add_argument('--max-depth', type=int,
                        help='Levels to expand (default: DOWNLINE_TREE_DEPTH)')
    parser.add_argument('--month', type=str,
                        help='Qualifying period YYYY-MM (default: current month)')
    parser.add_argument('--stats', action='store_true',
                        help='Show placement statistics only')
    parser.add_argument('--validate', action='store_true',
                        help='Check matrix width/depth invariants')
    args = parser.parse_args()

    # Initialize config
    Config.initialize_from_env()

    if not args.validate and not args.user_id:
        print("❌ Specify --user-id or --validate")
        return

    rule_set = get_rule_set()
    session = get_session()
    try:
        walker = ChainWalker(session, matrixDepth=rule_set.matrixDepth, matrixWidth=rule_set.matrixWidth)

        if args.validate:
            print_validation(walker)
            return

        if args.stats:
            print_statistics(walker, args.user_id)
            return

        period = timeMachine.periodFor(args.month) if args.month else timeMachine.currentPeriod
        print_tree(walker, args.user_id, args.max_depth, period)
        print_statistics(walker, args.user_id)

    except MLMError as e:
        print(f"❌ {e}")
        sys.exit(1)

    finally:
        session.close()


if __name__ == "__main__":
    main()
