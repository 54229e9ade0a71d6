#!/usr/bin/env python3
"""
Check commissions for an order.

Displays commission breakdown from database, optionally running the
calculation first.

Usage:
    python scripts/check_commissions.py --order-id 123
    python scripts/check_commissions.py --last            # Check last paid order
    python scripts/check_commissions.py --order-id 123 --run
    python scripts/check_commissions.py --plan            # Print active plan
"""

import sys
import os
import json
import asyncio
import argparse
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from core.db import get_session
from models.user import User
from models.order import Order
from models.commission import Commission, CommissionRun
from mlm_system.config.rule_set import get_rule_set, rule_set_to_dict
from mlm_system.errors import MLMError
from mlm_system.services.commission_service import CommissionService

import logging

logging.basicConfig(level=logging.WARNING)


def print_plan():
    rule_set = get_rule_set()
    print(json.dumps(rule_set_to_dict(rule_set), indent=2))
    print(f"\nMaximum payout: {rule_set.maxPayoutRate * 100:.2f}% of commissionable value")


def print_order_commissions(session, order):
    buyer = session.query(User).filter_by(userID=order.userID).first()
    value = order.commissionableValue

    print("\n" + "=" * 80)
    print("COMMISSION CHECK")
    print("=" * 80)
    print(f"\nOrder: {order.orderNumber} (ID: {order.orderID})")
    print(f"Buyer: {buyer.firstname if buyer else '?'} (ID: {order.userID}, role: {buyer.role if buyer else '?'})")
    print(f"Total: ${order.total}   Commissionable value: ${value}")
    print(f"Paid: {order.paidAt}   Commission status: {order.commissionStatus}")
    if order.commissionError:
        print(f"Last error: {order.commissionError}")

    commissions = session.query(Commission).filter_by(
        orderID=order.orderID
    ).order_by(Commission.commissionID).all()

    if not commissions:
        print("\n❌ No commissions found for this order")
        return

    print(f"\n{len(commissions)} commission(s) found:")
    print("-" * 80)

    total = Decimal("0")
    for commission in commissions:
        user = session.query(User).filter_by(userID=commission.userID).first()
        active_marker = "✅" if user and user.isActive else "❌"
        rate = f"{Decimal(str(commission.percentage)) * 100:5.2f}%" if commission.percentage is not None else "  fixed"
        level = f"L{commission.level}" if commission.level else "  "

        print(
            f"{commission.commissionType:10} {level:3} "
            f"{(user.firstname if user else '?'):15} (ID:{commission.userID:5}) {active_marker} "
            f"{rate} = ${commission.amount:>10} ({commission.status})"
        )
        total += Decimal(str(commission.amount))

    print("-" * 80)
    print(f"\nTotal paid:       ${total}")
    if value:
        print(f"Payout ratio:     {total / value * 100:.2f}% of CV")

    run = session.query(CommissionRun).filter_by(orderID=order.orderID).first()
    if run:
        print(f"Plan version:     {run.ruleSetVersion}")
        skipped = run.skippedLevels or []
        if skipped:
            print(f"\nSkipped levels ({len(skipped)}):")
            for skip in skipped:
                print(
                    f"  {skip.get('commissionType', 'matrix'):8} level {skip['level']}: "
                    f"user {skip['userId']} ({skip['reason']})"
                )

    print("\n" + "=" * 80 + "\n")


def main():
    """Check commissions."""
    parser = argparse.ArgumentParser(description='Check commissions for order')
    parser.add_argument('--order-id', type=int, help='Order ID to check')
    parser.add_argument('--last', action='store_true', help='Check last paid order')
    parser.add_argument('--run', action='store_true', help='Process commissions before showing them')
    parser.add_argument('--plan', action='store_true', help='Print active compensation plan')
    args = parser.parse_args()

    Config.initialize_from_env()

    if args.plan:
        print_plan()
        return

    session = get_session()

    try:
        # Find order
        if args.last:
            order = session.query(Order).filter(
                Order.paymentStatus == "paid"
            ).order_by(Order.paidAt.desc()).first()
        elif args.order_id:
            order = session.query(Order).filter_by(orderID=args.order_id).first()
        else:
            print("❌ Specify --order-id or --last")
            return

        if not order:
            print("❌ Order not found")
            return

        if args.run:
            result = asyncio.run(CommissionService(session).processOrder(order.orderID))
            if result.alreadyProcessed:
                print(f"ℹ️  Order already processed ({result.recordsCreated} records)")
            else:
                print(f"✅ Created {result.recordsCreated} records, total ${result.totalAmount}")

        print_order_commissions(session, order)

    except MLMError as e:
        print(f"❌ {e}")
        sys.exit(1)

    finally:
        session.close()


if __name__ == "__main__":
    main()
