#!/usr/bin/env python3
"""
Seed a demo network.

Builds a sponsor chain plus a few side branches, funds every member and
activates them through the public gateway with balance conversions, then
drains the payout queue and prints the resulting tree.

Usage:
    python scripts/seed_network.py [--depth N] [--width N] [--cycle-size N]

WARNING: This will DROP and recreate the database!
"""

import sys
import os
import argparse
import asyncio
from decimal import Decimal

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from core.db import get_session, setup_database, drop_all_tables
from models.member import Member
from models.listeners import register_all_listeners
from mlm_engine import gateway
from mlm_engine.config.ranks import first_rank
from mlm_engine.utils.money import format_money

import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SEED_BALANCE = Decimal("1000.00")


def fund_members(memberIds):
    """Seed balances directly, outside the income flow."""
    session = get_session()
    try:
        table = Member.__table__
        session.execute(
            table.update()
            .where(table.c.memberID.in_(memberIds))
            .values(availableBalance=table.c.availableBalance + SEED_BALANCE)
        )
        session.commit()
        logger.info(f"✓ Funded {len(memberIds)} members with {format_money(SEED_BALANCE)}")
    finally:
        session.close()


async def register(sponsorId, name):
    result = await gateway.registerMember(None, {"sponsorId": sponsorId, "displayName": name})
    if not result["success"]:
        raise RuntimeError(f"Could not register {name}: {result['error']}")
    return result["data"]["memberId"]


async def build_network(depth: int, width: int):
    """Chain of `depth` members; every chain member also sponsors `width` leaves."""
    chain = []
    sponsorId = None
    for i in range(depth):
        memberId = await register(sponsorId, f"Chain {i + 1}")
        chain.append(memberId)
        sponsorId = memberId

    leaves = []
    for parentId in chain:
        for j in range(width):
            leaves.append(await register(parentId, f"Leaf {parentId}.{j + 1}"))

    logger.info(f"✓ Registered {len(chain)} chain members and {len(leaves)} leaves")
    return chain, leaves


async def activate_all(memberIds):
    tier = first_rank()
    activated = 0
    for memberId in memberIds:
        result = await gateway.createActivation(memberId, {
            "targetRank": tier.key,
            "paymentMethod": "fund_conversion",
            "paymentDetails": {"convertFromBalance": str(tier.activationAmount)}
        })
        if result["success"]:
            activated += 1
        else:
            logger.warning(f"Activation of {memberId} failed: {result['error']['code']}")

    logger.info(f"✓ Activated {activated}/{len(memberIds)} members at {tier.key}")


async def drain_queue():
    total = 0
    while True:
        result = await gateway.processPayoutQueue(None, {"batchSize": 100})
        applied = result["data"]["applied"] if result["success"] else 0
        total += applied
        if not applied:
            break
    logger.info(f"✓ Applied {total} payouts")


def print_tree(rootId):
    session = get_session()
    try:
        def print_member(member, prefix="", is_last=True):
            connector = "└─ " if is_last else "├─ "
            active_marker = "✅" if member.isActive else "❌"
            print(
                f"{prefix}{connector}{member.displayName} (ID:{member.memberID}) {active_marker} "
                f"[{member.rank}] {format_money(member.availableBalance)}"
            )

            children = session.query(Member).filter(
                Member.sponsorID == member.memberID
            ).order_by(Member.memberID).all()
            for i, child in enumerate(children):
                new_prefix = prefix + ("    " if is_last else "│   ")
                print_member(child, new_prefix, i == len(children) - 1)

        print("\n" + "=" * 80)
        print("NETWORK TREE")
        print("=" * 80 + "\n")
        print_member(session.get(Member, rootId))
        print("\n" + "=" * 80 + "\n")
    finally:
        session.close()


async def main(depth: int, width: int, cycleSize: int):
    Config.initialize_from_env()
    Config.set(Config.GLOBAL_CYCLE_SIZE, cycleSize)
    Config.validate()

    drop_all_tables()
    setup_database()
    register_all_listeners()

    chain, leaves = await build_network(depth, width)
    fund_members(chain + leaves)
    await activate_all(chain + leaves)
    await drain_queue()

    print_tree(chain[0])


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed a demo network")
    parser.add_argument("--depth", type=int, default=8)
    parser.add_argument("--width", type=int, default=2)
    parser.add_argument("--cycle-size", type=int, default=8)
    args = parser.parse_args()

    asyncio.run(main(args.depth, args.width, args.cycle_size))
