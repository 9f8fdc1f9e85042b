#!/usr/bin/env python3
"""
Walk through a berth locally.

Defines two guarantors, shows that concurrent requests share one retrieval,
and fulfills a post that depends on its author.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add underwriter to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from underwriter import AlreadyFulfilledError, Berth

USERS = {"alice": {"name": "Alice"}, "bob": {"name": "Bob"}}


async def load(qualifier: str, identifier: str):
    """Pretend to fetch a record from a slow backend."""
    print(f"  retrieving {qualifier}/{identifier}")
    await asyncio.sleep(0.1)
    if qualifier == "users":
        return USERS.get(identifier)
    return None


def build_post(context):
    author = context.dependencies[0].guarantee
    return {"title": context.guarantee, "author": author["name"]}


async def demo():
    berth = Berth(retriever=load)
    berth.define("users")
    berth.define("posts", initializer=build_post, public_fulfill=True)

    print("Requesting alice three times:")
    users = await asyncio.gather(*(berth.get("users", "alice") for _ in range(3)))
    print(f"  got {users[0]} (x{len(users)})")
    print(f"  stats: {berth.guarantor('users').get_stats()}")
    print()

    print("Fulfilling a post that depends on bob:")
    pending = berth.get("posts", "hello")
    berth.fulfill("posts", "hello", "Hello, world", [("bob", "users")])
    print(f"  {await pending}")
    print()

    print("Fulfilling it again:")
    try:
        await berth.fulfill("posts", "hello", "Second draft")
    except AlreadyFulfilledError as e:
        print(f"  rejected: {e}")


def main():
    logging.basicConfig(level=logging.WARNING)
    asyncio.run(demo())
    return 0


if __name__ == "__main__":
    sys.exit(main())
