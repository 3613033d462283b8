"""
Example 02: Branch Navigation and Bookmarks
===========================================

Demonstrates moving the remote current-leaf pointer around a branched
conversation:
- Jumping to the deepest leaf of the whole tree
- Bookmarking the current position and returning to it later
- Jumping to the most recent message

Run against your account:
    CANOPY_ORG_ID=... CANOPY_COOKIE="sessionKey=..." \\
        uv run python examples/02_branch_navigation.py <conversation_id>
"""

import asyncio
import os
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main(conversation_id: str) -> None:
    from canopy import CanopyConfig, CanopyService, DuplicateBookmarkError, RemoteConfig

    print("=== Canopy Navigation Example ===\n")

    config = CanopyConfig(
        remote=RemoteConfig(
            org_id=os.environ["CANOPY_ORG_ID"],
            headers={"Cookie": os.environ.get("CANOPY_COOKIE", "")},
        )
    )

    async with CanopyService.open(config, db_path="/tmp/canopy_example_02.db") as canopy:
        try:
            leaf_id = await canopy.add_bookmark(conversation_id, "before-jump")
            print(f"Bookmarked current leaf {leaf_id}")
        except DuplicateBookmarkError:
            print("Bookmark 'before-jump' already exists, reusing it")

        deepest = await canopy.go_to_deepest(conversation_id)
        print(f"Deepest leaf: {deepest.leaf_id} (depth {deepest.depth})")

        latest = await canopy.go_to_latest(conversation_id)
        print(f"Most recent message: {latest}")

        back = await canopy.go_to_bookmark(conversation_id, "before-jump")
        print(f"Back at bookmark, now on leaf {back.leaf_id}")

        print("\nBookmarks:")
        for name, message_id in (await canopy.bookmarks(conversation_id)).items():
            print(f"  {name}: {message_id}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        sys.exit(__doc__)
    asyncio.run(main(sys.argv[1]))
