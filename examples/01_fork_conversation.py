"""
Example 01: Fork a Conversation
===============================

Demonstrates the fork synthesis pipeline end to end:
- Building a CanopyService with CanopyService.open()
- Watching fork progress through the event bus
- Forking from a message, optionally summarising the older history
- Reading the new conversation with its phantom history spliced in

Run against your account (the cookie is sent with every request):
    CANOPY_ORG_ID=... CANOPY_COOKIE="sessionKey=..." \\
        uv run python examples/01_fork_conversation.py <conversation_id> <message_id> [model]

Set CANOPY_RAW_PERCENT=40 to summarise all but the most recent 40% of turns.
"""

import asyncio
import os
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main(conversation_id: str, message_id: str, model: str) -> None:
    from canopy import CanopyConfig, CanopyEvent, CanopyService, ForkOptions, RemoteConfig

    print("=== Canopy Fork Example ===\n")

    config = CanopyConfig(
        remote=RemoteConfig(
            org_id=os.environ["CANOPY_ORG_ID"],
            headers={"Cookie": os.environ.get("CANOPY_COOKIE", "")},
        )
    )
    options = ForkOptions(raw_text_percentage=int(os.environ.get("CANOPY_RAW_PERCENT", "100")))

    async with CanopyService.open(config, db_path="/tmp/canopy_example_01.db") as canopy:
        canopy.subscribe(
            CanopyEvent.FORK_STATE_CHANGED,
            lambda event, payload: print(f"  -> {payload['state']}"),
        )
        canopy.subscribe(
            CanopyEvent.FORK_ASSET_DROPPED,
            lambda event, payload: print(f"  !! dropped {payload['kind']} {payload['name']}"),
        )

        print(f"Forking {conversation_id} at {message_id} with {model}")
        result = await canopy.fork_from(conversation_id, message_id, model, options=options)

        print(f"\nNew conversation: {result.conversation_id} ({result.name})")
        print(f"  Files rehosted: {len(result.file_ids)}, dropped: {len(result.dropped_files)}")
        print(f"  Summarised: {result.summarized}")
        print(f"  Phantom messages stored: {result.phantom_count}")

        view = await canopy.get_overlay_view(result.conversation_id)
        print(f"\nOverlay view has {len(view.chat_messages)} messages:")
        for message in view.chat_messages:
            print(f"  [{message.sender}] {message.text()[:80]!r}")

    print("\nService closed cleanly.")


if __name__ == "__main__":
    if len(sys.argv) < 3:
        sys.exit(__doc__)
    asyncio.run(main(sys.argv[1], sys.argv[2], sys.argv[3] if len(sys.argv) > 3 else "claude-sonnet-4"))
