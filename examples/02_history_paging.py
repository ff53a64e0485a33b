"""
Example 02: History Paging
==========================

Demonstrates backward pagination with scroll preservation:
- Opening the most recent conversation
- Simulating a view scrolled to the top
- Loading older pages until the backend reports no more
- Restoring the scroll offset after each prepend

Run against a Dify app that already has some conversations:
    DIFY_DEFAULT_APP_NAME=demo DIFY_DEFAULT_APP_KEY=app-... \
        DIFY_USER_ID=user_... uv run python examples/02_history_paging.py
"""

import asyncio
import os
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

ROW_HEIGHT = 60.0
VIEWPORT = 600.0


async def main() -> None:
    from difystream import AppProfile, ChatController, DifyConfig, PagerConfig

    print("=== difystream History Paging Example ===\n")

    profile = AppProfile.from_env()
    user_id = os.environ.get("DIFY_USER_ID")
    if profile is None or not user_id:
        print("Set DIFY_DEFAULT_APP_NAME, DIFY_DEFAULT_APP_KEY and DIFY_USER_ID.")
        return

    config = DifyConfig(pager=PagerConfig(page_limit=5))
    async with ChatController(profile, user_id, config) as chat:
        await chat.conversations.load()
        if not chat.conversations.items:
            print("No conversations yet.")
            return

        latest = chat.conversations.items[0]
        print(f"Opening: {latest.name or latest.id}")
        await chat.select_conversation(latest.id)
        print(f"  Loaded {len(chat.history)} message(s), more: {chat.pager.has_more}")

        offset = 0.0
        while True:
            content_height = len(chat.history) * ROW_HEIGHT
            load = await chat.on_scroll(offset, VIEWPORT, content_height)
            if load is None:
                break
            if load.status != "loaded":
                print(f"  Page {load.status}: {load.error}")
                break
            new_height = len(chat.history) * ROW_HEIGHT
            if load.anchor is not None:
                offset = chat.scroll.restore(load.anchor, new_height)
            print(f"  +{load.added} older message(s), offset now {offset:.0f}")
            # Scroll back to the top to ask for the next page
            offset = 0.0

        print(f"\nFull history: {len(chat.history)} message(s)")
        for message in chat.history[:3]:
            print(f"  [{message.created_at}] {message.query[:60]}")


if __name__ == "__main__":
    asyncio.run(main())
