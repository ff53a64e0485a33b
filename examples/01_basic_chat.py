"""
Example 01: Basic Chat
======================

Demonstrates the simplest end-to-end usage of ChatController:
- Building an AppProfile from environment variables
- Streaming an answer with an on_update callback
- Showing reasoning (<think>) and visible text separately
- Following up in the conversation the backend assigned

Run against a Dify app (set the app key first):
    DIFY_DEFAULT_APP_NAME=demo DIFY_DEFAULT_APP_KEY=app-... uv run python examples/01_basic_chat.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main() -> None:
    from difystream import AppProfile, ChatController, StreamUpdate, make_user_id, visible_text

    print("=== difystream Basic Chat Example ===\n")

    profile = AppProfile.from_env()
    if profile is None:
        print("Set DIFY_DEFAULT_APP_NAME and DIFY_DEFAULT_APP_KEY to run this example.")
        return

    def render(update: StreamUpdate) -> None:
        print(update.fragment, end="", flush=True)

    async with ChatController(profile, make_user_id()) as chat:
        questions = [
            "What is server-sent events streaming?",
            "How does it compare to WebSockets?",
        ]

        for i, question in enumerate(questions, 1):
            print(f"Turn {i}: {question}\n  ", end="")
            result = await chat.send(question, on_update=render)
            print()

            if result is None:
                print("  (send rejected)")
                continue
            if not result.ok:
                print(f"  Failed: {result.error.message if result.error else result.state}")
                break

            thinking = [p for p in result.parts if p.kind == "think"]
            if thinking:
                print(f"  ({len(thinking)} reasoning block(s) hidden)")
            print(f"  Visible answer: {visible_text(result.parts)[:120]}")
            print(f"  Conversation: {chat.conversation_id}\n")

        print(f"Messages in history: {len(chat.history)}")
        print(f"Conversations for this user: {len(chat.conversations.items)}")

    print("\nController closed cleanly.")


if __name__ == "__main__":
    asyncio.run(main())
