"""CLI entry point for the Aide bot.

A terminal stand-in for the chat transport, for development.  Plain lines
are sent as text messages; a line starting with ``/`` is a button press
(``/create``, ``/confirm``, ``/field:date``...).  Cards are printed with
their button codes so they can be typed back.

Usage:
    python -m aide.main                 # normal mode (quiet)
    python -m aide.main --debug         # debug mode (shows API calls)
    python -m aide.main --user 42       # act as another user id
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from dotenv import load_dotenv

from aide.agent import Assistant
from aide.config import DATABASE_PATH, GOOGLE_CALENDAR_TOKEN
from aide.dispatcher import ActionDispatcher
from aide.engine import FormEngine
from aide.health import HealthTracker
from aide.presentation import Card
from aide.services.calendar_client import GoogleCalendarClient
from aide.services.google_auth import GoogleOAuthClient
from aide.services.storage import open_stores

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("aide").setLevel(logging.DEBUG if debug else logging.INFO)


def _print_card(card: Card) -> None:
    print(f"\nAide: {card.text}")
    for row in card.buttons:
        labels = [
            f"[{b.text} → {b.url}]" if b.url else f"[{b.text} /{b.code}]"
            for b in row
        ]
        print("      " + "  ".join(labels))
    if card.placeholder:
        print(f"      ({card.placeholder})")
    print()


async def _chat_loop(user_id: int) -> None:
    stores = await open_stores(DATABASE_PATH)
    oauth = GoogleOAuthClient(stores.tokens, fallback_token=GOOGLE_CALENDAR_TOKEN)
    calendar = GoogleCalendarClient(token_provider=oauth.access_token)
    dispatcher = ActionDispatcher(
        stores.drafts,
        FormEngine(stores.drafts, calendar),
        assistant=Assistant(),
        health=HealthTracker(stores.health),
    )
    logger.info("CLI session started for user %s", user_id)

    try:
        for card in await dispatcher.on_button_press(user_id, "menu"):
            _print_card(card)

        while True:
            try:
                user_input = (await asyncio.to_thread(input, "You: ")).strip()
            except (KeyboardInterrupt, EOFError):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit", "q"):
                print("\nGoodbye!")
                break

            try:
                if user_input.startswith("/"):
                    cards = await dispatcher.on_button_press(user_id, user_input[1:])
                    if not cards:
                        print("(nothing to do)\n")
                else:
                    cards = await dispatcher.on_text_reply(user_id, user_input)
                for card in cards:
                    _print_card(card)
            except Exception as e:
                logger.exception("Error processing input")
                print(f"\nAide: Sorry, something went wrong: {e}\n")
    finally:
        await calendar.aclose()
        await oauth.aclose()
        await stores.close()


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Aide bot CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    parser.add_argument("--user", type=int, default=1, help="User id to act as")
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  Aide - CLI Chat")
    print("=" * 60)
    print("  Type a message, or /code to press a button.")
    print("  'quit' to exit.")
    print("=" * 60)

    asyncio.run(_chat_loop(args.user))


if __name__ == "__main__":
    main()
