"""CLI entry point for the Clinic Booking Assistant.

A terminal chat loop for trying the booking flow locally.  For production,
use the FastAPI server (clinic_assistant/server.py) or the Lambda handlers.

Usage:
    python -m clinic_assistant.main            # normal mode (quiet)
    python -m clinic_assistant.main --debug    # debug mode (shows every turn)
"""

from __future__ import annotations

import argparse
import logging
import uuid

from dotenv import load_dotenv

from clinic_assistant.assistant import create_booking_assistant
from clinic_assistant.errors import ClinicAssistantError

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    if not debug:
        # Silence chatty client loggers even if root is WARNING
        for name in ("httpx", "httpcore", "botocore", "anthropic", "openai"):
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("clinic_assistant").setLevel(logging.DEBUG if debug else logging.INFO)


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Clinic Booking Assistant CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including extraction and API calls",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  Clinic Booking Assistant - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new session.")
    print("=" * 60 + "\n")

    assistant = create_booking_assistant()
    assistant.start()
    session_id = str(uuid.uuid4())
    logger.info("Started new session: %s", session_id)

    try:
        while True:
            try:
                user_input = input("You: ").strip()
            except (KeyboardInterrupt, EOFError):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue

            if user_input.lower() in ("exit", "quit", "q"):
                print("\nGoodbye! Have a great day!")
                break

            if user_input.lower() == "new":
                session_id = str(uuid.uuid4())
                print(f"\n>> New session started: {session_id[:8]}...\n")
                continue

            try:
                result = assistant.chat(session_id, user_input)
            except KeyboardInterrupt:
                print("\n\nGoodbye!")
                break
            except ClinicAssistantError as e:
                print(f"\nAssistant: Sorry, that didn't work: {e}")
                print("     Please try again or type 'new' to start a fresh session.\n")
                continue
            except Exception:
                logger.exception("Error processing message")
                print("\nAssistant: I'm sorry, something went wrong.")
                print("     Please try again or type 'new' to start a fresh session.\n")
                continue

            print(f"\nAssistant: {result.reply}")
            print(f"     [{result.step}/{result.total_steps}]\n")
            if result.done:
                print(f">> Booked appointment {result.record['appointment_id']}\n")
                session_id = str(uuid.uuid4())
    finally:
        assistant.stop()


if __name__ == "__main__":
    main()
