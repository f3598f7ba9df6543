#!/usr/bin/env python3
"""Patient messaging engine CLI."""

import argparse
import logging
import sys
from config.settings import Settings
from collaborators.memory import ConsoleTransport
from schemas.collaborators import InboundMessage
from orchestrator import MessageProcessor


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Patient messaging engine - process an inbound patient message"
    )
    parser.add_argument(
        "--phone",
        type=str,
        help="Sender phone number"
    )
    parser.add_argument(
        "--message",
        "-m",
        type=str,
        help="Inbound message text"
    )
    parser.add_argument(
        "--patient-id",
        type=str,
        help="Patient ID (derived from the phone number if omitted)"
    )
    parser.add_argument(
        "--db-path",
        type=str,
        help="Path to the conversation state database"
    )
    parser.add_argument(
        "--sweep",
        action="store_true",
        help="Deactivate expired conversation states and exit"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.sweep and not (args.phone and args.message):
        parser.error("--phone and --message are required unless --sweep is given")

    settings = Settings(db_path=args.db_path, verbose=args.verbose)
    processor = MessageProcessor(settings=settings, transport=ConsoleTransport())

    try:
        if args.sweep:
            count = processor.sweep_expired()
            print(f"Deactivated {count} expired conversation states")
            return

        processed = processor.handle(InboundMessage(
            phone_number=args.phone,
            message=args.message,
            patient_id=args.patient_id,
        ))
        print("\n" + "="*60)
        print("PROCESSED MESSAGE")
        print("="*60 + "\n")
        print(f"Intent:     {processed.intent.intent.value} ({processed.intent.confidence:.2f})")
        print(f"Sentiment:  {processed.sentiment.value}")
        print(f"Reply type: {processed.response.type.value} [{processed.response.priority.value}]")
        print(f"Generated:  {processed.response.generated}")
        if processed.escalated:
            print(f"Escalated:  {processed.escalation_reason}")
        print("\n" + processed.response.message + "\n")
    except Exception as e:
        print(f"Error processing message: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)
    finally:
        processor.close()


if __name__ == "__main__":
    main()
