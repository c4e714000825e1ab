"""
Main entry point for the roomcall client.
Run with: python -m roomcall ROOM_ID --token TOKEN
"""
import argparse
import asyncio
import os
import sys

from .client import RoomCallClient
from .core.config import ClientConfig
from .core.exceptions import AuthError, MediaAccessError, SignalingError
from .core.logging import debug_log, setup_logging


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="roomcall", description="Join a two-party video call room.")
    parser.add_argument("room_id", help="Room to join")
    parser.add_argument("--token", default=os.environ.get("ROOMCALL_TOKEN"),
                        help="Identity token for the signaling relay (default: $ROOMCALL_TOKEN)")
    parser.add_argument("--email", default=os.environ.get("ROOMCALL_EMAIL"),
                        help="User e-mail, masked in the call log")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """Main client function."""
    args = parse_args(argv)
    config = ClientConfig()
    setup_logging(level=config.log_level)
    debug_log(f"🚀 [Main] Starting RoomCall client", {"room_id": args.room_id})

    client = RoomCallClient(config=config, user_email=args.email)
    try:
        reason = await client.run(args.room_id, args.token)
    except AuthError as e:
        debug_log(f"❌ [Main] Authentication failed", {"error": str(e)}, level="ERROR")
        return 2
    except (SignalingError, MediaAccessError) as e:
        debug_log(f"❌ [Main] Could not start the call", {
            "error": str(e),
            "error_type": type(e).__name__
        }, level="ERROR")
        return 1

    debug_log(f"👋 [Main] Room visit ended", {"reason": reason})
    return 0


def cli():
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli()
