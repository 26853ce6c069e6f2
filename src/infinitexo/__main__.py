"""Entry point for running Infinite Tic-Tac-Toe via ``python -m infinitexo``."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List, Optional

import uvicorn

from .client import RoomStoreClient
from .config import Settings, load_settings
from .console import play
from .identity import get_or_create_id


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="infinitexo", description="Two-player infinite tic-tac-toe"
    )
    parser.add_argument("--log-level", default=settings.log_level)
    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="run the room store and browser client")
    serve.add_argument("--host", default=settings.host)
    serve.add_argument("--port", type=int, default=settings.port)

    play_cmd = commands.add_parser("play", help="play in the terminal")
    play_cmd.add_argument("room", nargs="?", help="room id or link; omit to create a room")
    play_cmd.add_argument("--server", default=settings.server_url)
    play_cmd.add_argument("--state", default=str(settings.state_path))
    return parser


async def _play(args: argparse.Namespace, settings: Settings) -> int:
    player_id = get_or_create_id(args.state)
    async with RoomStoreClient(
        args.server, retry_delay=settings.create_retry_delay
    ) as client:
        return await play(
            client, player_id, args.room, poll_interval=settings.poll_interval
        )


def main(argv: Optional[List[str]] = None) -> int:
    """Start the FastAPI server (default) or the terminal client."""

    settings = load_settings()
    args = build_parser(settings).parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "play":
        try:
            return asyncio.run(_play(args, settings))
        except KeyboardInterrupt:
            return 130

    host = getattr(args, "host", settings.host)
    port = getattr(args, "port", settings.port)
    uvicorn.run("infinitexo.ui:app", host=host, port=port, reload=False)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
