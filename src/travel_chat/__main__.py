"""CLI entry point for travel-chat."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import Optional

from travel_chat.ai.handler import ChatService
from travel_chat.ai.tools.catalog import CATALOG
from travel_chat.app import TravelChatApp
from travel_chat.config import AppConfig, load_config
from travel_chat.errors import SessionStateError, TurnError
from travel_chat.log import setup_logging
from travel_chat.output.base import OutputSink
from travel_chat.output.console import ConsoleSink


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="travel-chat",
        description="Travel assistant chat backend with streaming tool orchestration",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # chat command
    chat_parser = subparsers.add_parser("chat", help="Chat with the assistant in the terminal")
    chat_parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    chat_parser.add_argument("-e", "--env", default=".env", help="Path to .env file")
    chat_parser.add_argument("-s", "--session", default=None, help="Continue an existing session ID")
    chat_parser.add_argument("--owner", default=None, help="Owner ID for a new session")

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    check_parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    check_parser.add_argument("-e", "--env", default=".env", help="Path to .env file")

    # tools command
    tools_parser = subparsers.add_parser("tools", help="List catalog tools and their providers")
    tools_parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    tools_parser.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args()

    if args.command is None:
        # Default to chat
        args.command = "chat"
        args.config = "config.yaml"
        args.env = ".env"
        args.session = None
        args.owner = None

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "tools":
        _list_tools(args.config, args.env)
    elif args.command == "chat":
        _run_chat(args.config, args.env, args.session, args.owner)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and fill in your API keys")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Backend : {config.ai.backend.value} ({config.ai.model})")
    print(f"  Storage : {config.storage.db_path}")
    print(f"  Rounds  : max {config.ai.max_tool_rounds} tool rounds per turn")
    print(f"  Timeouts: stream idle {config.ai.stream_idle_timeout}s, tool {config.ai.tool_timeout}s")
    print(f"  Providers: {len(config.tools.providers)} bound")


def _list_tools(config_path: str, env_path: str) -> None:
    config = _load_or_exit(config_path, env_path)
    providers = config.tools.providers
    print("Travel tool catalog")
    print("=" * 50)
    for spec in CATALOG:
        provider = providers.get(spec.name, "(no provider)")
        print(f"  {spec.name:<32} {provider}")
    print()


def _run_chat(
    config_path: str, env_path: str, session_id: Optional[str], owner_id: Optional[str]
) -> None:
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_format)
    try:
        asyncio.run(_chat(config, session_id, owner_id))
    except KeyboardInterrupt:
        print()


async def _chat(config: AppConfig, session_id: Optional[str], owner_id: Optional[str]) -> None:
    app = TravelChatApp(config)
    await app.start()
    service = app.chat_service
    sink = ConsoleSink()

    try:
        new_session = session_id is None
        if session_id is None:
            session = await app.session_manager.create(owner_id=owner_id)
            session_id = session.id
            print(f"Session: {session_id}  (/save, /toggle, /title <text>, /quit)")
            await _run_turn(service, session_id, None, sink, update_title=False)

        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break
            text = line.strip()
            if not text:
                continue
            if text in ("/quit", "/exit"):
                break
            if text == "/save":
                try:
                    await app.session_manager.promote(session_id)
                    print("Session saved.")
                except SessionStateError as e:
                    print(str(e))
                continue
            if text == "/toggle":
                session = await app.session_manager.toggle_saved(session_id)
                print("Session saved." if session.saved else "Session is now temporary.")
                continue
            if text.startswith("/title "):
                await app.session_manager.rename(session_id, title=text[7:].strip())
                continue

            await _run_turn(service, session_id, text, sink, update_title=new_session)
            new_session = False
    finally:
        await app.stop()


async def _run_turn(
    service: ChatService,
    session_id: str,
    text: Optional[str],
    sink: OutputSink,
    update_title: bool,
) -> None:
    """Run one turn; Ctrl+C cancels the turn instead of exiting."""
    loop = asyncio.get_running_loop()
    cancel_event = asyncio.Event()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        handler_installed = True
    except NotImplementedError:
        # Windows doesn't support add_signal_handler
        handler_installed = False

    try:
        await service.start_or_continue_turn(
            session_id, text, sink, cancel_event=cancel_event, update_title=update_title
        )
    except TurnError as e:
        print(f"\n[{e}]", file=sys.stderr)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)


if __name__ == "__main__":
    main()
