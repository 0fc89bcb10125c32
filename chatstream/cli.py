#!/usr/bin/env python3
"""Command line entry point.

Usage:
    chatstream serve --port 8000
    chatstream chat --user-id alice --model gpt-4o-mini

Examples:
    # Start a new chat against a local server
    chatstream chat --user-id alice --model gpt-4o-mini

    # Reopen a chat; a reply saved moments ago is replayed
    chatstream chat --user-id alice --model gpt-4o-mini --chat-id <uuid>

    # Run turns in-process against the local database, no server needed
    chatstream chat --user-id alice --model gpt-4o-mini --in-process

Commands inside a chat:
    /stop        cancel the reply being streamed
    /regenerate  redo the last reply
    /quit        leave
"""

import argparse
import asyncio
import logging
import os
import sys
import uuid

import uvicorn

from chatstream.chat.identity import UserIdentity, UserType
from chatstream.chat.manager import get_session_manager, shutdown_session_manager
from chatstream.chat.persistence import InMemoryChatStore, PersistenceBridge
from chatstream.chat.session import SessionController
from chatstream.chat.transport import HttpTransport, InProcessTransport, TransportPort
from chatstream.errors import ResumeError
from chatstream.models.chat import ChatRole, ChatStatus

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:8000"


# ANSI color codes
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"


def colorize(text: str, color: str) -> str:
    """Apply ANSI color to text."""
    return f"{color}{text}{Colors.RESET}"


def out(text: str = "", end: str = "\n") -> None:
    print(text, end=end, flush=True)


class StreamPrinter:
    """Session listener that echoes assistant text as it arrives."""

    def __init__(self) -> None:
        self._printed: dict[str, int] = {}
        self._open_line: str | None = None

    def __call__(self, session: SessionController) -> None:
        if session.messages:
            last = session.messages[-1]
            if last.role == ChatRole.ASSISTANT:
                self._echo(last.id, last.text, session.status)
        if session.status in (ChatStatus.IDLE, ChatStatus.ERROR) and self._open_line:
            out()
            self._open_line = None

    def _echo(self, message_id: str, text: str, status: ChatStatus) -> None:
        done = self._printed.get(message_id, 0)
        if len(text) <= done:
            return
        if self._open_line != message_id:
            if self._open_line:
                out()
            color = Colors.RED if status == ChatStatus.ERROR else Colors.CYAN
            out(colorize("assistant: ", Colors.BOLD + color), end="")
            self._open_line = message_id
        out(text[done:], end="")
        self._printed[message_id] = len(text)

    def mark_printed(self, message_id: str, text: str) -> None:
        self._printed[message_id] = len(text)


async def _build_transport(args: argparse.Namespace) -> TransportPort:
    user_type = UserType(args.user_type)
    if not args.in_process:
        return HttpTransport(args.endpoint, user_id=args.user_id, user_type=user_type.value)

    from chatstream.chat.resume import get_resume_service
    from chatstream.chat.turn import get_turn_service
    from chatstream.db.database import init_database

    db_path = os.getenv("DATABASE_PATH", "./data/chat.db")
    await init_database(db_path)
    return InProcessTransport(
        get_turn_service(),
        get_resume_service(),
        UserIdentity(id=args.user_id, type=user_type),
    )


async def run_chat(args: argparse.Namespace) -> None:
    """Interactive chat loop."""
    chat_id = args.chat_id or str(uuid.uuid4())
    transport = await _build_transport(args)

    try:
        history = await transport.fetch_messages(chat_id)
    except ResumeError as e:
        out(colorize(f"Cannot open chat {chat_id}: {e.message}", Colors.RED))
        await transport.aclose()
        return

    body = {"selectedChatModel": args.model}
    if args.provider:
        body["selectedProviderId"] = args.provider

    session = get_session_manager().open_session(
        chat_id,
        transport,
        persistence=PersistenceBridge(InMemoryChatStore(), user_id=args.user_id),
        initial_messages=history,
        auto_resume=True,
        body=body,
    )

    printer = StreamPrinter()
    out(colorize(f"Chat {chat_id}", Colors.BOLD))
    for message in history:
        role_color = Colors.GREEN if message.role == ChatRole.USER else Colors.CYAN
        out(colorize(f"{message.role}: ", Colors.BOLD + role_color) + message.text)
        printer.mark_printed(message.id, message.text)
    session.subscribe(printer)

    try:
        replayed = await session.resume()
        if replayed:
            out(colorize(f"(resumed {len(replayed)} message(s))", Colors.DIM))
    except ResumeError as e:
        out(colorize(f"Resume failed: {e.message}", Colors.YELLOW))

    turns: set[asyncio.Task] = set()
    try:
        while True:
            line = (await asyncio.to_thread(input, "")).strip()
            if not line:
                continue
            if line == "/quit":
                break
            if line == "/stop":
                await session.stop()
                continue
            if line == "/regenerate":
                last_assistant = next(
                    (m for m in reversed(session.messages) if m.role == ChatRole.ASSISTANT), None
                )
                if last_assistant is None or session.is_busy:
                    out(colorize("Nothing to regenerate right now", Colors.YELLOW))
                    continue
                task = asyncio.create_task(session.regenerate(last_assistant.id))
            else:
                task = asyncio.create_task(session.send(line))
            turns.add(task)
            task.add_done_callback(turns.discard)
    except (EOFError, KeyboardInterrupt):
        out()
    finally:
        await shutdown_session_manager()
        for task in list(turns):
            task.cancel()
        await transport.aclose()
        if args.in_process:
            from chatstream.db.database import close_database

            await close_database()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatstream",
        description="Resumable streaming chat",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes")

    chat = subparsers.add_parser("chat", help="Interactive chat session")
    chat.add_argument(
        "--endpoint",
        default=os.getenv("CHATSTREAM_ENDPOINT", DEFAULT_ENDPOINT),
        help=f"Server URL (default: $CHATSTREAM_ENDPOINT or {DEFAULT_ENDPOINT})",
    )
    chat.add_argument("--chat-id", help="Existing chat to reopen (default: new chat)")
    chat.add_argument("--user-id", required=True, help="Identity sent to the server")
    chat.add_argument(
        "--user-type",
        choices=[t.value for t in UserType],
        default=UserType.REGULAR.value,
        help="Entitlement tier (default: regular)",
    )
    chat.add_argument("--model", "-m", required=True, help="Model id, e.g. gpt-4o-mini")
    chat.add_argument("--provider", "-p", help="Provider id (default: first provider serving --model)")
    chat.add_argument(
        "--in-process",
        action="store_true",
        help="Run turns locally against DATABASE_PATH instead of a server",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        uvicorn.run("chatstream.main:app", host=args.host, port=args.port, reload=args.reload)
        return

    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "WARNING").upper(), logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    try:
        asyncio.run(run_chat(args))
    except KeyboardInterrupt:
        out(colorize("\nCancelled by user", Colors.YELLOW))
        sys.exit(130)


if __name__ == "__main__":
    main()
