from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from functools import partial

from dotenv import load_dotenv

from colloquy.config import AppConfig, ConfigError, resolve_model_alias
from colloquy.controller import ConversationController
from colloquy.errors import SessionNotFoundError
from colloquy.gateway import CompletionGateway, HttpGateway, LiteLLMGateway
from colloquy.services.transcribe import transcribe
from colloquy.services.translate import translate
from colloquy.sessions.repository import SessionRepository
from colloquy.settings import SettingsStore
from colloquy.storage import JsonFileStore


def main() -> int:
    load_dotenv()
    return _main(sys.argv[1:])


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        payload = {
            "ts": ts,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(verbose: bool = False, quiet: bool = False, log_format: str = "text") -> None:
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    if log_format == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logging.basicConfig(level=level, handlers=[handler])
    else:
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="colloquy", description="colloquy - multi-session chat")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only warnings and errors")
    parser.add_argument("--log-format", choices=["text", "json"], default="text")
    parser.add_argument("--model", help="Model to use (aliases: flash, pro, 4o, sonnet, haiku)")
    parser.add_argument("--data-dir", help="Where sessions and settings are stored")
    subparsers = parser.add_subparsers(dest="command", required=False)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)

    chat = subparsers.add_parser("chat", help="Start an interactive chat REPL")
    chat.add_argument("--message", "-m", help="Send one message before the prompt appears")
    chat.add_argument("--session", help="Session id to resume")
    chat.add_argument("--server", help="Use a running `colloquy serve` at this URL")

    sessions = subparsers.add_parser("sessions", help="List stored sessions")
    sessions.add_argument("--search", default="", help="Filter by title")
    sessions.add_argument("--json", action="store_true", help="Print JSON")

    return parser


def _load_config(args: argparse.Namespace) -> AppConfig:
    config = AppConfig()
    if args.model:
        config.model = resolve_model_alias(args.model)
    if args.data_dir:
        config.data_dir = args.data_dir
    if getattr(args, "host", None):
        config.host = args.host
    if getattr(args, "port", None):
        config.port = args.port
    config.validate()
    return config


def build_controller(
    config: AppConfig,
    *,
    gateway: CompletionGateway | None = None,
) -> ConversationController:
    store = JsonFileStore(config.data_dir)
    if gateway is None:
        gateway = LiteLLMGateway(
            config.model,
            default_api_key=config.api_key,
            timeout_seconds=config.timeout_seconds,
        )
    return ConversationController(
        SessionRepository(store),
        SettingsStore(store),
        gateway,
        translator=partial(
            translate,
            model=config.model,
            api_key=config.api_key,
            timeout_seconds=config.timeout_seconds,
        ),
        transcriber=partial(
            transcribe,
            model=config.transcription_model,
            timeout_seconds=config.timeout_seconds,
        ),
    )


def _cmd_serve(config: AppConfig) -> int:
    import uvicorn

    from colloquy.server.app import create_app

    logging.getLogger(__name__).info(f"Serving on http://{config.host}:{config.port}")
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_config=None)
    return 0


def _cmd_chat(config: AppConfig, args: argparse.Namespace) -> int:
    from colloquy.runtime.repl import ChatREPL

    gateway = None
    if args.server:
        gateway = HttpGateway(args.server, timeout_seconds=config.timeout_seconds)
    controller = build_controller(config, gateway=gateway)
    repl = ChatREPL(controller, model=args.server or config.model)
    if args.session:
        try:
            controller.select(args.session)
        except SessionNotFoundError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    asyncio.run(repl.run(initial_message=args.message))
    return 0


def _cmd_sessions(config: AppConfig, args: argparse.Namespace) -> int:
    repository = SessionRepository(JsonFileStore(config.data_dir))
    sessions = repository.search(args.search) if args.search else repository.list()
    if args.json:
        print(json.dumps([s.to_json() for s in sessions], indent=2, ensure_ascii=False))
        return 0
    if not sessions:
        print("No saved sessions")
        return 0
    for session in sessions:
        created = session.created_at.strftime("%Y-%m-%d %H:%M")
        print(f"{session.id}  {created}  {len(session.messages):>3} msgs  {session.title}")
    return 0


def _main(argv: list[str]) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.quiet, args.log_format)
    logger = logging.getLogger(__name__)

    try:
        config = _load_config(args)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    command = args.command or "chat"
    if command == "serve":
        return _cmd_serve(config)
    if command == "sessions":
        return _cmd_sessions(config, args)
    if args.command is None:
        args = parser.parse_args([*argv, "chat"])
    return _cmd_chat(config, args)


if __name__ == "__main__":
    raise SystemExit(main())
