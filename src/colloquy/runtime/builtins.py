import json
import mimetypes
import shlex
from pathlib import Path

from colloquy.controller import ConversationController
from colloquy.errors import ChatError
from colloquy.media import encode_data_uri

HELP_TEXT = """Commands:
  /new                     Start a new session
  /sessions [term]         List sessions (optionally filtered by title)
  /switch <n|id>           Switch to a session from /sessions
  /rename <title>          Rename the active session
  /delete [id]             Delete a session (default: the active one)
  /history                 Show the active session with message indexes
  /regen <index>           Regenerate from the message at <index>
  /image <path> [prompt]   Send an image with an optional prompt
  /voice <path>            Transcribe an audio file and send it
  /translate <index>       Translate a message to the configured language
  /settings [key=value..]  Show or update generation settings
  /quit                    Exit"""


def _parse_value(raw: str):
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _read_data_uri(path: str, default_mime: str) -> str:
    file_path = Path(path).expanduser()
    mime_type = mimetypes.guess_type(file_path.name)[0] or default_mime
    return encode_data_uri(file_path.read_bytes(), mime_type)


class BuiltinCommands:
    def __init__(self, controller: ConversationController):
        self.controller = controller
        self._listed: list[str] = []
        self._handlers = {
            "quit": self.cmd_quit,
            "exit": self.cmd_quit,
            "help": self.cmd_help,
            "new": self.cmd_new,
            "sessions": self.cmd_sessions,
            "switch": self.cmd_switch,
            "rename": self.cmd_rename,
            "delete": self.cmd_delete,
            "history": self.cmd_history,
            "regen": self.cmd_regen,
            "image": self.cmd_image,
            "voice": self.cmd_voice,
            "translate": self.cmd_translate,
            "settings": self.cmd_settings,
        }

    def list_commands(self) -> list[str]:
        return sorted(self._handlers.keys())

    async def handle(self, name: str, args: str) -> bool:
        handler = self._handlers.get(name)
        if not handler:
            return True
        try:
            return await handler(args)
        except ChatError as e:
            print(f"❌ {getattr(e, 'details', None) or e}")
            return True

    async def cmd_quit(self, args: str) -> bool:
        print("👋 Goodbye!")
        return False

    async def cmd_help(self, args: str) -> bool:
        print(HELP_TEXT)
        return True

    async def cmd_new(self, args: str) -> bool:
        session_id = self.controller.new_session()
        print(f"✅ New session {session_id}")
        return True

    async def cmd_sessions(self, args: str) -> bool:
        sessions = self.controller.list_sessions(args.strip() or None)
        self._listed = [s.id for s in sessions]
        if not sessions:
            print("No saved sessions")
            return True
        print("Sessions:")
        for n, session in enumerate(sessions, start=1):
            marker = "*" if session.id == self.controller.session_id else " "
            created = session.created_at.strftime("%Y-%m-%d")
            print(f" {marker}{n:>2}. {session.title}  ({created}, {len(session.messages)} msgs)  {session.id}")
        return True

    def _resolve_session(self, ref: str) -> str:
        ref = ref.strip()
        if ref.isdigit() and 0 < int(ref) <= len(self._listed):
            return self._listed[int(ref) - 1]
        return ref

    async def cmd_switch(self, args: str) -> bool:
        if not args.strip():
            print("Usage: /switch <n|id>")
            return True
        session = self.controller.select(self._resolve_session(args))
        print(f"✅ Switched to '{session.title}'")
        await self.cmd_history("")
        return True

    async def cmd_rename(self, args: str) -> bool:
        if not args.strip():
            print("Usage: /rename <title>")
            return True
        if self.controller.rename(self.controller.session_id, args):
            print(f"✅ Renamed to '{args.strip()}'")
        else:
            print("❌ Active session has not been saved yet")
        return True

    async def cmd_delete(self, args: str) -> bool:
        target = self._resolve_session(args) if args.strip() else self.controller.session_id
        self.controller.delete(target)
        print(f"🗑️  Deleted {target}")
        return True

    async def cmd_history(self, args: str) -> bool:
        if not self.controller.messages:
            print("(empty session)")
            return True
        for index, message in enumerate(self.controller.messages):
            image = " [image]" if message.image else ""
            print(f"[{index}] {message.role}{image}: {message.content}")
        return True

    async def cmd_regen(self, args: str) -> bool:
        if not args.strip().isdigit():
            print("Usage: /regen <index>")
            return True
        await self.controller.regenerate(int(args))
        return True

    async def cmd_image(self, args: str) -> bool:
        parts = args.split(maxsplit=1)
        if not parts:
            print("Usage: /image <path> [prompt]")
            return True
        try:
            image = _read_data_uri(parts[0], "image/jpeg")
        except OSError as e:
            print(f"❌ Cannot read image: {e}")
            return True
        await self.controller.send(parts[1] if len(parts) > 1 else "", image=image)
        return True

    async def cmd_voice(self, args: str) -> bool:
        if not args.strip():
            print("Usage: /voice <path>")
            return True
        try:
            audio = _read_data_uri(args.strip(), "audio/webm")
        except OSError as e:
            print(f"❌ Cannot read audio: {e}")
            return True
        await self.controller.send_voice(audio)
        return True

    async def cmd_translate(self, args: str) -> bool:
        if not args.strip().isdigit():
            print("Usage: /translate <index>")
            return True
        print(f"🌐 {await self.controller.translate_message(int(args))}")
        return True

    async def cmd_settings(self, args: str) -> bool:
        if not args.strip():
            settings = self.controller.settings.model_dump(by_alias=True)
            if settings.get("customApiKey"):
                settings["customApiKey"] = "********"
            print(json.dumps(settings, indent=2, ensure_ascii=False))
            return True
        partial = {}
        for pair in shlex.split(args):
            key, sep, value = pair.partition("=")
            if not sep:
                print(f"Ignoring '{pair}' (expected key=value)")
                continue
            partial[key] = _parse_value(value)
        self.controller.settings_store.update(partial)
        print(f"✅ Updated {', '.join(sorted(partial))}")
        return True
