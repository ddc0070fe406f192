import asyncio
import traceback

from common.events import Event, EventEmitter, MessageAppendedEvent, SessionSelectedEvent
from colloquy.controller import ConversationController
from colloquy.errors import ChatError
from colloquy.runtime.builtins import BuiltinCommands
from colloquy.runtime.router import InputRouter


class ChatREPL:
    def __init__(self, controller: ConversationController, *, model: str = ""):
        self.controller = controller
        self.model = model
        self.controller.emitter = EventEmitter(self.on_event)
        self.builtins = BuiltinCommands(controller)
        self.router = InputRouter(self.builtins.list_commands())

    def on_event(self, event: Event) -> None:
        if isinstance(event, MessageAppendedEvent) and event.role == "assistant":
            print(f"\n🤖 {event.content}")
        elif isinstance(event, SessionSelectedEvent):
            print(f"📂 Session {event.session_id} {event.title}".rstrip())

    async def process_user_message(self, text: str) -> None:
        try:
            await self.controller.send(text)
        except ChatError as e:
            details = getattr(e, "details", None) or str(e)
            print(f"\n❌ Error: {details}")

    async def run(self, initial_message: str | None = None) -> None:
        print(f"🤖 colloquy started (model: {self.model})")
        print("Commands: /help for all commands")
        if self.controller.session_id is None:
            self.controller.start()
        print()

        if initial_message:
            await self.process_user_message(initial_message)

        while True:
            try:
                user_input = (await asyncio.to_thread(input, "\n> ")).strip()

                if not user_input:
                    continue

                route = self.router.route(user_input)
                if route.kind == "builtin":
                    if not await self.builtins.handle(route.name, route.args):
                        break
                    continue
                if route.kind == "unknown":
                    print(f"Unknown command: /{route.name}. Type /help for available commands.")
                    continue

                await self.process_user_message(route.args)

            except KeyboardInterrupt:
                print("\n\n⚠️  Interrupted")
                break
            except EOFError:
                break
            except Exception as e:
                print(f"\n❌ Error: {e}")
                traceback.print_exc()
