from dataclasses import dataclass
from typing import Iterable, Literal

RouteKind = Literal["prompt", "builtin", "unknown"]


@dataclass(frozen=True)
class RouteResult:
    kind: RouteKind
    name: str | None
    args: str


class InputRouter:
    """Splits a REPL line into a chat prompt or a slash command."""

    def __init__(self, commands: Iterable[str]):
        self.commands = frozenset(commands)

    def route(self, line: str) -> RouteResult:
        if not line.startswith("/"):
            return RouteResult(kind="prompt", name=None, args=line)

        name, _, args = line[1:].partition(" ")
        kind: RouteKind = "builtin" if name in self.commands else "unknown"
        return RouteResult(kind=kind, name=name, args=args.strip())
