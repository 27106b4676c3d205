"""Routes inbound text to registered commands.

Commands are tried in registration order. The first command whose pattern
matches, whose permission gates pass and whose handler completes ends the
dispatch. A handler that raises is logged and the remaining commands are
still considered for the same message.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Pattern, Tuple, Union

log = logging.getLogger(__name__)

Handler = Callable[[Any, str], Awaitable[Any]]

PROCESSING_REACTION = "⏳"


@dataclass(frozen=True)
class Command:
    name: str
    pattern: Pattern[str]
    handler: Handler
    from_owner_only: bool = False
    group_only: bool = False
    description: str = ""


def match_prefix(text: str, prefixes: List[str]) -> Optional[str]:
    for prefix in prefixes:
        if prefix and text.startswith(prefix):
            return prefix
    return None


def match_text(match: "re.Match[str]", remainder: str) -> str:
    """The part of the command text a handler works on.

    The last capturing group that took part in the match when the pattern
    has groups, otherwise whatever follows the match.
    """

    for value in reversed(match.groups()):
        if value is not None:
            return value.strip()
    if match.re.groups:
        return ""
    return remainder[match.end():].strip()


class CommandDispatcher:
    def __init__(self, *, react: bool = True) -> None:
        self.react = react
        self._commands: List[Command] = []

    @property
    def commands(self) -> Tuple[Command, ...]:
        return tuple(self._commands)

    def register(
        self,
        name: str,
        pattern: Union[str, Pattern[str]],
        handler: Handler,
        *,
        from_owner_only: bool = False,
        group_only: bool = False,
        description: str = "",
    ) -> Command:
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        command = Command(
            name=name,
            pattern=compiled,
            handler=handler,
            from_owner_only=from_owner_only,
            group_only=group_only,
            description=description,
        )
        self._commands.append(command)
        log.debug("registered command %s (%s)", name, compiled.pattern)
        return command

    def command(
        self,
        pattern: str,
        *,
        name: Optional[str] = None,
        from_owner_only: bool = False,
        group_only: bool = False,
        description: str = "",
    ) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.register(
                name or handler.__name__,
                pattern,
                handler,
                from_owner_only=from_owner_only,
                group_only=group_only,
                description=description,
            )
            return handler

        return decorator

    def _allowed(self, command: Command, message: Any) -> bool:
        if message.mode and not message.sudo:
            return False
        if command.from_owner_only and not message.sudo:
            return False
        if command.group_only and not message.is_group:
            return False
        return True

    async def dispatch(self, message: Any) -> Optional[Command]:
        text = message.text or ""
        if not text:
            return None
        prefix = match_prefix(text, message.prefixes)
        if prefix is None:
            return None
        remainder = text[len(prefix):]
        for command in self._commands:
            match = command.pattern.search(remainder)
            if not match:
                continue
            if not self._allowed(command, message):
                log.debug("command %s blocked for %s in %s", command.name, message.sender, message.chat)
                continue
            if self.react:
                try:
                    await message.react(PROCESSING_REACTION)
                except Exception as exc:
                    log.warning("processing reaction for %s failed: %s", command.name, exc)
            try:
                await command.handler(message, match_text(match, remainder))
            except Exception as exc:
                log.exception("command %s failed: %s", command.name, exc)
                continue
            return command
        return None
