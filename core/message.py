import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .owners import OwnerRegistry, parse_jid

log = logging.getLogger(__name__)


def extract_text(content: Optional[Dict[str, Any]]) -> str:
    if not content:
        return ""
    if isinstance(content.get("conversation"), str):
        return content["conversation"]
    extended = content.get("extendedTextMessage") or {}
    if isinstance(extended.get("text"), str):
        return extended["text"]
    for key in ("imageMessage", "videoMessage", "documentMessage"):
        inner = content.get(key) or {}
        if isinstance(inner.get("caption"), str):
            return inner["caption"]
    ephemeral = (content.get("ephemeralMessage") or {}).get("message")
    if ephemeral:
        return extract_text(ephemeral)
    return ""


@dataclass
class Message:
    """An inbound message plus the context command handlers need."""

    socket: Any
    raw: Dict[str, Any]
    id: str
    chat: str
    sender: str
    text: str
    from_me: bool = False
    is_group: bool = False
    sudo: bool = False
    mode: bool = False
    prefixes: List[str] = field(default_factory=list)

    @classmethod
    def from_raw(
        cls,
        socket: Any,
        raw: Dict[str, Any],
        *,
        owners: OwnerRegistry,
        prefixes: List[str],
        private_mode: bool,
    ) -> "Message":
        key = raw.get("key") or {}
        chat = str(key.get("remoteJid") or "")
        from_me = bool(key.get("fromMe"))
        is_group = chat.endswith("@g.us")
        if from_me:
            sender = parse_jid(getattr(socket, "user_id", None)) or chat
        else:
            sender = parse_jid(key.get("participant") or raw.get("participant") or chat)
        return cls(
            socket=socket,
            raw=raw,
            id=str(key.get("id") or ""),
            chat=chat,
            sender=sender,
            text=extract_text(raw.get("message")),
            from_me=from_me,
            is_group=is_group,
            sudo=from_me or owners.is_owner(sender),
            mode=private_mode,
            prefixes=list(prefixes),
        )

    async def send(self, text: str, **extra: Any) -> Any:
        content: Dict[str, Any] = {"text": str(text)}
        content.update(extra)
        return await self.socket.send_message(self.chat, content)

    async def reply(self, text: str) -> Any:
        return await self.socket.send_message(self.chat, {"text": str(text)}, quoted=self.raw)

    async def react(self, emoji: str) -> Any:
        return await self.socket.send_message(
            self.chat, {"react": {"text": emoji, "key": self.raw.get("key") or {}}}
        )
