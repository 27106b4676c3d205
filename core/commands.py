import logging
import time

from .dispatcher import CommandDispatcher
from .owners import OwnerRegistry, parse_jid
from .safe_eval import UnsafeExpression, safe_eval

log = logging.getLogger(__name__)


def register_builtins(dispatcher: CommandDispatcher, owners: OwnerRegistry) -> None:
    @dispatcher.command(r"^ping$", description="Check that the bot responds")
    async def ping(message, match):
        started = time.perf_counter()
        await message.send("pong")
        elapsed = (time.perf_counter() - started) * 1000
        await message.send(f"latency {elapsed:.0f} ms")

    @dispatcher.command(r"^eval(?:\s+(.*))?$", name="eval", from_owner_only=True, description="Evaluate a simple expression")
    async def eval_expression(message, match):
        if not match:
            await message.send("provide an expression to evaluate")
            return
        try:
            result = safe_eval(match)
        except UnsafeExpression as exc:
            await message.send(f"rejected: {exc}")
            return
        except (ArithmeticError, TypeError, ValueError) as exc:
            await message.send(f"error: {exc}")
            return
        await message.send(repr(result))

    @dispatcher.command(r"^sudo(?:\s+(.*))?$", from_owner_only=True, description="Manage owner identities")
    async def sudo(message, match):
        parts = match.split()
        action = parts[0].lower() if parts else "list"
        if action == "list":
            owners_list = owners.list()
            await message.send("\n".join(owners_list) if owners_list else "no owners registered")
            return
        if action not in ("add", "del") or len(parts) < 2:
            await message.send("usage: sudo add|del <number> or sudo list")
            return
        jid = parse_jid(parts[1])
        if action == "add":
            changed = owners.add(jid)
            await message.send(f"{jid} added" if changed else f"{jid} is already an owner")
        else:
            changed = owners.remove(jid)
            await message.send(f"{jid} removed" if changed else f"{jid} is not an owner")
