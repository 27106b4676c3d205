"""Fetch and decrypt a session bundle published by the pairing server.

The server returns ``{"key": hex, "iv": hex, "data": hex}``; ``data`` is an
AES-256-CBC encrypted JSON document ``{"creds": {...}, "syncKeys": {...}}``
where ``syncKeys`` maps legacy file names to their contents.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import aiohttp
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import SessionFetchError

log = logging.getLogger(__name__)

FETCH_TIMEOUT = 15


async def fetch_session(uri: str, session_id: str) -> Optional[Dict[str, Any]]:
    url = f"{uri}{session_id}"
    try:
        timeout = aiohttp.ClientTimeout(total=FETCH_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as resp:
                if resp.status != 200:
                    log.warning("session server answered %s for %s", resp.status, session_id)
                    return None
                return await resp.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
        log.warning("session fetch failed for %s: %s", session_id, exc)
        return None


def decrypt_bundle(source: Dict[str, Any]) -> Dict[str, Any]:
    try:
        key = bytes.fromhex(source["key"])
        iv = bytes.fromhex(source["iv"])
        data = bytes.fromhex(source["data"])
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(data) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plain = unpadder.update(padded) + unpadder.finalize()
        bundle = json.loads(plain.decode("utf-8"))
    except (KeyError, TypeError, ValueError) as exc:
        raise SessionFetchError(f"cannot decrypt session bundle: {exc}") from exc
    if not isinstance(bundle, dict) or "creds" not in bundle:
        raise SessionFetchError("session bundle has no creds")
    bundle.setdefault("syncKeys", {})
    return bundle


def write_legacy_session(bundle: Dict[str, Any], folder: Union[str, Path]) -> Path:
    target = Path(folder)
    target.mkdir(parents=True, exist_ok=True)
    (target / "creds.json").write_text(json.dumps(bundle["creds"], indent=2), encoding="utf-8")
    for filename, payload in (bundle.get("syncKeys") or {}).items():
        name = Path(str(filename)).name
        (target / name).write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return target


async def init_session(uri: str, session_id: str, session_dir: Union[str, Path]) -> Optional[Path]:
    """Download the bundle for ``session_id`` into ``session_dir/<session_id>``.

    Returns the folder written, or ``None`` when no bundle could be obtained;
    the caller then continues with whatever credentials it already has.
    """

    if not uri or not session_id:
        return None
    source = await fetch_session(uri, session_id)
    if not source:
        log.info("no session from server")
        return None
    try:
        bundle = decrypt_bundle(source)
        folder = write_legacy_session(bundle, Path(session_dir) / session_id)
    except (SessionFetchError, OSError) as exc:
        log.error("session initialisation aborted: %s", exc)
        return None
    log.info("session %s downloaded", session_id)
    return folder
