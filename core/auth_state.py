"""Authentication state for the protocol socket, kept in the record store."""

import asyncio
import base64
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from .store import KeyedRecordStore, record_key

log = logging.getLogger(__name__)

CREDS_KEY = "creds"


def generate_key_pair() -> Dict[str, bytes]:
    private = X25519PrivateKey.generate()
    return {
        "private": private.private_bytes_raw(),
        "public": private.public_key().public_bytes_raw(),
    }


def generate_registration_id() -> int:
    return secrets.randbits(14)


def init_auth_creds() -> Dict[str, Any]:
    """Fresh credentials for an account that has never paired.

    The signed pre-key is stored unsigned; signing it belongs to the
    protocol layer that owns the identity key semantics.
    """

    identity = generate_key_pair()
    return {
        "noiseKey": generate_key_pair(),
        "pairingEphemeralKeyPair": generate_key_pair(),
        "signedIdentityKey": identity,
        "signedPreKey": {"keyPair": generate_key_pair(), "keyId": 1},
        "registrationId": generate_registration_id(),
        "advSecretKey": base64.b64encode(secrets.token_bytes(32)).decode("ascii"),
        "processedHistoryMessages": [],
        "nextPreKeyId": 1,
        "firstUnuploadedPreKeyId": 1,
        "accountSyncCounter": 0,
        "accountSettings": {"unarchiveChats": False},
        "registered": False,
    }


class SignalKeyStore:
    """Per-category secrets addressed as ``<category>:<id>`` records."""

    def __init__(self, store: KeyedRecordStore) -> None:
        self.store = store

    async def get(self, category: str, ids: Iterable[str]) -> Dict[str, Any]:
        keys = {record_key(category, str(item_id)): str(item_id) for item_id in ids}
        found = await self.store.get_many(keys)
        return {keys[key]: value for key, value in found.items()}

    async def set(self, data: Mapping[str, Mapping[str, Any]]) -> None:
        await self.store.set_many(data)

    async def delete(self, category: str, ids: Iterable[str]) -> None:
        for item_id in ids:
            await self.store.delete(record_key(category, str(item_id)))


@dataclass
class AuthState:
    creds: Dict[str, Any]
    keys: SignalKeyStore


class CredentialStateManager:
    def __init__(self, store: KeyedRecordStore, *, wait_for_commit: bool = True) -> None:
        self.store = store
        self.wait_for_commit = wait_for_commit
        self._state: Optional[AuthState] = None

    @property
    def state(self) -> AuthState:
        if self._state is None:
            raise RuntimeError("auth state not loaded; call load() first")
        return self._state

    async def load(self) -> AuthState:
        creds = await self.store.get(CREDS_KEY)
        if creds is None:
            log.info("no stored credentials, initialising a fresh identity")
            creds = init_auth_creds()
            await self.store.write_now(CREDS_KEY, creds)
        self._state = AuthState(creds=creds, keys=SignalKeyStore(self.store))
        return self._state

    async def save_creds(self) -> None:
        await self.store.set(CREDS_KEY, self.state.creds)
        if self.wait_for_commit:
            await asyncio.sleep(self.store.flush_delay)

    async def clear(self) -> None:
        await self.store.clear()
        self._state = None
        log.info("session records cleared")
