"""Signer capabilities. The miner core only ever sees a sign(tx) callable."""

import asyncio
import json
import os

from solders.keypair import Keypair
from solders.transaction import Transaction

from .errors import SignerDeclined


class KeypairSigner:
    """Sign with a local keypair, the way a hot wallet would approve every tx."""

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @property
    def pubkey(self):
        return self._keypair.pubkey()

    async def __call__(self, tx: Transaction) -> Transaction:
        message = tx.message
        return Transaction([self._keypair], message, message.recent_blockhash)


class PromptSigner:
    """Ask on the terminal before every signature; decline unless confirmed."""

    def __init__(self, inner: KeypairSigner, confirm):
        self.inner = inner
        self.confirm = confirm

    @property
    def pubkey(self):
        return self.inner.pubkey

    async def __call__(self, tx: Transaction) -> Transaction:
        n = len(tx.message.instructions)
        # The prompt blocks on stdin; run it off the loop so sign_timeout can fire.
        approved = await asyncio.to_thread(self.confirm, f"Sign transaction with {n} instructions?")
        if not approved:
            raise SignerDeclined("User declined to sign")
        return await self.inner(tx)


def load_keypair(raw: str) -> Keypair:
    """Keypair from a base58 secret, a JSON byte array, or a path to either.

    The JSON array form is what `solana-keygen` writes.
    """
    raw = raw.strip()
    if not raw.startswith("[") and _looks_like_path(raw):
        with open(os.path.expanduser(raw)) as f:
            raw = f.read().strip()
    if raw.startswith("["):
        return Keypair.from_bytes(bytes(json.loads(raw)))
    return Keypair.from_base58_string(raw)


def _looks_like_path(raw: str) -> bool:
    return "/" in raw or "\\" in raw or raw.endswith(".json") or raw.startswith("~")
