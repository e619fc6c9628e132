"""Keypair store: load and generate the signing identities of a session.

Buyer wallets live one per file in ``keypairs_dir`` (``keypair1.json``,
``keypair2.json``, ...), either as a solana-keygen JSON byte array or a
base58 secret string. Load order is the numeric suffix, so chunk assignment
is stable across runs.

Secrets are loaded once and never logged or exposed: Identity.__repr__ and
all log lines show only the public key.
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from pathlib import Path

import base58
from loguru import logger
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.bundler.errors import ValidationError

_INDEX_RE = re.compile(r"(\d+)")


@dataclass(frozen=True, repr=False)
class Identity:
    """A named signing keypair. Only the public key is ever shown."""

    name: str
    keypair: Keypair

    def __repr__(self) -> str:
        return f"Identity(name={self.name!r}, pubkey={self.pubkey_str})"

    __str__ = __repr__

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    @property
    def pubkey_str(self) -> str:
        return str(self.keypair.pubkey())


def keypair_from_secret(secret: str, name: str = "keypair") -> Keypair:
    """Parse a base58 secret or a JSON byte array. The secret never appears in errors."""
    secret = secret.strip()
    if not secret:
        raise ValidationError(f"{name}: secret key is empty")
    try:
        if secret.startswith("["):
            return Keypair.from_bytes(bytes(json.loads(secret)))
        return Keypair.from_bytes(base58.b58decode(secret))
    except (ValueError, TypeError) as e:
        raise ValidationError(f"{name}: not a valid secret key ({type(e).__name__})") from None


def _file_index(path: Path) -> int:
    match = _INDEX_RE.search(path.stem)
    return int(match.group(1)) if match else -1


class KeypairStore:
    """Directory of buyer keypair files."""

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _files(self) -> list[Path]:
        if not self._dir.is_dir():
            return []
        files = [p for p in self._dir.glob("*.json") if _file_index(p) >= 0]
        return sorted(files, key=lambda p: (_file_index(p), p.name))

    def load_identities(self) -> list[Identity]:
        """All wallets in numeric file order. Raises ValidationError on an unreadable file."""
        identities = []
        for path in self._files():
            keypair = keypair_from_secret(path.read_text(encoding="utf-8"), name=path.name)
            identities.append(Identity(name=path.stem, keypair=keypair))

        pubkeys = {i.pubkey for i in identities}
        if len(pubkeys) != len(identities):
            raise ValidationError(f"Duplicate keypairs in {self._dir}")

        logger.info(f"[WALLET] Loaded {len(identities)} wallets from {self._dir}")
        return identities

    def generate(self, count: int) -> list[Identity]:
        """Write ``count`` new keypair files after the highest existing index."""
        if count < 1:
            raise ValidationError(f"Wallet count must be >= 1, got {count}")
        self._dir.mkdir(parents=True, exist_ok=True)
        start = max((_file_index(p) for p in self._files()), default=0) + 1

        created = []
        for index in range(start, start + count):
            keypair = Keypair()
            path = self._dir / f"keypair{index}.json"
            # O_EXCL: never overwrite an existing wallet
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(list(bytes(keypair)), f)
            created.append(Identity(name=path.stem, keypair=keypair))
            logger.info(f"[WALLET] Generated {path.name}: {keypair.pubkey()}")
        return created
