"""Session document: lookup table, mint and per-wallet allocations.

On disk (keyInfo.json) the document is flat:

    {
      "addressLUT": "<table pubkey>",
      "mint": "<mint pubkey>",
      "mintPk": "<mint secret, base58>",
      "<wallet pubkey>": {"solAmount": "1.5", "tokenAmount": "34612903225806",
                          "percentSupply": 3.46},
      ...
    }

Amount strings are kept exactly as read so large integers never pass
through a float. Keys this version does not know are carried through
untouched. Saves are atomic (temp file in the same directory + os.replace).

The mint secret is the only secret persisted: the token cannot be created
without the mint keypair signing, and the launch runs in a later invocation
than the one that generated it.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.bundler.curve import Allocation, format_sol, parse_sol_amount
from src.bundler.errors import ValidationError
from src.wallets.keystore import keypair_from_secret

_FIXED_KEYS = ("addressLUT", "mint", "mintPk")


class WalletAllocation(BaseModel):
    """Per-wallet entry. Amount fields are decimal strings."""

    sol_amount: str = Field(alias="solAmount")  # SOL, decimal string
    token_amount: str = Field(alias="tokenAmount")  # raw base units, integer string
    percent_supply: float = Field(0.0, alias="percentSupply")

    model_config = {"populate_by_name": True, "extra": "allow"}

    @field_validator("sol_amount", "token_amount", mode="before")
    @classmethod
    def _numeric_string(cls, value: Any) -> str:
        # Older files wrote solAmount as a JSON number
        if isinstance(value, bool):
            raise ValueError("amount must be a number or numeric string")
        if isinstance(value, (int, float)):
            return str(value)
        return value

    @property
    def sol_lamports(self) -> int:
        return parse_sol_amount(self.sol_amount)

    @property
    def tokens(self) -> int:
        try:
            return int(self.token_amount)
        except ValueError as e:
            raise ValidationError(f"tokenAmount is not an integer: {self.token_amount!r}") from e

    def to_allocation(self, pubkey: Pubkey) -> Allocation:
        return Allocation(
            identity_pubkey=pubkey,
            sol_input=self.sol_lamports,
            token_output=self.tokens,
            percent_of_supply=self.percent_supply,
        )

    @classmethod
    def from_allocation(cls, allocation: Allocation) -> WalletAllocation:
        return cls(
            sol_amount=format_sol(allocation.sol_input),
            token_amount=str(allocation.token_output),
            percent_supply=allocation.percent_of_supply,
        )


class SessionDocument(BaseModel):
    address_lut: str | None = Field(None, alias="addressLUT")
    mint: str | None = None
    mint_pk: str | None = Field(None, alias="mintPk")
    allocations: dict[str, WalletAllocation] = Field(default_factory=dict)
    extra: dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    # ─── (de)serialization ───────────────────────────────────────────

    @classmethod
    def from_json_dict(cls, data: dict[str, Any]) -> SessionDocument:
        fixed = {k: data[k] for k in _FIXED_KEYS if k in data}
        allocations: dict[str, WalletAllocation] = {}
        extra: dict[str, Any] = {}
        for key, value in data.items():
            if key in _FIXED_KEYS:
                continue
            if isinstance(value, dict) and "solAmount" in value:
                allocations[key] = WalletAllocation.model_validate(value)
            else:
                extra[key] = value
        return cls.model_validate({**fixed, "allocations": allocations, "extra": extra})

    def to_json_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.address_lut is not None:
            data["addressLUT"] = self.address_lut
        if self.mint is not None:
            data["mint"] = self.mint
        if self.mint_pk is not None:
            data["mintPk"] = self.mint_pk
        for key, allocation in self.allocations.items():
            data[key] = allocation.model_dump(by_alias=True)
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    # ─── typed accessors ─────────────────────────────────────────────

    def lookup_table(self) -> Pubkey:
        if not self.address_lut:
            raise ValidationError("Session has no addressLUT; create the lookup table first")
        return Pubkey.from_string(self.address_lut)

    def mint_keypair(self) -> Keypair:
        if not self.mint_pk:
            raise ValidationError("Session has no mint keypair; extend the lookup table first")
        keypair = keypair_from_secret(self.mint_pk, name="mintPk")
        if self.mint and str(keypair.pubkey()) != self.mint:
            raise ValidationError("Session mint does not match mintPk")
        return keypair

    def mint_pubkey(self) -> Pubkey:
        if self.mint:
            return Pubkey.from_string(self.mint)
        return self.mint_keypair().pubkey()

    def set_mint(self, keypair: Keypair) -> None:
        self.mint = str(keypair.pubkey())
        self.mint_pk = str(keypair)

    def allocation_for(self, pubkey: Pubkey) -> Allocation | None:
        entry = self.allocations.get(str(pubkey))
        return entry.to_allocation(pubkey) if entry is not None else None

    def set_allocations(self, allocations: list[Allocation]) -> None:
        """Merge simulated allocations in, replacing entries for the same wallets."""
        for allocation in allocations:
            self.allocations[str(allocation.identity_pubkey)] = WalletAllocation.from_allocation(
                allocation
            )


class SessionStore:
    """File-backed session document. load() and save() are the only I/O."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> SessionDocument:
        """Read the document; a missing file is an empty session."""
        if not self._path.exists():
            logger.debug(f"[SESSION] {self._path} not found, starting empty")
            return SessionDocument()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValidationError(f"{self._path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError(f"{self._path} must hold a JSON object")
        try:
            document = SessionDocument.from_json_dict(data)
        except PydanticValidationError as e:
            raise ValidationError(f"{self._path}: {e}") from e
        logger.debug(
            f"[SESSION] Loaded {self._path}: lut={document.address_lut} mint={document.mint} "
            f"allocations={len(document.allocations)}"
        )
        return document

    def save(self, document: SessionDocument) -> None:
        """Atomically replace the file with ``document``."""
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self._path.name}.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document.to_json_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info(
            f"[SESSION] Saved {self._path}: lut={document.address_lut} mint={document.mint} "
            f"allocations={len(document.allocations)}"
        )
