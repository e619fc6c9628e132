"""Pump.fun program: PDAs, create/buy/sell instructions, bonding curve decoding.

Anchor program: instruction data is an 8-byte discriminator
(sha256("global:<method>")[:8]) followed by little-endian borsh arguments.

Account orders:
  create (14): mint, mint_authority, bonding_curve, associated_bonding_curve,
               global, mpl_token_metadata, metadata, user, system_program,
               token_program, associated_token_program, rent,
               event_authority, program
  buy    (12): global, fee_recipient, mint, bonding_curve,
               associated_bonding_curve, associated_user, user,
               system_program, token_program, rent, event_authority, program
  sell   (12): global, fee_recipient, mint, bonding_curve,
               associated_bonding_curve, associated_user, user,
               system_program, associated_token_program, token_program,
               event_authority, program
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass

from solders.instruction import AccountMeta, Instruction  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.programs.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    MPL_TOKEN_METADATA_PROGRAM_ID,
    PUMP_EVENT_AUTHORITY,
    PUMP_FEE_RECIPIENT,
    PUMP_GLOBAL,
    PUMP_MINT_AUTHORITY,
    PUMP_PROGRAM_ID,
    RENT_SYSVAR_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from src.programs.spl_token import get_associated_token_address


def _discriminator(namespace: str, name: str) -> bytes:
    return hashlib.sha256(f"{namespace}:{name}".encode()).digest()[:8]


CREATE_DISCRIMINATOR = _discriminator("global", "create")
BUY_DISCRIMINATOR = _discriminator("global", "buy")
SELL_DISCRIMINATOR = _discriminator("global", "sell")
BONDING_CURVE_DISCRIMINATOR = _discriminator("account", "BondingCurve")

BONDING_CURVE_MIN_SIZE = 49  # discriminator + 5 x u64 + complete flag


def derive_bonding_curve(mint: Pubkey) -> Pubkey:
    pda, _bump = Pubkey.find_program_address([b"bonding-curve", bytes(mint)], PUMP_PROGRAM_ID)
    return pda


def derive_metadata(mint: Pubkey) -> Pubkey:
    pda, _bump = Pubkey.find_program_address(
        [b"metadata", bytes(MPL_TOKEN_METADATA_PROGRAM_ID), bytes(mint)],
        MPL_TOKEN_METADATA_PROGRAM_ID,
    )
    return pda


@dataclass(frozen=True)
class PumpCurvePool:
    """Keys for a token still trading on its pump.fun bonding curve."""

    mint: Pubkey
    bonding_curve: Pubkey
    associated_bonding_curve: Pubkey

    def __post_init__(self) -> None:
        for name in ("mint", "bonding_curve", "associated_bonding_curve"):
            if not isinstance(getattr(self, name), Pubkey):
                raise TypeError(f"PumpCurvePool.{name} must be a Pubkey")

    @classmethod
    def for_mint(cls, mint: Pubkey) -> PumpCurvePool:
        bonding_curve = derive_bonding_curve(mint)
        return cls(
            mint=mint,
            bonding_curve=bonding_curve,
            associated_bonding_curve=get_associated_token_address(bonding_curve, mint),
        )


@dataclass(frozen=True)
class BondingCurveAccount:
    """Decoded on-chain bonding curve state."""

    virtual_token_reserves: int
    virtual_sol_reserves: int
    real_token_reserves: int
    real_sol_reserves: int
    token_total_supply: int
    complete: bool


def decode_bonding_curve(raw: bytes) -> BondingCurveAccount | None:
    """Returns None on short data or a foreign discriminator."""
    if len(raw) < BONDING_CURVE_MIN_SIZE or raw[:8] != BONDING_CURVE_DISCRIMINATOR:
        return None
    vtr, vsr, rtr, rsr, supply = struct.unpack_from("<5Q", raw, 8)
    return BondingCurveAccount(
        virtual_token_reserves=vtr,
        virtual_sol_reserves=vsr,
        real_token_reserves=rtr,
        real_sol_reserves=rsr,
        token_total_supply=supply,
        complete=raw[48] != 0,
    )


def _borsh_string(value: str) -> bytes:
    encoded = value.encode("utf-8")
    return struct.pack("<I", len(encoded)) + encoded


def create(mint: Pubkey, user: Pubkey, name: str, symbol: str, uri: str) -> Instruction:
    pool = PumpCurvePool.for_mint(mint)
    accounts = [
        AccountMeta(pubkey=mint, is_signer=True, is_writable=True),
        AccountMeta(pubkey=PUMP_MINT_AUTHORITY, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pool.bonding_curve, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.associated_bonding_curve, is_signer=False, is_writable=True),
        AccountMeta(pubkey=PUMP_GLOBAL, is_signer=False, is_writable=False),
        AccountMeta(pubkey=MPL_TOKEN_METADATA_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=derive_metadata(mint), is_signer=False, is_writable=True),
        AccountMeta(pubkey=user, is_signer=True, is_writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=RENT_SYSVAR_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=PUMP_EVENT_AUTHORITY, is_signer=False, is_writable=False),
        AccountMeta(pubkey=PUMP_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    data = CREATE_DISCRIMINATOR + _borsh_string(name) + _borsh_string(symbol) + _borsh_string(uri)
    return Instruction(PUMP_PROGRAM_ID, data, accounts)


def buy(user: Pubkey, pool: PumpCurvePool, token_amount: int, max_sol_cost: int) -> Instruction:
    accounts = [
        AccountMeta(pubkey=PUMP_GLOBAL, is_signer=False, is_writable=False),
        AccountMeta(pubkey=PUMP_FEE_RECIPIENT, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pool.bonding_curve, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.associated_bonding_curve, is_signer=False, is_writable=True),
        AccountMeta(
            pubkey=get_associated_token_address(user, pool.mint), is_signer=False, is_writable=True
        ),
        AccountMeta(pubkey=user, is_signer=True, is_writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=RENT_SYSVAR_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=PUMP_EVENT_AUTHORITY, is_signer=False, is_writable=False),
        AccountMeta(pubkey=PUMP_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    data = BUY_DISCRIMINATOR + struct.pack("<QQ", token_amount, max_sol_cost)
    return Instruction(PUMP_PROGRAM_ID, data, accounts)


def sell(user: Pubkey, pool: PumpCurvePool, token_amount: int, min_sol_output: int) -> Instruction:
    accounts = [
        AccountMeta(pubkey=PUMP_GLOBAL, is_signer=False, is_writable=False),
        AccountMeta(pubkey=PUMP_FEE_RECIPIENT, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pool.bonding_curve, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.associated_bonding_curve, is_signer=False, is_writable=True),
        AccountMeta(
            pubkey=get_associated_token_address(user, pool.mint), is_signer=False, is_writable=True
        ),
        AccountMeta(pubkey=user, is_signer=True, is_writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=PUMP_EVENT_AUTHORITY, is_signer=False, is_writable=False),
        AccountMeta(pubkey=PUMP_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    data = SELL_DISCRIMINATOR + struct.pack("<QQ", token_amount, min_sol_output)
    return Instruction(PUMP_PROGRAM_ID, data, accounts)
