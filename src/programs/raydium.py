"""Raydium AMM v4 pool keys (derived from an OpenBook market) and swap instruction.

OpenBook/Serum MarketStateV3 layout (388 bytes), offsets used here:
  45:53   vault_signer_nonce (u64 LE)
  53:85   base_mint
  85:117  quote_mint
  117:149 base_vault
  165:197 quote_vault
  253:285 event_queue
  285:317 bids
  317:349 asks

AMM v4 PDAs are find_program_address([amm_program, market_id, <seed>]).
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, fields

from loguru import logger
from solders.instruction import AccountMeta, Instruction  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.programs.constants import (
    OPENBOOK_PROGRAM_ID,
    RAYDIUM_AMM_V4_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)

MARKET_STATE_V3_SIZE = 388
AMM_AUTHORITY_SEED = b"amm authority"
SWAP_BASE_IN = 9


@dataclass(frozen=True)
class MarketState:
    vault_signer_nonce: int
    base_mint: Pubkey
    quote_mint: Pubkey
    base_vault: Pubkey
    quote_vault: Pubkey
    event_queue: Pubkey
    bids: Pubkey
    asks: Pubkey


def decode_market(raw: bytes) -> MarketState | None:
    if len(raw) < MARKET_STATE_V3_SIZE:
        logger.debug(f"[RAYDIUM] Market data too short: {len(raw)} < {MARKET_STATE_V3_SIZE}")
        return None

    def _key(offset: int) -> Pubkey:
        return Pubkey.from_bytes(raw[offset : offset + 32])

    (nonce,) = struct.unpack_from("<Q", raw, 45)
    return MarketState(
        vault_signer_nonce=nonce,
        base_mint=_key(53),
        quote_mint=_key(85),
        base_vault=_key(117),
        quote_vault=_key(165),
        event_queue=_key(253),
        bids=_key(285),
        asks=_key(317),
    )


@dataclass(frozen=True)
class RaydiumAmmV4Pool:
    """Keys for a migrated token trading on a Raydium AMM v4 pool."""

    amm_id: Pubkey
    authority: Pubkey
    open_orders: Pubkey
    target_orders: Pubkey
    base_vault: Pubkey
    quote_vault: Pubkey
    base_mint: Pubkey
    quote_mint: Pubkey
    market_id: Pubkey
    market_authority: Pubkey
    market_bids: Pubkey
    market_asks: Pubkey
    market_event_queue: Pubkey
    market_base_vault: Pubkey
    market_quote_vault: Pubkey
    program_id: Pubkey = RAYDIUM_AMM_V4_PROGRAM_ID
    market_program_id: Pubkey = OPENBOOK_PROGRAM_ID

    def __post_init__(self) -> None:
        for f in fields(self):
            if not isinstance(getattr(self, f.name), Pubkey):
                raise TypeError(f"RaydiumAmmV4Pool.{f.name} must be a Pubkey")
        if self.base_mint == self.quote_mint:
            raise ValueError("RaydiumAmmV4Pool base_mint and quote_mint must differ")


def _amm_pda(market_id: Pubkey, seed: bytes) -> Pubkey:
    pda, _bump = Pubkey.find_program_address(
        [bytes(RAYDIUM_AMM_V4_PROGRAM_ID), bytes(market_id), seed],
        RAYDIUM_AMM_V4_PROGRAM_ID,
    )
    return pda


def derive_pool_keys(market_id: Pubkey, market: MarketState) -> RaydiumAmmV4Pool:
    authority, _bump = Pubkey.find_program_address([AMM_AUTHORITY_SEED], RAYDIUM_AMM_V4_PROGRAM_ID)
    market_authority = Pubkey.create_program_address(
        [bytes(market_id), market.vault_signer_nonce.to_bytes(8, "little")],
        OPENBOOK_PROGRAM_ID,
    )
    return RaydiumAmmV4Pool(
        amm_id=_amm_pda(market_id, b"amm_associated_seed"),
        authority=authority,
        open_orders=_amm_pda(market_id, b"open_order_associated_seed"),
        target_orders=_amm_pda(market_id, b"target_associated_seed"),
        base_vault=_amm_pda(market_id, b"coin_vault_associated_seed"),
        quote_vault=_amm_pda(market_id, b"pc_vault_associated_seed"),
        base_mint=market.base_mint,
        quote_mint=market.quote_mint,
        market_id=market_id,
        market_authority=market_authority,
        market_bids=market.bids,
        market_asks=market.asks,
        market_event_queue=market.event_queue,
        market_base_vault=market.base_vault,
        market_quote_vault=market.quote_vault,
    )


def swap_base_in(
    pool: RaydiumAmmV4Pool,
    user_source: Pubkey,
    user_destination: Pubkey,
    owner: Pubkey,
    amount_in: int,
    min_amount_out: int = 0,
) -> Instruction:
    """SwapBaseIn (tag 9): u8 tag + u64 amount_in + u64 minimum_amount_out."""
    accounts = [
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pool.amm_id, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.authority, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pool.open_orders, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.target_orders, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.base_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.quote_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.market_program_id, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pool.market_id, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.market_bids, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.market_asks, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.market_event_queue, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.market_base_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.market_quote_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.market_authority, is_signer=False, is_writable=False),
        AccountMeta(pubkey=user_source, is_signer=False, is_writable=True),
        AccountMeta(pubkey=user_destination, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=True, is_writable=True),
    ]
    data = struct.pack("<BQQ", SWAP_BASE_IN, amount_in, min_amount_out)
    return Instruction(pool.program_id, data, accounts)
