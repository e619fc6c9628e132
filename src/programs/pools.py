"""Pool keys for the venues a sell can route through.

PoolKeys is a closed union: a token is either still on its pump.fun bonding
curve or has migrated to a Raydium AMM v4 pool. Both variants validate their
fields at construction, so dispatch below never probes for missing keys.
"""

from __future__ import annotations

from typing import Union

from solders.instruction import Instruction  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.programs import pumpfun, raydium, spl_token
from src.programs.constants import NATIVE_MINT
from src.programs.pumpfun import PumpCurvePool
from src.programs.raydium import RaydiumAmmV4Pool

PoolKeys = Union[PumpCurvePool, RaydiumAmmV4Pool]


def pool_mint(pool: PoolKeys) -> Pubkey:
    """The traded (non-SOL) mint of the pool."""
    if isinstance(pool, PumpCurvePool):
        return pool.mint
    if isinstance(pool, RaydiumAmmV4Pool):
        return pool.quote_mint if pool.base_mint == NATIVE_MINT else pool.base_mint
    raise TypeError(f"Unsupported pool type: {type(pool).__name__}")


def pool_kind(pool: PoolKeys) -> str:
    if isinstance(pool, PumpCurvePool):
        return "pump_curve"
    if isinstance(pool, RaydiumAmmV4Pool):
        return "raydium_amm_v4"
    raise TypeError(f"Unsupported pool type: {type(pool).__name__}")


def sell_instructions(
    pool: PoolKeys, owner: Pubkey, token_amount: int, min_sol_output: int
) -> list[Instruction]:
    """Instructions selling ``token_amount`` of the pool mint held in owner's ATA.

    Raydium proceeds land in a temporary wSOL account which is closed back to
    the owner in the same envelope.
    """
    if token_amount <= 0:
        raise ValueError(f"Sell amount must be positive, got {token_amount}")

    if isinstance(pool, PumpCurvePool):
        return [pumpfun.sell(owner, pool, token_amount, min_sol_output)]

    if isinstance(pool, RaydiumAmmV4Pool):
        mint = pool_mint(pool)
        token_ata = spl_token.get_associated_token_address(owner, mint)
        wsol_ata = spl_token.get_associated_token_address(owner, NATIVE_MINT)
        return [
            spl_token.create_ata_idempotent(owner, owner, NATIVE_MINT),
            raydium.swap_base_in(pool, token_ata, wsol_ata, owner, token_amount, min_sol_output),
            spl_token.close_account(wsol_ata, owner, owner),
        ]

    raise TypeError(f"Unsupported pool type: {type(pool).__name__}")
