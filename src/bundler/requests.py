"""Request values consumed by the pure bundle builders.

Everything a builder needs is in the request: identities, chain state read
beforehand (blockhash, balances, supply, lookup table), and operator choices.
Builders never touch the network.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from solders.address_lookup_table_account import AddressLookupTableAccount  # type: ignore[import-untyped]
from solders.hash import Hash  # type: ignore[import-untyped]
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.bundler.curve import Allocation
from src.programs.pools import PoolKeys


class SupplyBasis(str, Enum):
    """Which supply figure the 25% sell cap is measured against."""

    LIVE = "live"  # getTokenSupply at action time
    SIMULATED = "simulated"  # snapshot used when allocations were simulated


@dataclass(frozen=True)
class TokenMetadata:
    name: str
    symbol: str
    uri: str


@dataclass(frozen=True)
class CreateTableRequest:
    payer: Keypair
    recent_slot: int
    blockhash: Hash
    tip_lamports: int


@dataclass(frozen=True)
class ExtendTableRequest:
    payer: Keypair
    table: Pubkey
    addresses: Sequence[Pubkey]
    blockhash: Hash
    tip_lamports: int
    existing: Sequence[Pubkey] = ()


@dataclass(frozen=True)
class LaunchRequest:
    payer: Keypair
    dev: Keypair
    mint: Keypair
    metadata: TokenMetadata
    dev_allocation: Allocation
    wallets: Sequence[Keypair]
    allocations: Mapping[Pubkey, Allocation]
    lookup_table: AddressLookupTableAccount
    blockhash: Hash
    tip_lamports: int
    slippage_bps: int = 1500


@dataclass(frozen=True)
class SellRequest:
    """Sell ``percent`` of every holder's balance through the fee payer.

    ``balances`` maps holder pubkey (dev and wallets) to its raw token
    balance, read just before building. Both supply figures are explicit;
    ``supply_basis`` picks the one the guardrail uses.
    """

    payer: Keypair
    dev: Keypair
    wallets: Sequence[Keypair]
    pool: PoolKeys
    percent: Decimal
    balances: Mapping[Pubkey, int]
    lookup_table: AddressLookupTableAccount
    blockhash: Hash
    tip_lamports: int
    supply_basis: SupplyBasis = SupplyBasis.LIVE
    live_supply: int | None = None
    simulated_supply: int | None = None
    min_sol_output: int = 0

    def supply(self) -> int | None:
        if self.supply_basis is SupplyBasis.LIVE:
            return self.live_supply
        return self.simulated_supply


@dataclass(frozen=True)
class FundRequest:
    """SOL transfers payer -> recipients. ``amounts`` are allocation SOL inputs in lamports."""

    payer: Keypair
    amounts: Mapping[Pubkey, int]
    lookup_table: AddressLookupTableAccount
    blockhash: Hash
    tip_lamports: int


@dataclass(frozen=True)
class ReclaimRequest:
    """Every wallet returns its full lamport balance to the payer."""

    payer: Keypair
    wallets: Sequence[Keypair]
    balances: Mapping[Pubkey, int]
    blockhash: Hash
    tip_lamports: int
    lookup_table: AddressLookupTableAccount | None = None
