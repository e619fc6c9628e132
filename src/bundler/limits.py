"""Hard size limits and chunking helpers.

The per-chunk counts are chosen so the worst case (ATA create + swap per
wallet) still compiles under the packet ceiling; every envelope is measured
anyway and rejected if it does not.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import TypeVar

from src.bundler.errors import SizeLimitExceeded, ValidationError

T = TypeVar("T")

MAX_TX_SIZE = 1232  # bytes, serialized versioned transaction (signatures included)
LUT_ADDRESSES_PER_EXTEND = 30
LUT_ADDRESSES_WITH_TIP = 28  # a full extend plus the tip transfer overflows by ~30 bytes
LUT_MAX_ADDRESSES = 256
WALLETS_PER_SWAP_TX = 6
INSTRUCTIONS_PER_TRANSFER_TX = 45
WALLETS_PER_RECLAIM_TX = 7
MAX_BUNDLE_TXS = 5  # Jito block engine limit
# launch: dev create/buy + wallet buys; sell: wallet transfers + the sell
MAX_WALLETS = (MAX_BUNDLE_TXS - 1) * WALLETS_PER_SWAP_TX


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most ``size`` items, preserving order."""
    if size < 1:
        raise ValueError(f"Chunk size must be >= 1, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def check_envelope_size(measured: int, label: str, detail: str = "") -> None:
    if measured > MAX_TX_SIZE:
        raise SizeLimitExceeded(
            f"Envelope '{label}' is {measured} bytes, limit is {MAX_TX_SIZE}"
            + (f" ({detail})" if detail else ""),
            measured=measured,
            limit=MAX_TX_SIZE,
        )


def check_bundle_size(count: int, label: str) -> None:
    if count == 0:
        raise SizeLimitExceeded(f"Bundle '{label}' has no envelopes", measured=0, limit=MAX_BUNDLE_TXS)
    if count > MAX_BUNDLE_TXS:
        raise SizeLimitExceeded(
            f"Bundle '{label}' has {count} envelopes, relay limit is {MAX_BUNDLE_TXS}",
            measured=count,
            limit=MAX_BUNDLE_TXS,
        )


def check_table_capacity(existing: int, adding: int) -> None:
    total = existing + adding
    if total > LUT_MAX_ADDRESSES:
        raise SizeLimitExceeded(
            f"Lookup table would hold {total} addresses ({existing} + {adding}), "
            f"limit is {LUT_MAX_ADDRESSES}",
            measured=total,
            limit=LUT_MAX_ADDRESSES,
        )


def check_wallet_count(count: int) -> None:
    """Launch and sell bundles must fit the relay limit with every wallet in them."""
    if count > MAX_WALLETS:
        raise ValidationError(
            f"{count} wallets loaded, a launch or sell bundle fits at most {MAX_WALLETS}; "
            f"remove {count - MAX_WALLETS} keypair files"
        )
