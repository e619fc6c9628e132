"""Pure bundle builders: request in, signed Bundle out (or a BundlerError).

Packing rules shared by every action:
  - the fee payer pays for and signs every envelope, always first
  - wallets whose instructions appear in an envelope co-sign it
  - swap envelopes carry at most 6 wallets, plain transfers at most 45
    instructions, reclaims at most 7 wallets
  - exactly one tip per bundle, on its last envelope
  - every envelope is measured before signing

Nothing here performs I/O; chain state arrives in the request.
"""

from __future__ import annotations

import random
from decimal import ROUND_DOWN, Decimal

from loguru import logger
from solders.instruction import Instruction  # type: ignore[import-untyped]
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]
from solders.system_program import TransferParams, transfer  # type: ignore[import-untyped]

from src.bundler.envelope import Bundle, EnvelopePlan, assemble_bundle
from src.bundler.errors import GuardrailViolation, ValidationError
from src.bundler.requests import FundRequest, LaunchRequest, ReclaimRequest, SellRequest
from src.bundler.limits import (
    INSTRUCTIONS_PER_TRANSFER_TX,
    WALLETS_PER_RECLAIM_TX,
    WALLETS_PER_SWAP_TX,
    chunked,
)
from src.programs import pumpfun, spl_token
from src.programs.constants import LAMPORTS_PER_SOL
from src.programs.pools import pool_kind, pool_mint, sell_instructions

MAX_SELL_SUPPLY_FRACTION = Decimal("0.25")
# Funding headroom over the allocated SOL: 1.5% plus 0.0025 SOL for rent and fees.
FUND_MARGIN_NUM = 1015
FUND_MARGIN_DEN = 1000
FUND_FLAT_LAMPORTS = 2_500_000


# ─── Helpers ─────────────────────────────────────────────────────────


def max_sol_cost(sol_input: int, slippage_bps: int) -> int:
    """Upper bound on SOL spent by a buy, ``sol_input`` plus slippage."""
    if slippage_bps < 0:
        raise ValidationError(f"Slippage must be >= 0 bps, got {slippage_bps}")
    return sol_input * (10_000 + slippage_bps) // 10_000


def fund_amount(sol_input: int) -> int:
    return sol_input * FUND_MARGIN_NUM // FUND_MARGIN_DEN + FUND_FLAT_LAMPORTS


def sell_share(balance: int, percent: Decimal) -> int:
    """``percent`` of a raw token balance, rounded down."""
    return int((Decimal(balance) * percent / 100).to_integral_value(rounding=ROUND_DOWN))


def check_sell_guardrail(sell_total: int, supply: int) -> None:
    """Reject a sell above 25% of supply. Exactly 25% passes."""
    if supply <= 0:
        raise ValidationError(f"Token supply must be positive to size a sell, got {supply}")
    if sell_total * 4 > supply:
        cap = supply // 4
        raise GuardrailViolation(
            f"Sell of {sell_total} exceeds 25% of supply ({cap} of {supply}); "
            f"that is {Decimal(sell_total) / supply * 100:.2f}%",
            requested=sell_total,
            cap=cap,
        )


def _sol(lamports: int) -> str:
    return f"{lamports / LAMPORTS_PER_SOL:.4f}"


# ─── Launch ──────────────────────────────────────────────────────────


def build_launch_bundle(request: LaunchRequest, rng: random.Random | None = None) -> Bundle:
    """Create the token, dev buy, then wallet buys in chunks of 6.

    Envelope 1: create + dev ATA + dev buy, signed by payer, dev and mint.
    Then one envelope per chunk of wallets: ATA create + buy per wallet with
    an allocation. Wallets without one are skipped.
    """
    if request.dev_allocation.sol_input <= 0 or request.dev_allocation.token_output <= 0:
        raise ValidationError("Dev allocation is empty; run the simulation first")

    payer = request.payer.pubkey()
    dev = request.dev.pubkey()
    mint = request.mint.pubkey()
    pool = pumpfun.PumpCurvePool.for_mint(mint)
    meta = request.metadata

    plans = [
        EnvelopePlan(
            label="create",
            instructions=[
                pumpfun.create(mint, dev, meta.name, meta.symbol, meta.uri),
                spl_token.create_ata_idempotent(payer, dev, mint),
                pumpfun.buy(
                    dev,
                    pool,
                    request.dev_allocation.token_output,
                    max_sol_cost(request.dev_allocation.sol_input, request.slippage_bps),
                ),
            ],
            co_signers=[request.dev, request.mint],
        )
    ]

    for chunk_index, chunk in enumerate(chunked(list(request.wallets), WALLETS_PER_SWAP_TX)):
        plan = EnvelopePlan(label=f"buys[{chunk_index}]")
        for wallet in chunk:
            owner = wallet.pubkey()
            allocation = request.allocations.get(owner)
            if allocation is None or allocation.sol_input <= 0 or allocation.token_output <= 0:
                logger.warning(f"[BUNDLE] No allocation for wallet {owner}, skipping")
                continue
            plan.instructions.append(spl_token.create_ata_idempotent(payer, owner, mint))
            plan.instructions.append(
                pumpfun.buy(
                    owner,
                    pool,
                    allocation.token_output,
                    max_sol_cost(allocation.sol_input, request.slippage_bps),
                )
            )
            plan.co_signers.append(wallet)
        if plan.instructions:
            plans.append(plan)

    logger.info(
        f"[BUNDLE] Launch {meta.symbol} mint={mint}: dev + "
        f"{sum(len(p.co_signers) for p in plans[1:])} wallet buys in {len(plans)} envelopes"
    )
    return assemble_bundle(
        "launch",
        plans,
        request.payer,
        request.blockhash,
        request.tip_lamports,
        lookup_tables=[request.lookup_table],
        rng=rng,
    )


# ─── Sell ────────────────────────────────────────────────────────────


def build_sell_bundle(request: SellRequest, rng: random.Random | None = None) -> Bundle:
    """Consolidate ``percent`` of every holder's tokens in the payer, then sell.

    Transfer envelopes hold up to 6 wallets; the first also creates the payer
    ATA and moves the dev share. The final envelope sells from the payer
    through the pool (bonding curve or Raydium). The 25% guardrail runs on
    the computed total before any envelope is built.
    """
    percent = Decimal(request.percent)
    if not percent.is_finite() or percent <= 0 or percent > 100:
        raise ValidationError(f"Sell percentage must be in (0, 100], got {request.percent}")

    supply = request.supply()
    if supply is None:
        raise ValidationError(f"No {request.supply_basis.value} supply provided for the sell guardrail")

    payer = request.payer.pubkey()
    mint = pool_mint(request.pool)
    payer_ata = spl_token.get_associated_token_address(payer, mint)

    holders: list[Keypair] = [request.dev, *request.wallets]
    shares: dict[Pubkey, int] = {}
    for holder in holders:
        owner = holder.pubkey()
        amount = sell_share(request.balances.get(owner, 0), percent)
        if amount > 0:
            shares[owner] = amount
    sell_total = sum(shares.values())

    logger.info(
        f"[BUNDLE] Sell {percent}% via {pool_kind(request.pool)}: {sell_total} of "
        f"{request.supply_basis.value} supply {supply} from {len(shares)} holders"
    )
    if sell_total == 0:
        raise ValidationError("Nothing to sell: every holder balance rounds to zero")
    check_sell_guardrail(sell_total, supply)

    def _transfer(holder: Keypair) -> Instruction:
        owner = holder.pubkey()
        return spl_token.transfer(
            spl_token.get_associated_token_address(owner, mint), payer_ata, owner, shares[owner]
        )

    plans: list[EnvelopePlan] = []
    for chunk_index, chunk in enumerate(chunked(list(request.wallets), WALLETS_PER_SWAP_TX)):
        plan = EnvelopePlan(label=f"transfers[{chunk_index}]")
        if chunk_index == 0:
            plan.instructions.append(spl_token.create_ata_idempotent(payer, payer, mint))
            if request.dev.pubkey() in shares:
                plan.instructions.append(_transfer(request.dev))
                plan.co_signers.append(request.dev)
        for wallet in chunk:
            if wallet.pubkey() not in shares:
                continue
            plan.instructions.append(_transfer(wallet))
            plan.co_signers.append(wallet)
        if plan.co_signers:
            plans.append(plan)

    if not plans and request.dev.pubkey() in shares:
        # No wallets at all, the dev share still has to reach the payer
        plans.append(
            EnvelopePlan(
                label="transfers[0]",
                instructions=[
                    spl_token.create_ata_idempotent(payer, payer, mint),
                    _transfer(request.dev),
                ],
                co_signers=[request.dev],
            )
        )

    plans.append(
        EnvelopePlan(
            label="sell",
            instructions=sell_instructions(request.pool, payer, sell_total, request.min_sol_output),
        )
    )
    return assemble_bundle(
        "sell",
        plans,
        request.payer,
        request.blockhash,
        request.tip_lamports,
        lookup_tables=[request.lookup_table],
        rng=rng,
    )


# ─── Fund / reclaim ──────────────────────────────────────────────────


def build_fund_bundle(request: FundRequest, rng: random.Random | None = None) -> Bundle:
    """Payer sends each recipient its allocation plus funding headroom."""
    payer = request.payer.pubkey()
    transfers: list[Instruction] = []
    for recipient, sol_input in request.amounts.items():
        if sol_input <= 0:
            logger.warning(f"[BUNDLE] No SOL allocation for {recipient}, skipping")
            continue
        lamports = fund_amount(sol_input)
        transfers.append(
            transfer(TransferParams(from_pubkey=payer, to_pubkey=recipient, lamports=lamports))
        )
        logger.debug(f"[BUNDLE] Fund {recipient}: {_sol(lamports)} SOL")

    if not transfers:
        raise ValidationError("No recipients with a SOL allocation to fund")

    plans = [
        EnvelopePlan(label=f"fund[{index}]", instructions=chunk)
        for index, chunk in enumerate(chunked(transfers, INSTRUCTIONS_PER_TRANSFER_TX))
    ]
    return assemble_bundle(
        "fund",
        plans,
        request.payer,
        request.blockhash,
        request.tip_lamports,
        lookup_tables=[request.lookup_table],
        rng=rng,
    )


def build_reclaim_bundle(request: ReclaimRequest, rng: random.Random | None = None) -> Bundle:
    """Every wallet with a balance sends all of it back to the payer, 7 per envelope."""
    payer = request.payer.pubkey()
    funded = [w for w in request.wallets if request.balances.get(w.pubkey(), 0) > 0]
    if not funded:
        raise ValidationError("No wallet holds any SOL to reclaim")

    plans = []
    for index, chunk in enumerate(chunked(funded, WALLETS_PER_RECLAIM_TX)):
        plans.append(
            EnvelopePlan(
                label=f"reclaim[{index}]",
                instructions=[
                    transfer(
                        TransferParams(
                            from_pubkey=w.pubkey(),
                            to_pubkey=payer,
                            lamports=request.balances[w.pubkey()],
                        )
                    )
                    for w in chunk
                ],
                co_signers=list(chunk),
            )
        )

    total = sum(request.balances[w.pubkey()] for w in funded)
    logger.info(f"[BUNDLE] Reclaim {_sol(total)} SOL from {len(funded)} wallets")
    tables = [request.lookup_table] if request.lookup_table is not None else []
    return assemble_bundle(
        "reclaim",
        plans,
        request.payer,
        request.blockhash,
        request.tip_lamports,
        lookup_tables=tables,
        rng=rng,
    )
