"""Address lookup table lifecycle: create, chunked extend, read-back.

The table is created in its own bundle. Extension is chunked at 30 addresses
per instruction (one instruction per envelope) because the extend data plus
the uncompressed account keys must fit the packet ceiling; those envelopes
cannot be compressed against the table they are populating. Nothing that
references the table is built until a read-back shows it.
"""

from __future__ import annotations

import random
from collections.abc import Iterable, Sequence

from loguru import logger
from solders.address_lookup_table_account import AddressLookupTableAccount  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.bundler.envelope import Bundle, EnvelopePlan, assemble_bundle
from src.bundler.requests import CreateTableRequest, ExtendTableRequest
from src.bundler.limits import (
    LUT_ADDRESSES_PER_EXTEND,
    LUT_ADDRESSES_WITH_TIP,
    check_table_capacity,
    chunked,
)
from src.clients.retry import RetryPolicy
from src.clients.solana_rpc import SolanaRpcClient
from src.programs import pumpfun
from src.programs.address_lookup_table import create_lookup_table, extend_lookup_table
from src.programs.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    MPL_TOKEN_METADATA_PROGRAM_ID,
    NATIVE_MINT,
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


def build_create_table_bundle(
    request: CreateTableRequest, rng: random.Random | None = None
) -> tuple[Bundle, Pubkey]:
    """Single-envelope bundle creating the table. Returns (bundle, table_address).

    ``recent_slot`` must be a finalized slot; the table address is derived
    from it and the payer (which is also the table authority).
    """
    payer = request.payer.pubkey()
    instruction, table = create_lookup_table(payer, payer, request.recent_slot)
    logger.info(f"[LUT] Creating table {table} (slot {request.recent_slot})")
    bundle = assemble_bundle(
        "create-lut",
        [EnvelopePlan(label="create", instructions=[instruction], compress=False)],
        request.payer,
        request.blockhash,
        request.tip_lamports,
        rng=rng,
    )
    return bundle, table


def plan_extension(existing: Iterable[Pubkey], addresses: Iterable[Pubkey]) -> list[Pubkey]:
    """Addresses still missing from the table, first-seen order, duplicates dropped.

    Raises SizeLimitExceeded when the table would outgrow its capacity.
    """
    existing_list = list(existing)
    seen = set(existing_list)
    pending: list[Pubkey] = []
    for address in addresses:
        if address in seen:
            continue
        seen.add(address)
        pending.append(address)
    check_table_capacity(len(existing_list), len(pending))
    return pending


def build_extend_bundle(
    request: ExtendTableRequest, rng: random.Random | None = None
) -> Bundle:
    """One extend envelope per chunk of up to 30 new addresses, tip on the last.

    The tipped envelope carries at most 28 so the transfer still fits.

    A table that already holds every address yields an empty bundle, which
    the caller must not submit.
    """
    pending = plan_extension(request.existing, request.addresses)
    if not pending:
        logger.info(
            f"[LUT] {request.table} already holds all {len(request.addresses)} addresses, "
            "nothing to extend"
        )
        return Bundle(label="extend-lut")

    chunks = list(chunked(pending, LUT_ADDRESSES_PER_EXTEND))
    if len(chunks[-1]) > LUT_ADDRESSES_WITH_TIP:
        tail = chunks.pop()
        chunks.extend([tail[:LUT_ADDRESSES_WITH_TIP], tail[LUT_ADDRESSES_WITH_TIP:]])

    payer = request.payer.pubkey()
    plans = [
        EnvelopePlan(
            label=f"extend[{index}]",
            instructions=[extend_lookup_table(request.table, payer, payer, chunk)],
            compress=False,
        )
        for index, chunk in enumerate(chunks)
    ]
    logger.info(
        f"[LUT] Extending {request.table}: {len(pending)} new addresses "
        f"({len(request.existing)} present) in {len(plans)} envelopes"
    )
    return assemble_bundle(
        "extend-lut", plans, request.payer, request.blockhash, request.tip_lamports, rng=rng
    )


def launch_table_addresses(
    mint: Pubkey,
    wallets: Sequence[Pubkey],
    dev: Pubkey,
    payer: Pubkey,
    table: Pubkey,
) -> list[Pubkey]:
    """Every account the launch, sell and reclaim envelopes reference.

    Program and protocol accounts first, then each wallet and its mint ATA,
    then dev/payer and their ATAs, the table itself and the native mint.
    """
    pool = pumpfun.PumpCurvePool.for_mint(mint)
    addresses = [
        ASSOCIATED_TOKEN_PROGRAM_ID,
        TOKEN_PROGRAM_ID,
        MPL_TOKEN_METADATA_PROGRAM_ID,
        PUMP_MINT_AUTHORITY,
        PUMP_GLOBAL,
        PUMP_PROGRAM_ID,
        pumpfun.derive_metadata(mint),
        pool.associated_bonding_curve,
        pool.bonding_curve,
        PUMP_EVENT_AUTHORITY,
        SYSTEM_PROGRAM_ID,
        RENT_SYSVAR_ID,
        mint,
        PUMP_FEE_RECIPIENT,
    ]
    for wallet in wallets:
        addresses.append(wallet)
        addresses.append(get_associated_token_address(wallet, mint))
    addresses.extend(
        [
            dev,
            payer,
            get_associated_token_address(dev, mint),
            get_associated_token_address(payer, mint),
            table,
            NATIVE_MINT,
        ]
    )
    return addresses


async def wait_for_table(
    rpc: SolanaRpcClient,
    table: Pubkey,
    policy: RetryPolicy,
    *,
    min_entries: int = 0,
) -> AddressLookupTableAccount:
    """Read the table back until it exists with at least ``min_entries`` addresses.

    Raises ResourceUnavailable once the policy's attempts are spent.
    """

    async def _fetch() -> AddressLookupTableAccount | None:
        account = await rpc.get_address_lookup_table(table)
        if account is None:
            return None
        if len(account.addresses) < min_entries:
            logger.debug(f"[LUT] {table}: {len(account.addresses)}/{min_entries} entries visible")
            return None
        return account

    account = await policy.poll(
        _fetch,
        label=f"Lookup table {table}",
        hint="Check the create/extend bundle landed, then retry",
    )
    logger.info(f"[LUT] {table} visible with {len(account.addresses)} addresses")
    return account
