"""Tests for lookup table create/extend bundles, launch addresses and read-back polling."""

from __future__ import annotations

import random
import struct
from unittest.mock import AsyncMock, patch

import pytest
from solders.address_lookup_table_account import AddressLookupTableAccount  # type: ignore[import-untyped]
from solders.hash import Hash  # type: ignore[import-untyped]
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.bundler.errors import ResourceUnavailable, SizeLimitExceeded, TransportError
from src.bundler.lookup_table import (
    build_create_table_bundle,
    build_extend_bundle,
    launch_table_addresses,
    plan_extension,
    wait_for_table,
)
from src.bundler.requests import CreateTableRequest, ExtendTableRequest
from src.bundler.limits import MAX_TX_SIZE
from src.clients.retry import RetryPolicy
from src.programs import pumpfun
from src.programs.address_lookup_table import derive_lookup_table_address
from src.programs.constants import ADDRESS_LOOKUP_TABLE_PROGRAM_ID, NATIVE_MINT
from src.programs.spl_token import get_associated_token_address

TIP = 1_000_000


def _addresses(n: int) -> list[Pubkey]:
    return [Pubkey.new_unique() for _ in range(n)]


def _extended_counts(bundle) -> list[int]:
    """Number of addresses carried by each extend envelope (from its instruction data)."""
    counts = []
    for env in bundle.envelopes:
        message = env.transaction.message
        for ix in message.instructions:
            if message.account_keys[ix.program_id_index] == ADDRESS_LOOKUP_TABLE_PROGRAM_ID:
                _tag, count = struct.unpack_from("<IQ", bytes(ix.data))
                counts.append(count)
    return counts


# ── Create ─────────────────────────────────────────────────────────────


class TestCreateTableBundle:
    def test_single_tipped_envelope(self, payer: Keypair, blockhash: Hash, rng: random.Random):
        bundle, table = build_create_table_bundle(
            CreateTableRequest(payer=payer, recent_slot=250_000_000, blockhash=blockhash, tip_lamports=TIP),
            rng=rng,
        )
        assert len(bundle) == 1
        assert bundle.envelopes[0].has_tip
        assert bundle.label == "create-lut"
        assert table == derive_lookup_table_address(payer.pubkey(), 250_000_000)[0]

    def test_table_depends_on_slot(self, payer: Keypair, blockhash: Hash):
        _, t1 = build_create_table_bundle(CreateTableRequest(payer, 1, blockhash, TIP))
        _, t2 = build_create_table_bundle(CreateTableRequest(payer, 2, blockhash, TIP))
        assert t1 != t2


# ── Extend ─────────────────────────────────────────────────────────────


class TestPlanExtension:
    def test_dedupes_and_keeps_order(self):
        a, b, c = _addresses(3)
        assert plan_extension([], [a, b, a, c, b]) == [a, b, c]

    def test_skips_existing(self):
        a, b, c = _addresses(3)
        assert plan_extension([a, c], [a, b, c]) == [b]

    def test_capacity(self):
        with pytest.raises(SizeLimitExceeded):
            plan_extension(_addresses(250), _addresses(7))


class TestExtendBundle:
    def _request(self, payer: Keypair, blockhash: Hash, addresses, existing=()):
        return ExtendTableRequest(
            payer=payer,
            table=Pubkey.new_unique(),
            addresses=addresses,
            blockhash=blockhash,
            tip_lamports=TIP,
            existing=existing,
        )

    def test_140_addresses_five_envelopes(self, payer: Keypair, blockhash: Hash, rng: random.Random):
        bundle = build_extend_bundle(self._request(payer, blockhash, _addresses(140)), rng=rng)

        assert len(bundle) == 5
        assert _extended_counts(bundle) == [30, 30, 30, 30, 20]
        assert [e.has_tip for e in bundle.envelopes] == [False] * 4 + [True]
        assert all(e.size <= MAX_TX_SIZE for e in bundle.envelopes)
        assert [e.label for e in bundle.envelopes][0] == "extend-lut/extend[0]#0"

    def test_full_tail_chunk_split_for_tip(self, payer: Keypair, blockhash: Hash):
        bundle = build_extend_bundle(self._request(payer, blockhash, _addresses(120)))
        assert _extended_counts(bundle) == [30, 30, 30, 28, 2]
        assert all(e.size <= MAX_TX_SIZE for e in bundle.envelopes)

    def test_tail_of_exactly_28_not_split(self, payer: Keypair, blockhash: Hash):
        bundle = build_extend_bundle(self._request(payer, blockhash, _addresses(58)))
        assert _extended_counts(bundle) == [30, 28]

    def test_extend_envelopes_are_uncompressed(self, payer: Keypair, blockhash: Hash):
        bundle = build_extend_bundle(self._request(payer, blockhash, _addresses(40)))
        for env in bundle.envelopes:
            assert list(env.transaction.message.address_table_lookups) == []

    def test_only_missing_addresses_extended(self, payer: Keypair, blockhash: Hash):
        present = _addresses(20)
        bundle = build_extend_bundle(
            self._request(payer, blockhash, present + _addresses(10), existing=present)
        )
        assert _extended_counts(bundle) == [10]

    def test_nothing_to_add_is_empty(self, payer: Keypair, blockhash: Hash):
        present = _addresses(12)
        bundle = build_extend_bundle(self._request(payer, blockhash, present, existing=present))
        assert len(bundle) == 0
        assert bundle.label == "extend-lut"

    def test_too_many_for_one_bundle(self, payer: Keypair, blockhash: Hash):
        # 6 chunks exceed the relay limit
        with pytest.raises(SizeLimitExceeded):
            build_extend_bundle(self._request(payer, blockhash, _addresses(170)))


# ── launch_table_addresses ─────────────────────────────────────────────


class TestLaunchTableAddresses:
    def test_contents(self, payer: Keypair, dev: Keypair, mint: Keypair):
        wallets = _addresses(3)
        table = Pubkey.new_unique()
        addresses = launch_table_addresses(mint.pubkey(), wallets, dev.pubkey(), payer.pubkey(), table)

        pool = pumpfun.PumpCurvePool.for_mint(mint.pubkey())
        assert len(addresses) == 14 + 2 * 3 + 6
        assert len(set(addresses)) == len(addresses)
        for key in (pool.bonding_curve, pool.associated_bonding_curve, mint.pubkey(), NATIVE_MINT, table):
            assert key in addresses
        for wallet in wallets:
            ata = get_associated_token_address(wallet, mint.pubkey())
            assert addresses.index(ata) == addresses.index(wallet) + 1
        assert get_associated_token_address(payer.pubkey(), mint.pubkey()) in addresses

    def test_fits_one_extend_bundle(
        self, payer: Keypair, dev: Keypair, mint: Keypair, wallets: list[Keypair], blockhash: Hash
    ):
        table = Pubkey.new_unique()
        addresses = launch_table_addresses(
            mint.pubkey(), [w.pubkey() for w in wallets], dev.pubkey(), payer.pubkey(), table
        )
        bundle = build_extend_bundle(
            ExtendTableRequest(payer, table, addresses, blockhash, TIP)
        )
        assert sum(_extended_counts(bundle)) == len(addresses)


# ── wait_for_table ─────────────────────────────────────────────────────


class TestWaitForTable:
    async def test_returns_once_visible(self):
        table = Pubkey.new_unique()
        account = AddressLookupTableAccount(key=table, addresses=_addresses(3))
        rpc = AsyncMock()
        rpc.get_address_lookup_table = AsyncMock(side_effect=[None, None, account])

        with patch("src.clients.retry.asyncio.sleep", new_callable=AsyncMock):
            result = await wait_for_table(rpc, table, RetryPolicy(max_attempts=5))

        assert result is account
        assert rpc.get_address_lookup_table.await_count == 3

    async def test_waits_for_min_entries(self):
        table = Pubkey.new_unique()
        partial = AddressLookupTableAccount(key=table, addresses=_addresses(2))
        full = AddressLookupTableAccount(key=table, addresses=_addresses(5))
        rpc = AsyncMock()
        rpc.get_address_lookup_table = AsyncMock(side_effect=[partial, full])

        with patch("src.clients.retry.asyncio.sleep", new_callable=AsyncMock):
            result = await wait_for_table(rpc, table, RetryPolicy(max_attempts=5), min_entries=5)

        assert result is full

    async def test_transport_errors_count_as_attempts(self):
        table = Pubkey.new_unique()
        rpc = AsyncMock()
        rpc.get_address_lookup_table = AsyncMock(side_effect=TransportError("boom"))

        with patch("src.clients.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ResourceUnavailable, match="3 attempts"):
                await wait_for_table(rpc, table, RetryPolicy(max_attempts=3))

        assert rpc.get_address_lookup_table.await_count == 3
