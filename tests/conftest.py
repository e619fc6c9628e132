"""Shared test fixtures: identities, blockhash and a populated lookup table."""

import random

import pytest
from solders.address_lookup_table_account import AddressLookupTableAccount  # type: ignore[import-untyped]
from solders.hash import Hash  # type: ignore[import-untyped]
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.bundler.lookup_table import launch_table_addresses


@pytest.fixture
def payer() -> Keypair:
    return Keypair()


@pytest.fixture
def dev() -> Keypair:
    return Keypair()


@pytest.fixture
def mint() -> Keypair:
    return Keypair()


@pytest.fixture
def wallets() -> list[Keypair]:
    return [Keypair() for _ in range(24)]


@pytest.fixture
def blockhash() -> Hash:
    return Hash.new_unique()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(7)


@pytest.fixture
def table_address() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def launch_table(
    payer: Keypair, dev: Keypair, mint: Keypair, wallets: list[Keypair], table_address: Pubkey
) -> AddressLookupTableAccount:
    """The table as it looks after a completed extend."""
    addresses = launch_table_addresses(
        mint.pubkey(), [w.pubkey() for w in wallets], dev.pubkey(), payer.pubkey(), table_address
    )
    return AddressLookupTableAccount(key=table_address, addresses=addresses)
