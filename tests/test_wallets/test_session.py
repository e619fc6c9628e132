"""Tests for the session document format and its atomic file store."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.bundler.curve import Allocation
from src.bundler.errors import ValidationError
from src.wallets.session import SessionDocument, SessionStore, WalletAllocation


# ── Fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def store(tmp_path: Path) -> SessionStore:
    return SessionStore(tmp_path / "keyInfo.json")


def _sample(mint: Keypair, wallet: Pubkey) -> dict:
    return {
        "addressLUT": str(Pubkey.new_unique()),
        "mint": str(mint.pubkey()),
        "mintPk": str(mint),
        str(wallet): {"solAmount": "1.50", "tokenAmount": "34612903225806", "percentSupply": 3.46},
        "numOfWallets": 24,
        "notes": {"launched": False},
    }


# ── WalletAllocation ───────────────────────────────────────────────────


class TestWalletAllocation:
    def test_strings_kept_verbatim(self):
        entry = WalletAllocation.model_validate({"solAmount": "1.50", "tokenAmount": "007"})
        assert entry.sol_amount == "1.50"
        assert entry.model_dump(by_alias=True)["tokenAmount"] == "007"
        assert entry.sol_lamports == 1_500_000_000
        assert entry.tokens == 7

    def test_numbers_coerced_to_strings(self):
        entry = WalletAllocation.model_validate({"solAmount": 1.5, "tokenAmount": 34612903225806})
        assert entry.sol_amount == "1.5"
        assert entry.token_amount == "34612903225806"

    def test_bad_token_amount(self):
        entry = WalletAllocation.model_validate({"solAmount": "1", "tokenAmount": "12.5"})
        with pytest.raises(ValidationError, match="tokenAmount"):
            _ = entry.tokens

    def test_allocation_conversion(self):
        pubkey = Pubkey.new_unique()
        allocation = Allocation(pubkey, 1_210_000_000, 40_000_000_000_000, 4.0)
        entry = WalletAllocation.from_allocation(allocation)

        assert entry.sol_amount == "1.21"
        assert entry.to_allocation(pubkey) == allocation


# ── SessionDocument ────────────────────────────────────────────────────


class TestSessionDocument:
    def test_split_and_rejoin(self):
        mint, wallet = Keypair(), Pubkey.new_unique()
        data = _sample(mint, wallet)

        document = SessionDocument.from_json_dict(data)

        assert list(document.allocations) == [str(wallet)]
        assert document.extra == {"numOfWallets": 24, "notes": {"launched": False}}
        assert document.to_json_dict() == data

    def test_typed_accessors(self):
        mint, wallet = Keypair(), Pubkey.new_unique()
        document = SessionDocument.from_json_dict(_sample(mint, wallet))

        assert document.mint_keypair().pubkey() == mint.pubkey()
        assert document.mint_pubkey() == mint.pubkey()
        assert document.allocation_for(wallet).token_output == 34_612_903_225_806
        assert document.allocation_for(Pubkey.new_unique()) is None

    def test_mint_mismatch(self):
        mint = Keypair()
        document = SessionDocument(mint=str(Pubkey.new_unique()), mint_pk=str(mint))
        with pytest.raises(ValidationError, match="does not match"):
            document.mint_keypair()

    def test_missing_fields(self):
        document = SessionDocument()
        with pytest.raises(ValidationError, match="addressLUT"):
            document.lookup_table()
        with pytest.raises(ValidationError, match="mint keypair"):
            document.mint_keypair()

    def test_set_allocations_merges(self):
        a, b = Pubkey.new_unique(), Pubkey.new_unique()
        document = SessionDocument()
        document.set_allocations([Allocation(a, 1, 10, 0.1), Allocation(b, 2, 20, 0.2)])
        document.set_allocations([Allocation(a, 3, 30, 0.3)])

        assert document.allocation_for(a).sol_input == 3
        assert document.allocation_for(b).sol_input == 2


# ── SessionStore ───────────────────────────────────────────────────────


class TestSessionStore:
    def test_missing_file_is_empty(self, store: SessionStore):
        document = store.load()
        assert document.address_lut is None
        assert document.allocations == {}

    def test_save_and_load(self, store: SessionStore):
        mint, wallet = Keypair(), Pubkey.new_unique()
        store.path.write_text(json.dumps(_sample(mint, wallet)), encoding="utf-8")

        document = store.load()
        document.address_lut = str(Pubkey.new_unique())
        store.save(document)

        on_disk = json.loads(store.path.read_text(encoding="utf-8"))
        assert on_disk["addressLUT"] == document.address_lut
        assert on_disk[str(wallet)]["solAmount"] == "1.50"
        assert on_disk["numOfWallets"] == 24

    def test_no_temp_files_left(self, store: SessionStore):
        store.save(SessionDocument(address_lut=str(Pubkey.new_unique())))
        assert [p.name for p in store.path.parent.iterdir()] == ["keyInfo.json"]

    def test_failed_save_keeps_previous_file(self, store: SessionStore):
        store.save(SessionDocument(address_lut="first"))

        with patch("src.wallets.session.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.save(SessionDocument(address_lut="second"))

        assert store.load().address_lut == "first"
        assert [p.name for p in store.path.parent.iterdir()] == ["keyInfo.json"]

    def test_invalid_json(self, store: SessionStore):
        store.path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ValidationError, match="not valid JSON"):
            store.load()

    def test_not_an_object(self, store: SessionStore):
        store.path.write_text("[]", encoding="utf-8")
        with pytest.raises(ValidationError, match="JSON object"):
            store.load()

    def test_malformed_allocation(self, store: SessionStore):
        wallet = str(Pubkey.new_unique())
        store.path.write_text(json.dumps({wallet: {"solAmount": "1"}}), encoding="utf-8")
        with pytest.raises(ValidationError, match="keyInfo.json"):
            store.load()

    def test_only_mint_secret_persisted(self, store: SessionStore):
        payer, mint = Keypair(), Keypair()
        document = SessionDocument(address_lut=str(Pubkey.new_unique()))
        document.set_mint(mint)
        document.set_allocations([Allocation(payer.pubkey(), 1, 1, 0.0)])
        store.save(document)

        text = store.path.read_text(encoding="utf-8")
        assert str(payer) not in text
        assert str(mint) in text
