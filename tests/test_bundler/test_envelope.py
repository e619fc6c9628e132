"""Tests for envelope compilation, signing order, tips and bundle assembly."""

from __future__ import annotations

import base64
import random
from unittest.mock import patch

import pytest
from solders.address_lookup_table_account import AddressLookupTableAccount  # type: ignore[import-untyped]
from solders.hash import Hash  # type: ignore[import-untyped]
from solders.instruction import Instruction  # type: ignore[import-untyped]
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.message import to_bytes_versioned  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]
from solders.system_program import TransferParams, transfer  # type: ignore[import-untyped]

from src.bundler.envelope import (
    Bundle,
    EnvelopePlan,
    assemble_bundle,
    compile_envelope,
    pick_tip_account,
    tip_instruction,
)
from src.bundler.errors import SizeLimitExceeded, ValidationError
from src.bundler.limits import MAX_TX_SIZE
from src.clients.block_engine import JITO_TIP_ACCOUNTS
from src.programs import spl_token

TIP = 1_000_000
TIP_ACCOUNTS = {Pubkey.from_string(a) for a in JITO_TIP_ACCOUNTS}


def _sol_transfer(source: Pubkey, dest: Pubkey | None = None, lamports: int = 1_000) -> Instruction:
    return transfer(
        TransferParams(from_pubkey=source, to_pubkey=dest or Pubkey.new_unique(), lamports=lamports)
    )


def _verifies(envelope, keypair: Keypair, index: int) -> bool:
    """Ed25519 is deterministic: re-signing the message must give the same signature."""
    payload = to_bytes_versioned(envelope.transaction.message)
    return envelope.transaction.signatures[index] == keypair.sign_message(payload)


# ── Tips ───────────────────────────────────────────────────────────────


class TestTip:
    def test_tip_account_is_known(self):
        rng = random.Random(1)
        for _ in range(20):
            assert pick_tip_account(rng) in TIP_ACCOUNTS

    def test_tip_account_seeded(self):
        assert pick_tip_account(random.Random(3)) == pick_tip_account(random.Random(3))

    def test_tip_instruction(self, payer: Keypair, rng: random.Random):
        ix = tip_instruction(payer.pubkey(), TIP, rng)
        assert ix.accounts[0].pubkey == payer.pubkey()
        assert ix.accounts[1].pubkey in TIP_ACCOUNTS

    @pytest.mark.parametrize("lamports", [0, -1])
    def test_non_positive_tip_rejected(self, payer: Keypair, lamports: int):
        with pytest.raises(ValidationError, match="Tip must be positive"):
            tip_instruction(payer.pubkey(), lamports)


# ── compile_envelope ───────────────────────────────────────────────────


class TestCompileEnvelope:
    def test_payer_signs_first(self, payer: Keypair, blockhash: Hash):
        env = compile_envelope("t", [_sol_transfer(payer.pubkey())], payer, blockhash)
        assert env.signers == (payer.pubkey(),)
        assert env.transaction.message.account_keys[0] == payer.pubkey()
        assert _verifies(env, payer, 0)
        assert env.signature == str(env.transaction.signatures[0])

    def test_co_signers_slotted_by_message_order(self, payer: Keypair, blockhash: Hash):
        a, b = Keypair(), Keypair()
        # Co-signers passed in the opposite order of their appearance
        instructions = [_sol_transfer(a.pubkey()), _sol_transfer(b.pubkey())]
        env = compile_envelope("t", instructions, payer, blockhash, co_signers=[b, a])

        assert env.signers[0] == payer.pubkey()
        assert set(env.signers) == {payer.pubkey(), a.pubkey(), b.pubkey()}
        by_key = {payer.pubkey(): payer, a.pubkey(): a, b.pubkey(): b}
        for index, key in enumerate(env.signers):
            assert _verifies(env, by_key[key], index)

    def test_duplicate_co_signer_collapses(self, payer: Keypair, blockhash: Hash):
        env = compile_envelope(
            "t", [_sol_transfer(payer.pubkey())], payer, blockhash, co_signers=[payer]
        )
        assert len(env.transaction.signatures) == 1

    def test_missing_signer(self, payer: Keypair, blockhash: Hash):
        owner = Keypair()
        ix = spl_token.transfer(Pubkey.new_unique(), Pubkey.new_unique(), owner.pubkey(), 5)
        with pytest.raises(ValidationError, match=str(owner.pubkey())):
            compile_envelope("t", [ix], payer, blockhash)

    def test_no_instructions(self, payer: Keypair, blockhash: Hash):
        with pytest.raises(ValidationError, match="no instructions"):
            compile_envelope("t", [], payer, blockhash)

    def test_oversize_rejected_before_signing(self, payer: Keypair, blockhash: Hash):
        # 40 distinct recipients without a table cannot fit in one packet
        instructions = [_sol_transfer(payer.pubkey()) for _ in range(40)]
        with pytest.raises(SizeLimitExceeded) as exc:
            compile_envelope("big", instructions, payer, blockhash)
        assert exc.value.measured > MAX_TX_SIZE
        assert "40 instructions, 1 signers" in str(exc.value)

    def test_lookup_table_shrinks_envelope(self, payer: Keypair, blockhash: Hash):
        recipients = [Pubkey.new_unique() for _ in range(20)]
        instructions = [_sol_transfer(payer.pubkey(), r) for r in recipients]
        table = AddressLookupTableAccount(key=Pubkey.new_unique(), addresses=recipients)

        plain = compile_envelope("plain", instructions, payer, blockhash)
        compressed = compile_envelope("lut", instructions, payer, blockhash, lookup_tables=[table])

        assert compressed.size < plain.size
        assert len(compressed.transaction.message.address_table_lookups) == 1

    def test_size_matches_serialized_transaction(self, payer: Keypair, blockhash: Hash):
        env = compile_envelope("t", [_sol_transfer(payer.pubkey())], payer, blockhash)
        assert env.size == len(bytes(env.transaction))


class TestEnvelopeSizeSweep:
    """Random instruction mixes either fit the packet exactly as measured or fail unsigned."""

    @staticmethod
    def _case(rng: random.Random, payer: Keypair):
        cosigners = [Keypair() for _ in range(rng.randint(0, 8))]
        n_ix = rng.randint(1, 45)
        recipients = [Pubkey.new_unique() for _ in range(rng.randint(1, n_ix))]
        signers = [payer, *cosigners]
        instructions = [
            _sol_transfer(signers[i % len(signers)].pubkey(), recipients[i % len(recipients)], 1_000 + i)
            for i in range(n_ix)
        ]
        used = signers[1 : min(len(signers), n_ix)]
        tables = []
        if rng.random() < 0.5:
            tables = [AddressLookupTableAccount(key=Pubkey.new_unique(), addresses=recipients)]
        return instructions, used, tables

    def _compile(self, instructions, payer, blockhash, used, tables):
        with patch("src.bundler.envelope.to_bytes_versioned", wraps=to_bytes_versioned) as signing:
            try:
                env = compile_envelope(
                    "sweep", instructions, payer, blockhash, co_signers=used, lookup_tables=tables
                )
            except SizeLimitExceeded as e:
                assert e.measured > MAX_TX_SIZE
                signing.assert_not_called()
                return None
        assert env.size == len(bytes(env.transaction))
        assert env.size <= MAX_TX_SIZE
        assert _verifies(env, payer, 0)
        return env

    @pytest.mark.parametrize("seed", [3, 17, 2024])
    def test_random_mixes(self, payer: Keypair, blockhash: Hash, seed: int):
        rng = random.Random(seed)
        outcomes = {"fit": 0, "rejected": 0}
        for _ in range(40):
            instructions, used, tables = self._case(rng, payer)
            env = self._compile(instructions, payer, blockhash, used, tables)
            outcomes["fit" if env else "rejected"] += 1
        assert outcomes["fit"] > 0
        assert outcomes["rejected"] > 0

    def test_single_instruction_fits(self, payer: Keypair, blockhash: Hash):
        assert self._compile([_sol_transfer(payer.pubkey())], payer, blockhash, [], []) is not None

    def test_many_distinct_recipients_without_table_rejected(self, payer: Keypair, blockhash: Hash):
        instructions = [_sol_transfer(payer.pubkey()) for _ in range(45)]
        assert self._compile(instructions, payer, blockhash, [], []) is None


# ── assemble_bundle / Bundle ───────────────────────────────────────────


def _plans(payer: Keypair, count: int) -> list[EnvelopePlan]:
    return [
        EnvelopePlan(label=f"p{i}", instructions=[_sol_transfer(payer.pubkey())], compress=False)
        for i in range(count)
    ]


class TestAssembleBundle:
    def test_tip_on_last_envelope_only(self, payer: Keypair, blockhash: Hash, rng: random.Random):
        bundle = assemble_bundle("x", _plans(payer, 3), payer, blockhash, TIP, rng=rng)

        assert len(bundle) == 3
        assert [e.has_tip for e in bundle.envelopes] == [False, False, True]
        assert bundle.tip_count == 1
        last_keys = set(bundle.envelopes[-1].transaction.message.account_keys)
        assert last_keys & TIP_ACCOUNTS
        for env in bundle.envelopes[:-1]:
            assert not set(env.transaction.message.account_keys) & TIP_ACCOUNTS

    def test_labels(self, payer: Keypair, blockhash: Hash):
        bundle = assemble_bundle("x", _plans(payer, 2), payer, blockhash, TIP)
        assert [e.label for e in bundle.envelopes] == ["x/p0#0", "x/p1#1"]

    def test_same_blockhash_everywhere(self, payer: Keypair, blockhash: Hash):
        bundle = assemble_bundle("x", _plans(payer, 2), payer, blockhash, TIP)
        for env in bundle.envelopes:
            assert env.transaction.message.recent_blockhash == blockhash

    def test_six_plans_rejected(self, payer: Keypair, blockhash: Hash):
        with pytest.raises(SizeLimitExceeded, match="relay limit"):
            assemble_bundle("x", _plans(payer, 6), payer, blockhash, TIP)

    def test_empty_plans_rejected(self, payer: Keypair, blockhash: Hash):
        with pytest.raises(ValidationError, match="nothing to send"):
            assemble_bundle("x", [], payer, blockhash, TIP)

    def test_encoded_is_base64_per_envelope(self, payer: Keypair, blockhash: Hash):
        bundle = assemble_bundle("x", _plans(payer, 2), payer, blockhash, TIP)
        encoded = bundle.encoded()
        assert len(encoded) == 2
        assert base64.b64decode(encoded[0]) == bytes(bundle.envelopes[0].transaction)
        assert bundle.signatures == [e.signature for e in bundle.envelopes]


class TestBundleValidate:
    def _envelope(self, payer: Keypair, blockhash: Hash, has_tip: bool):
        return compile_envelope(
            "e", [_sol_transfer(payer.pubkey())], payer, blockhash, has_tip=has_tip
        )

    def test_tip_not_last(self, payer: Keypair, blockhash: Hash):
        bundle = Bundle(
            label="bad",
            envelopes=[self._envelope(payer, blockhash, True), self._envelope(payer, blockhash, False)],
        )
        with pytest.raises(ValidationError, match="exactly one tip"):
            bundle.validate()

    def test_two_tips(self, payer: Keypair, blockhash: Hash):
        bundle = Bundle(
            label="bad",
            envelopes=[self._envelope(payer, blockhash, True), self._envelope(payer, blockhash, True)],
        )
        with pytest.raises(ValidationError, match="found 2"):
            bundle.validate()

    def test_empty_bundle(self):
        with pytest.raises(SizeLimitExceeded):
            Bundle(label="empty").validate()
