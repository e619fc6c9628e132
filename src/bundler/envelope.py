"""Transaction envelopes and bundles: compile, measure, sign.

An envelope is measured with placeholder signatures before any real
signature is produced, so an oversized envelope is rejected before signing.
Signing happens once over the compiled message: fee payer first, then each
co-signer, and signatures are slotted into the order the message header
requires.
"""

from __future__ import annotations

import base64
import random
from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger
from solders.address_lookup_table_account import AddressLookupTableAccount  # type: ignore[import-untyped]
from solders.hash import Hash  # type: ignore[import-untyped]
from solders.instruction import Instruction  # type: ignore[import-untyped]
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.message import MessageV0, to_bytes_versioned  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]
from solders.signature import Signature  # type: ignore[import-untyped]
from solders.system_program import TransferParams, transfer  # type: ignore[import-untyped]
from solders.transaction import VersionedTransaction  # type: ignore[import-untyped]

from src.bundler.errors import ValidationError
from src.bundler.limits import check_bundle_size, check_envelope_size
from src.clients.block_engine import JITO_TIP_ACCOUNTS


@dataclass(frozen=True)
class Envelope:
    """One signed, size-checked transaction."""

    label: str
    transaction: VersionedTransaction
    signers: tuple[Pubkey, ...]
    size: int
    has_tip: bool = False

    @property
    def signature(self) -> str:
        return str(self.transaction.signatures[0])

    def to_base64(self) -> str:
        return base64.b64encode(bytes(self.transaction)).decode("ascii")


@dataclass
class Bundle:
    """Ordered envelopes submitted as one all-or-nothing unit."""

    label: str
    envelopes: list[Envelope] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.envelopes)

    @property
    def signatures(self) -> list[str]:
        return [e.signature for e in self.envelopes]

    @property
    def tip_count(self) -> int:
        return sum(1 for e in self.envelopes if e.has_tip)

    def encoded(self) -> list[str]:
        return [e.to_base64() for e in self.envelopes]

    def validate(self) -> None:
        """Bundle-level invariants: relay size limit, one tip, tip on the last envelope."""
        check_bundle_size(len(self.envelopes), self.label)
        if self.tip_count != 1 or not self.envelopes[-1].has_tip:
            raise ValidationError(
                f"Bundle '{self.label}' must carry exactly one tip, on its last envelope "
                f"(found {self.tip_count})"
            )


def pick_tip_account(rng: random.Random | None = None) -> Pubkey:
    """Uniformly random Jito tip account."""
    chooser = rng or random
    return Pubkey.from_string(chooser.choice(JITO_TIP_ACCOUNTS))


def tip_instruction(payer: Pubkey, lamports: int, rng: random.Random | None = None) -> Instruction:
    if lamports <= 0:
        raise ValidationError(f"Tip must be positive, got {lamports} lamports")
    return transfer(
        TransferParams(from_pubkey=payer, to_pubkey=pick_tip_account(rng), lamports=lamports)
    )


def measure(message: MessageV0) -> int:
    """Serialized size of the transaction once every required signature is present."""
    placeholder = [Signature.default()] * message.header.num_required_signatures
    return len(bytes(VersionedTransaction.populate(message, placeholder)))


def compile_envelope(
    label: str,
    instructions: Sequence[Instruction],
    payer: Keypair,
    blockhash: Hash,
    *,
    co_signers: Sequence[Keypair] = (),
    lookup_tables: Sequence[AddressLookupTableAccount] = (),
    has_tip: bool = False,
) -> Envelope:
    """Compile, measure and sign one envelope.

    Raises SizeLimitExceeded (before signing) when the envelope exceeds the
    packet ceiling, ValidationError when a required signer is missing.
    """
    if not instructions:
        raise ValidationError(f"Envelope '{label}' has no instructions")

    message = MessageV0.try_compile(
        payer=payer.pubkey(),
        instructions=list(instructions),
        address_lookup_table_accounts=list(lookup_tables),
        recent_blockhash=blockhash,
    )

    size = measure(message)
    check_envelope_size(
        size, label, detail=f"{len(instructions)} instructions, {len(co_signers) + 1} signers"
    )

    # Payer first, then co-signers in the order given; duplicates collapse.
    ordered: dict[Pubkey, Keypair] = {payer.pubkey(): payer}
    for kp in co_signers:
        ordered.setdefault(kp.pubkey(), kp)

    required = list(message.account_keys[: message.header.num_required_signatures])
    missing = [str(k) for k in required if k not in ordered]
    if missing:
        raise ValidationError(f"Envelope '{label}' is missing signers: {', '.join(missing)}")

    payload = to_bytes_versioned(message)
    signatures = {pk: kp.sign_message(payload) for pk, kp in ordered.items() if pk in required}
    tx = VersionedTransaction.populate(message, [signatures[k] for k in required])

    logger.debug(
        f"[BUNDLE] {label}: {len(instructions)} ix, {size} bytes, "
        f"{len(required)} signers, {len(lookup_tables)} LUTs{', tip' if has_tip else ''}"
    )
    return Envelope(
        label=label,
        transaction=tx,
        signers=tuple(required),
        size=size,
        has_tip=has_tip,
    )


@dataclass
class EnvelopePlan:
    """Instructions and co-signers for one envelope, before compilation."""

    label: str
    instructions: list[Instruction] = field(default_factory=list)
    co_signers: list[Keypair] = field(default_factory=list)
    compress: bool = True  # compile against the lookup tables


def assemble_bundle(
    label: str,
    plans: Sequence[EnvelopePlan],
    payer: Keypair,
    blockhash: Hash,
    tip_lamports: int,
    *,
    lookup_tables: Sequence[AddressLookupTableAccount] = (),
    rng: random.Random | None = None,
) -> Bundle:
    """Compile plans in order into one bundle, the tip going on the last envelope.

    The bundle-size limit is checked before anything is compiled.
    """
    if not plans:
        raise ValidationError(f"Bundle '{label}' has nothing to send")
    check_bundle_size(len(plans), label)

    tip = tip_instruction(payer.pubkey(), tip_lamports, rng)
    last = len(plans) - 1
    envelopes = []
    for index, plan in enumerate(plans):
        instructions = list(plan.instructions)
        if index == last:
            instructions.append(tip)
        envelopes.append(
            compile_envelope(
                f"{label}/{plan.label}#{index}",
                instructions,
                payer,
                blockhash,
                co_signers=plan.co_signers,
                lookup_tables=lookup_tables if plan.compress else (),
                has_tip=index == last,
            )
        )

    bundle = Bundle(label=label, envelopes=envelopes)
    bundle.validate()
    logger.info(
        f"[BUNDLE] '{label}' built: {len(envelopes)} envelopes, "
        f"{sum(e.size for e in envelopes)} bytes total"
    )
    return bundle
