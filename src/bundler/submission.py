"""Atomic bundle submission and outcome classification.

submit() never retries. A Dropped outcome means no Jito leader was reachable
in time and the caller may rebuild with a fresh blockhash; any other relay
failure is a TransportFailure. Neither outcome says anything about chain
state: the engine re-reads it before deciding what happened.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from loguru import logger

from src.bundler.envelope import Bundle
from src.bundler.errors import SubmissionDropped, TransportError
from src.clients.block_engine import BlockEngineClient
from src.clients.retry import RetryPolicy

DROPPED_MESSAGE = "Bundle Dropped, no connected leader up soon"


@dataclass(frozen=True)
class Accepted:
    bundle_id: str


@dataclass(frozen=True)
class Dropped:
    reason: str


@dataclass(frozen=True)
class TransportFailure:
    detail: str


SubmissionOutcome = Union[Accepted, Dropped, TransportFailure]


def classify_relay_error(error: Exception) -> Dropped | TransportFailure:
    text = str(error)
    if DROPPED_MESSAGE in text:
        return Dropped(reason=text)
    return TransportFailure(detail=text)


def raise_for_outcome(outcome: SubmissionOutcome) -> str:
    """Returns the bundle id for Accepted, raises the matching BundlerError otherwise."""
    if isinstance(outcome, Accepted):
        return outcome.bundle_id
    if isinstance(outcome, Dropped):
        raise SubmissionDropped(f"{outcome.reason}. Rebuild with a fresh blockhash and resubmit.")
    raise TransportError(outcome.detail)


@dataclass(frozen=True)
class BundleResult:
    bundle_id: str
    status: str  # Landed | Failed | Invalid | Pending

    @property
    def landed(self) -> bool:
        return self.status == "Landed"


class SubmissionClient:
    def __init__(self, block_engine: BlockEngineClient) -> None:
        self._block_engine = block_engine

    async def submit(self, bundle: Bundle) -> SubmissionOutcome:
        bundle.validate()
        logger.info(
            f"[JITO] Submitting '{bundle.label}': {len(bundle)} envelopes, "
            f"sizes={[e.size for e in bundle.envelopes]}"
        )
        try:
            bundle_id = await self._block_engine.send_bundle(bundle.encoded())
        except TransportError as e:
            outcome = classify_relay_error(e)
            logger.warning(f"[JITO] '{bundle.label}' {type(outcome).__name__}: {e}")
            return outcome
        except Exception as e:
            # e.g. KeyError on a malformed relay reply
            outcome = classify_relay_error(e)
            logger.opt(exception=e).warning(
                f"[JITO] '{bundle.label}' {type(outcome).__name__} ({type(e).__name__}): {e}"
            )
            return outcome
        return Accepted(bundle_id=bundle_id)

    async def wait_for_result(self, bundle_id: str, policy: RetryPolicy) -> BundleResult:
        """Poll until the relay reports a terminal status (Landed/Failed).

        "Invalid" right after submission usually means the status has not
        propagated yet, so it is polled like Pending. Raises
        ResourceUnavailable when the policy is exhausted.
        """

        async def _fetch() -> BundleResult | None:
            statuses = await self._block_engine.get_inflight_bundle_statuses([bundle_id])
            status = statuses.get(bundle_id)
            if status in ("Landed", "Failed"):
                return BundleResult(bundle_id=bundle_id, status=status)
            logger.debug(f"[JITO] {bundle_id}: {status or 'unknown'}")
            return None

        result = await policy.poll(
            _fetch,
            label=f"Bundle {bundle_id} status",
            hint="Re-read chain state before assuming the bundle did or did not land",
        )
        logger.info(f"[JITO] Bundle {bundle_id}: {result.status}")
        return result
