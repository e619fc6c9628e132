"""Session actions: read chain state, build, submit, persist.

One action runs at a time. Network reads happen up front (per-wallet reads
fan out with asyncio.gather and join before anything is built); building and
signing are synchronous; submission is the last step. The session file is
written only after the relay accepted the bundle, and chain state is read
back rather than assumed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from loguru import logger
from solders.address_lookup_table_account import AddressLookupTableAccount  # type: ignore[import-untyped]
from solders.keypair import Keypair  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.bundler import builder, lookup_table
from src.bundler.curve import TOTAL_SUPPLY, SimulationResult, parse_sol_amount, simulate_buys
from src.bundler.envelope import Bundle
from src.bundler.errors import ResourceUnavailable, ValidationError
from src.bundler.limits import check_wallet_count
from src.bundler.requests import (
    CreateTableRequest,
    ExtendTableRequest,
    FundRequest,
    LaunchRequest,
    ReclaimRequest,
    SellRequest,
    SupplyBasis,
    TokenMetadata,
)
from src.bundler.submission import Accepted, BundleResult, SubmissionClient, SubmissionOutcome
from src.clients.block_engine import BlockEngineClient
from src.clients.retry import RetryPolicy
from src.clients.solana_rpc import SolanaRpcClient
from src.programs.constants import LAMPORTS_PER_SOL
from src.programs.pools import PoolKeys
from src.programs.pumpfun import PumpCurvePool, decode_bonding_curve
from src.programs.raydium import decode_market, derive_pool_keys
from src.programs.spl_token import get_associated_token_address
from src.wallets.keystore import Identity, KeypairStore, keypair_from_secret
from src.wallets.session import SessionDocument, SessionStore

if TYPE_CHECKING:
    from config.settings import Settings

# Dev SOL input is scaled up before simulating: the dev buy lands in the
# create envelope and is sized with headroom over the entered amount.
DEV_SOL_MULTIPLIER = Decimal("1.21")


@dataclass(frozen=True)
class EngineConfig:
    tip_lamports: int = LAMPORTS_PER_SOL // 100
    slippage_bps: int = 1500
    min_sol_output: int = 0
    lut_policy: RetryPolicy = field(default_factory=lambda: RetryPolicy(max_attempts=20, backoff=1.0))
    bundle_policy: RetryPolicy = field(default_factory=lambda: RetryPolicy(max_attempts=30, backoff=2.0))
    wait_for_landing: bool = False


@dataclass
class ActionResult:
    """What an action did. ``outcome`` is None when there was nothing to submit."""

    action: str
    outcome: SubmissionOutcome | None
    bundle: Bundle | None = None
    landed: BundleResult | None = None
    details: dict = field(default_factory=dict)

    @property
    def accepted(self) -> bool:
        return isinstance(self.outcome, Accepted)


class BundlerEngine:
    def __init__(
        self,
        *,
        rpc: SolanaRpcClient,
        submission: SubmissionClient,
        sessions: SessionStore,
        wallets: Sequence[Identity],
        payer: Identity | None,
        dev: Identity,
        config: EngineConfig | None = None,
    ) -> None:
        self._rpc = rpc
        self._submission = submission
        self._sessions = sessions
        self._wallets = list(wallets)
        self._payer = payer
        self._dev = dev
        self._config = config or EngineConfig()

    @classmethod
    def from_settings(
        cls, settings: Settings, *, wait_for_landing: bool = False, require_payer: bool = True
    ) -> tuple[BundlerEngine, list[SolanaRpcClient | BlockEngineClient]]:
        """Wire the engine from Settings. Returns (engine, clients to close).

        Secrets and keypair files are read before any HTTP client exists, so a
        bad key leaves nothing open. ``require_payer=False`` skips the payer
        key (simulation never signs).
        """
        wallets = KeypairStore(settings.keypairs_dir).load_identities()
        dev = Identity("dev", keypair_from_secret(settings.dev_private_key, "DEV_PRIVATE_KEY"))
        payer = None
        if require_payer:
            payer = Identity(
                "payer", keypair_from_secret(settings.payer_private_key, "PAYER_PRIVATE_KEY")
            )
        config = EngineConfig(
            tip_lamports=int(Decimal(str(settings.tip_sol)) * LAMPORTS_PER_SOL),
            slippage_bps=settings.buy_slippage_bps,
            min_sol_output=settings.sell_min_sol_output,
            lut_policy=RetryPolicy(
                max_attempts=settings.lut_poll_attempts, backoff=settings.lut_poll_backoff_sec
            ),
            bundle_policy=RetryPolicy(
                max_attempts=settings.bundle_poll_attempts, backoff=settings.bundle_poll_backoff_sec
            ),
            wait_for_landing=wait_for_landing,
        )

        rpc = SolanaRpcClient(
            settings.rpc_url, max_rps=settings.rpc_max_rps, commitment=settings.rpc_commitment
        )
        block_engine = BlockEngineClient(settings.block_engine_url)
        engine = cls(
            rpc=rpc,
            submission=SubmissionClient(block_engine),
            sessions=SessionStore(settings.session_file),
            wallets=wallets,
            payer=payer,
            dev=dev,
            config=config,
        )
        return engine, [rpc, block_engine]

    @property
    def payer(self) -> Identity:
        if self._payer is None:
            raise ValidationError("PAYER_PRIVATE_KEY is not loaded; only simulate runs without a payer")
        return self._payer

    @property
    def wallet_keypairs(self) -> list[Keypair]:
        return [w.keypair for w in self._wallets]

    def _tip(self, tip_lamports: int | None) -> int:
        return self._config.tip_lamports if tip_lamports is None else tip_lamports

    # ─── Shared steps ────────────────────────────────────────────────

    async def _submit(self, action: str, bundle: Bundle) -> ActionResult:
        outcome = await self._submission.submit(bundle)
        result = ActionResult(action=action, outcome=outcome, bundle=bundle)
        if isinstance(outcome, Accepted) and self._config.wait_for_landing:
            result.landed = await self._submission.wait_for_result(
                outcome.bundle_id, self._config.bundle_policy
            )
        return result

    async def _table(self, document: SessionDocument) -> AddressLookupTableAccount:
        return await lookup_table.wait_for_table(
            self._rpc, document.lookup_table(), self._config.lut_policy, min_entries=1
        )

    async def _log_table_state(self, table: Pubkey) -> None:
        """After a failed submission, report what the chain actually holds."""
        account = await self._rpc.get_address_lookup_table(table)
        if account is None:
            logger.warning(f"[LUT] {table} not on chain")
        else:
            logger.warning(f"[LUT] {table} on chain with {len(account.addresses)} addresses")

    # ─── Lookup table ────────────────────────────────────────────────

    async def create_lookup_table(self, tip_lamports: int | None = None) -> ActionResult:
        slot, blockhash = await asyncio.gather(
            self._rpc.get_slot("finalized"), self._rpc.get_latest_blockhash()
        )
        bundle, table = lookup_table.build_create_table_bundle(
            CreateTableRequest(
                payer=self.payer.keypair,
                recent_slot=slot,
                blockhash=blockhash,
                tip_lamports=self._tip(tip_lamports),
            )
        )
        result = await self._submit("create-lut", bundle)
        result.details["table"] = str(table)
        if not result.accepted:
            return result

        document = self._sessions.load()
        if document.address_lut and document.address_lut != str(table):
            logger.warning(f"[SESSION] Replacing lookup table {document.address_lut} with {table}")
        document.address_lut = str(table)
        self._sessions.save(document)

        await lookup_table.wait_for_table(self._rpc, table, self._config.lut_policy)
        return result

    async def extend_lookup_table(
        self, tip_lamports: int | None = None, mint_secret: str | None = None
    ) -> ActionResult:
        """Add every launch account to the table, generating the mint if needed.

        ``mint_secret`` imports a vanity mint instead of generating one; it
        is refused when the session already has a different mint.
        """
        document = self._sessions.load()
        table = document.lookup_table()

        if document.mint_pk:
            mint = document.mint_keypair()
            imported = keypair_from_secret(mint_secret, "mint") if mint_secret else None
            if imported is not None and imported.pubkey() != mint.pubkey():
                raise ValidationError(f"Session already has mint {mint.pubkey()}; refusing to replace it")
        elif mint_secret:
            mint = keypair_from_secret(mint_secret, "mint")
        else:
            mint = Keypair()
        logger.info(f"[LUT] Mint for this session: {mint.pubkey()}")

        account, blockhash = await asyncio.gather(
            lookup_table.wait_for_table(self._rpc, table, self._config.lut_policy),
            self._rpc.get_latest_blockhash(),
        )
        addresses = lookup_table.launch_table_addresses(
            mint.pubkey(),
            [w.pubkey for w in self._wallets],
            self._dev.pubkey,
            self.payer.pubkey,
            table,
        )
        bundle = lookup_table.build_extend_bundle(
            ExtendTableRequest(
                payer=self.payer.keypair,
                table=table,
                addresses=addresses,
                blockhash=blockhash,
                tip_lamports=self._tip(tip_lamports),
                existing=list(account.addresses),
            )
        )
        if not bundle.envelopes:
            return ActionResult(action="extend-lut", outcome=None, details={"table": str(table)})

        result = await self._submit("extend-lut", bundle)
        result.details["table"] = str(table)
        if not result.accepted:
            await self._log_table_state(table)
            return result

        document.set_mint(mint)
        self._sessions.save(document)

        expected = len(set(account.addresses) | set(addresses))
        await lookup_table.wait_for_table(
            self._rpc, table, self._config.lut_policy, min_entries=expected
        )
        return result

    # ─── Simulation ──────────────────────────────────────────────────

    def simulate(self, dev_sol: str, wallet_sols: Sequence[str]) -> SimulationResult:
        """Dev first (with headroom), then wallets in keystore order."""
        check_wallet_count(len(self._wallets))
        if len(wallet_sols) > len(self._wallets):
            raise ValidationError(
                f"{len(wallet_sols)} SOL amounts for {len(self._wallets)} wallets"
            )
        dev_lamports = int(parse_sol_amount(dev_sol) * DEV_SOL_MULTIPLIER)
        inputs = [(self._dev.pubkey, dev_lamports)]
        inputs.extend(
            (wallet.pubkey, parse_sol_amount(raw)) for wallet, raw in zip(self._wallets, wallet_sols)
        )
        return simulate_buys(inputs)

    def save_simulation(self, result: SimulationResult) -> None:
        document = self._sessions.load()
        document.set_allocations(result.allocations)
        self._sessions.save(document)

    # ─── Fund / launch / sell / reclaim ──────────────────────────────

    async def fund(self, tip_lamports: int | None = None) -> ActionResult:
        check_wallet_count(len(self._wallets))
        document = self._sessions.load()
        amounts: dict[Pubkey, int] = {}
        for identity in [self._dev, *self._wallets]:
            allocation = document.allocation_for(identity.pubkey)
            if allocation is None:
                logger.warning(f"[BUNDLE] No allocation for {identity}, not funding")
                continue
            amounts[identity.pubkey] = allocation.sol_input

        table, blockhash = await asyncio.gather(self._table(document), self._rpc.get_latest_blockhash())
        bundle = builder.build_fund_bundle(
            FundRequest(
                payer=self.payer.keypair,
                amounts=amounts,
                lookup_table=table,
                blockhash=blockhash,
                tip_lamports=self._tip(tip_lamports),
            )
        )
        return await self._submit("fund", bundle)

    async def launch(self, metadata: TokenMetadata, tip_lamports: int | None = None) -> ActionResult:
        check_wallet_count(len(self._wallets))
        document = self._sessions.load()
        mint = document.mint_keypair()
        dev_allocation = document.allocation_for(self._dev.pubkey)
        if dev_allocation is None:
            raise ValidationError("No dev allocation in the session; run the simulation first")

        existing = await self._rpc.get_account(PumpCurvePool.for_mint(mint.pubkey()).bonding_curve)
        if existing is not None:
            raise ValidationError(f"Mint {mint.pubkey()} already has a bonding curve; it was launched")

        allocations = {}
        for wallet in self._wallets:
            allocation = document.allocation_for(wallet.pubkey)
            if allocation is not None:
                allocations[wallet.pubkey] = allocation

        table, blockhash = await asyncio.gather(self._table(document), self._rpc.get_latest_blockhash())
        bundle = builder.build_launch_bundle(
            LaunchRequest(
                payer=self.payer.keypair,
                dev=self._dev.keypair,
                mint=mint,
                metadata=metadata,
                dev_allocation=dev_allocation,
                wallets=self.wallet_keypairs,
                allocations=allocations,
                lookup_table=table,
                blockhash=blockhash,
                tip_lamports=self._tip(tip_lamports),
                slippage_bps=self._config.slippage_bps,
            )
        )
        result = await self._submit("launch", bundle)
        result.details["mint"] = str(mint.pubkey())
        return result

    async def resolve_pool(self, mint: Pubkey, market_id: Pubkey | None = None) -> PoolKeys:
        """Bonding curve by default; a Raydium AMM v4 pool when given its OpenBook market."""
        if market_id is None:
            pool = PumpCurvePool.for_mint(mint)
            raw = await self._rpc.get_account(pool.bonding_curve)
            curve = decode_bonding_curve(raw) if raw is not None else None
            if curve is None:
                raise ResourceUnavailable(f"No bonding curve for {mint}; was the token launched?")
            if curve.complete:
                raise ValidationError(
                    f"Bonding curve for {mint} is complete; sell through its Raydium market instead"
                )
            return pool

        raw = await self._rpc.get_account(market_id)
        market = decode_market(raw) if raw is not None else None
        if market is None:
            raise ResourceUnavailable(f"OpenBook market {market_id} not found or malformed")
        pool = derive_pool_keys(market_id, market)
        if mint not in (pool.base_mint, pool.quote_mint):
            raise ValidationError(f"Market {market_id} does not trade {mint}")
        return pool

    async def sell(
        self,
        percent: Decimal,
        *,
        supply_basis: SupplyBasis = SupplyBasis.LIVE,
        market_id: Pubkey | None = None,
        tip_lamports: int | None = None,
    ) -> ActionResult:
        check_wallet_count(len(self._wallets))
        document = self._sessions.load()
        mint = document.mint_pubkey()
        holders = [self._dev, *self._wallets]

        pool = await self.resolve_pool(mint, market_id)
        table, blockhash, live_supply, *balances = await asyncio.gather(
            self._table(document),
            self._rpc.get_latest_blockhash(),
            self._rpc.get_token_supply(mint),
            *(self._rpc.get_token_balance(get_associated_token_address(h.pubkey, mint)) for h in holders),
        )
        bundle = builder.build_sell_bundle(
            SellRequest(
                payer=self.payer.keypair,
                dev=self._dev.keypair,
                wallets=self.wallet_keypairs,
                pool=pool,
                percent=percent,
                balances={h.pubkey: b or 0 for h, b in zip(holders, balances)},
                lookup_table=table,
                blockhash=blockhash,
                tip_lamports=self._tip(tip_lamports),
                supply_basis=supply_basis,
                live_supply=live_supply,
                simulated_supply=TOTAL_SUPPLY,
                min_sol_output=self._config.min_sol_output,
            )
        )
        return await self._submit("sell", bundle)

    async def reclaim(self, tip_lamports: int | None = None) -> ActionResult:
        document = self._sessions.load()
        table: AddressLookupTableAccount | None = None
        if document.address_lut:
            table = await self._table(document)

        blockhash, *balances = await asyncio.gather(
            self._rpc.get_latest_blockhash(),
            *(self._rpc.get_balance(w.pubkey) for w in self._wallets),
        )
        bundle = builder.build_reclaim_bundle(
            ReclaimRequest(
                payer=self.payer.keypair,
                wallets=self.wallet_keypairs,
                balances={w.pubkey: b for w, b in zip(self._wallets, balances)},
                blockhash=blockhash,
                tip_lamports=self._tip(tip_lamports),
                lookup_table=table,
            )
        )
        return await self._submit("reclaim", bundle)
