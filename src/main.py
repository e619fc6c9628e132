"""Entry point for the launch bundler.

    python -m src.main create-lut --tip 0.01
    python -m src.main extend-lut
    python -m src.main simulate --dev 1 --wallets 0.5 0.5 0.75 --save
    python -m src.main fund
    python -m src.main launch --name Foo --symbol FOO --uri https://...
    python -m src.main sell --percent 10 --supply-basis live
    python -m src.main reclaim

Every action reads its identities and endpoints from .env (config.settings).
"""

import argparse
import asyncio
import sys
from decimal import Decimal, InvalidOperation

from loguru import logger
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from config.settings import settings
from src.bundler.curve import parse_sol_amount
from src.bundler.engine import ActionResult, BundlerEngine
from src.bundler.errors import BundlerError, ValidationError
from src.bundler.requests import SupplyBasis, TokenMetadata
from src.bundler.submission import raise_for_outcome
from src.utils.logger import setup_logger
from src.wallets.keystore import KeypairStore


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bundler", description="Pump.fun launch bundler")
    parser.add_argument("--tip", help="Jito tip in SOL (default: TIP_SOL)")
    parser.add_argument(
        "--wait", action="store_true", help="Poll the block engine until the bundle lands or fails"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("create-lut", help="Create the session lookup table")

    extend = sub.add_parser("extend-lut", help="Add launch accounts to the lookup table")
    extend.add_argument("--mint-file", help="File holding a vanity mint secret (base58 or JSON array)")

    simulate = sub.add_parser("simulate", help="Simulate curve buys and optionally save allocations")
    simulate.add_argument("--dev", required=True, help="Dev wallet SOL")
    simulate.add_argument("--wallets", nargs="*", default=[], help="SOL per wallet, keystore order")
    simulate.add_argument("--save", action="store_true", help="Write the allocations to the session")

    sub.add_parser("fund", help="Send each allocated wallet its SOL")

    launch = sub.add_parser("launch", help="Create the token and bundle every wallet buy")
    launch.add_argument("--name", required=True)
    launch.add_argument("--symbol", required=True)
    launch.add_argument("--uri", required=True, help="Metadata URI (already uploaded)")

    sell = sub.add_parser("sell", help="Consolidate and sell a percentage of every holding")
    sell.add_argument("--percent", required=True, help="Percent of each holder's balance")
    sell.add_argument(
        "--supply-basis",
        choices=[b.value for b in SupplyBasis],
        default=SupplyBasis.LIVE.value,
        help="Supply figure the 25%% cap is measured against",
    )
    sell.add_argument("--market", help="OpenBook market id: sell through Raydium AMM v4")

    sub.add_parser("reclaim", help="Return every wallet's SOL to the payer")

    generate = sub.add_parser("generate-wallets", help="Write new buyer keypair files")
    generate.add_argument("--count", type=int, required=True)

    return parser


def _market(raw: str) -> Pubkey:
    try:
        return Pubkey.from_string(raw)
    except ValueError as e:
        raise ValidationError(f"Not a market address: {raw!r}") from e


def _tip_lamports(raw: str | None) -> int | None:
    return None if raw is None else parse_sol_amount(raw)


def _report(result: ActionResult) -> None:
    if result.outcome is None:
        logger.info(f"[BUNDLE] {result.action}: nothing to submit")
        return
    bundle_id = raise_for_outcome(result.outcome)
    logger.info(f"[BUNDLE] {result.action}: accepted as {bundle_id} {result.details or ''}")
    if result.landed is not None:
        logger.info(f"[BUNDLE] {result.action}: {result.landed.status}")


async def _run(args: argparse.Namespace) -> None:
    if args.command == "generate-wallets":
        KeypairStore(settings.keypairs_dir).generate(args.count)
        return

    tip = _tip_lamports(args.tip)
    engine, clients = BundlerEngine.from_settings(
        settings, wait_for_landing=args.wait, require_payer=args.command != "simulate"
    )

    try:
        if args.command == "create-lut":
            _report(await engine.create_lookup_table(tip))
        elif args.command == "extend-lut":
            mint_secret = None
            if args.mint_file:
                with open(args.mint_file, encoding="utf-8") as f:
                    mint_secret = f.read()
            _report(await engine.extend_lookup_table(tip, mint_secret=mint_secret))
        elif args.command == "simulate":
            result = engine.simulate(args.dev, args.wallets)
            if args.save:
                engine.save_simulation(result)
            else:
                logger.info("[CURVE] Not saved; rerun with --save to keep these allocations")
        elif args.command == "fund":
            _report(await engine.fund(tip))
        elif args.command == "launch":
            metadata = TokenMetadata(name=args.name, symbol=args.symbol, uri=args.uri)
            _report(await engine.launch(metadata, tip))
        elif args.command == "sell":
            try:
                percent = Decimal(args.percent)
            except InvalidOperation as e:
                raise ValidationError(f"Not a percentage: {args.percent!r}") from e
            market = _market(args.market) if args.market else None
            _report(
                await engine.sell(
                    percent,
                    supply_basis=SupplyBasis(args.supply_basis),
                    market_id=market,
                    tip_lamports=tip,
                )
            )
        elif args.command == "reclaim":
            _report(await engine.reclaim(tip))
    finally:
        for client in clients:
            await client.close()


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logger(json_logs=settings.json_logs, level=settings.log_level, log_dir=settings.log_dir)
    try:
        asyncio.run(_run(args))
    except BundlerError as e:
        logger.error(f"[BUNDLER] {type(e).__name__}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
