"""Off-chain pump.fun bonding curve simulation.

Integer constant-product math with a 30 SOL virtual offset, identical to the
program's own buy quote:

    k          = virtual_sol * virtual_token
    tokens_out = virtual_token - (k // (virtual_sol + sol_in)) - 1

clamped to what is left in the real token reserve. Floats never touch the
reserves; they only appear in the derived percent-of-supply figure.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation, ROUND_DOWN

from loguru import logger
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.bundler.errors import ValidationError
from src.programs.constants import LAMPORTS_PER_SOL

TOKEN_DECIMALS = 6
TOKEN_UNIT = 10**TOKEN_DECIMALS
TOTAL_SUPPLY = 1_000_000_000 * TOKEN_UNIT
INITIAL_VIRTUAL_SOL = 30 * LAMPORTS_PER_SOL
INITIAL_VIRTUAL_TOKEN = 1_073_000_000 * TOKEN_UNIT
INITIAL_REAL_TOKEN = 793_100_000 * TOKEN_UNIT


@dataclass(frozen=True)
class CurveState:
    virtual_sol_reserves: int
    virtual_token_reserves: int
    real_sol_reserves: int
    real_token_reserves: int

    def __post_init__(self) -> None:
        for name in (
            "virtual_sol_reserves",
            "virtual_token_reserves",
            "real_sol_reserves",
            "real_token_reserves",
        ):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise ValueError(f"CurveState.{name} must be a non-negative int, got {value!r}")

    @classmethod
    def pump_default(cls) -> CurveState:
        """State of a freshly created pump.fun curve."""
        return cls(
            virtual_sol_reserves=INITIAL_VIRTUAL_SOL,
            virtual_token_reserves=INITIAL_VIRTUAL_TOKEN,
            real_sol_reserves=0,
            real_token_reserves=INITIAL_REAL_TOKEN,
        )

    @property
    def product(self) -> int:
        return self.virtual_sol_reserves * self.virtual_token_reserves

    def quote_buy(self, sol_input: int) -> int:
        """Tokens received for ``sol_input`` lamports, before state changes."""
        if sol_input <= 0:
            return 0
        new_virtual_sol = self.virtual_sol_reserves + sol_input
        tokens_out = self.virtual_token_reserves - (self.product // new_virtual_sol) - 1
        return max(0, min(tokens_out, self.real_token_reserves))

    def apply_buy(self, sol_input: int) -> tuple[int, CurveState]:
        """Returns (tokens_out, next_state)."""
        tokens_out = self.quote_buy(sol_input)
        return tokens_out, replace(
            self,
            virtual_sol_reserves=self.virtual_sol_reserves + sol_input,
            virtual_token_reserves=self.virtual_token_reserves - tokens_out,
            real_sol_reserves=self.real_sol_reserves + sol_input,
            real_token_reserves=self.real_token_reserves - tokens_out,
        )


@dataclass(frozen=True)
class Allocation:
    identity_pubkey: Pubkey
    sol_input: int  # lamports
    token_output: int  # base units
    percent_of_supply: float


@dataclass
class SimulationResult:
    allocations: list[Allocation] = field(default_factory=list)
    initial: CurveState = field(default_factory=CurveState.pump_default)
    final: CurveState = field(default_factory=CurveState.pump_default)
    skipped: list[Pubkey] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return sum(a.token_output for a in self.allocations)

    @property
    def total_sol(self) -> int:
        return sum(a.sol_input for a in self.allocations)

    @property
    def percent_of_supply(self) -> float:
        return self.total_tokens / TOTAL_SUPPLY * 100


def parse_sol_amount(raw: str | int | float | Decimal) -> int:
    """Parse an operator-entered SOL amount into lamports (rounded down).

    Raises ValidationError for anything that is not a finite number.
    Zero and negative values parse fine; the simulator skips them.
    """
    try:
        amount = Decimal(str(raw).strip())
    except InvalidOperation as e:
        raise ValidationError(f"Not a SOL amount: {raw!r}") from e
    if not amount.is_finite():
        raise ValidationError(f"Not a SOL amount: {raw!r}")
    lamports = (amount * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_DOWN)
    return int(lamports)


def format_sol(lamports: int) -> str:
    """Lamports as a plain decimal SOL string ("1.5", "0.000000001")."""
    value = (Decimal(lamports) / LAMPORTS_PER_SOL).normalize()
    return format(value, "f")


def simulate_buys(
    inputs: Iterable[tuple[Pubkey, int]],
    initial: CurveState | None = None,
) -> SimulationResult:
    """Run ordered (identity, sol_input lamports) buys against a fresh curve.

    Each call starts from ``initial``; rejecting a result means discarding it
    and calling again, nothing carries over between runs.
    """
    start = initial or CurveState.pump_default()
    result = SimulationResult(initial=start, final=start)
    state = start

    for index, (pubkey, sol_input) in enumerate(inputs):
        if sol_input <= 0:
            logger.warning(f"[CURVE] Wallet #{index} {pubkey}: SOL input {sol_input} <= 0, skipping")
            result.skipped.append(pubkey)
            continue

        tokens_out, state = state.apply_buy(sol_input)
        percent = tokens_out / TOTAL_SUPPLY * 100
        result.allocations.append(
            Allocation(
                identity_pubkey=pubkey,
                sol_input=sol_input,
                token_output=tokens_out,
                percent_of_supply=percent,
            )
        )
        logger.info(
            f"[CURVE] Wallet #{index} {pubkey}: {tokens_out / TOKEN_UNIT:,.6f} tokens "
            f"for {format_sol(sol_input)} SOL ({percent:.4f}% of supply)"
        )
        if state.real_token_reserves == 0:
            logger.warning(f"[CURVE] Real token reserve exhausted at wallet #{index}")

    result.final = state
    logger.info(
        f"[CURVE] Final reserves: real_sol={format_sol(state.real_sol_reserves)} "
        f"real_token={state.real_token_reserves / TOKEN_UNIT:,.6f} "
        f"virtual_token={state.virtual_token_reserves / TOKEN_UNIT:,.6f} | "
        f"bought={result.total_tokens / TOKEN_UNIT:,.6f} ({result.percent_of_supply:.4f}% of supply)"
    )
    return result
