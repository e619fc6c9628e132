"""Program IDs and well-known accounts used by the bundler."""

from solders.pubkey import Pubkey  # type: ignore[import-untyped]
from solders.system_program import ID as SYSTEM_PROGRAM_ID  # type: ignore[import-untyped]

LAMPORTS_PER_SOL = 1_000_000_000

# SPL
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string(
    "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
)
NATIVE_MINT = Pubkey.from_string("So11111111111111111111111111111111111111112")
RENT_SYSVAR_ID = Pubkey.from_string("SysvarRent111111111111111111111111111111111")
MPL_TOKEN_METADATA_PROGRAM_ID = Pubkey.from_string(
    "metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s"
)
ADDRESS_LOOKUP_TABLE_PROGRAM_ID = Pubkey.from_string(
    "AddressLookupTab1e1111111111111111111111111"
)

# Pump.fun
PUMP_PROGRAM_ID = Pubkey.from_string("6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P")
PUMP_GLOBAL = Pubkey.from_string("4wTV1YmiEkRvAtNtsSGPtUrqRYQMe5SKy2uB4Jjaxnjf")
PUMP_MINT_AUTHORITY = Pubkey.from_string("TSLvdd1pWpHVjahSpsvCXUbgwsL3JAcvokwaKt1eokM")
PUMP_EVENT_AUTHORITY = Pubkey.from_string("Ce6TQqeHC9p8KetsN6JsjHK7UTZk7nasjjnr7XxXp9F1")
PUMP_FEE_RECIPIENT = Pubkey.from_string("CebN5WGQ4jvEPvsVU4EoHEpgzq1VV7AbicfhtW4xC9iM")

# Raydium AMM v4 + OpenBook
RAYDIUM_AMM_V4_PROGRAM_ID = Pubkey.from_string("675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8")
OPENBOOK_PROGRAM_ID = Pubkey.from_string("srmqPvymJeFKQ4zGQed1GFppgkRHL9kaELCbyksJtPX")

__all__ = [
    "ADDRESS_LOOKUP_TABLE_PROGRAM_ID",
    "ASSOCIATED_TOKEN_PROGRAM_ID",
    "LAMPORTS_PER_SOL",
    "MPL_TOKEN_METADATA_PROGRAM_ID",
    "NATIVE_MINT",
    "OPENBOOK_PROGRAM_ID",
    "PUMP_EVENT_AUTHORITY",
    "PUMP_FEE_RECIPIENT",
    "PUMP_GLOBAL",
    "PUMP_MINT_AUTHORITY",
    "PUMP_PROGRAM_ID",
    "RAYDIUM_AMM_V4_PROGRAM_ID",
    "RENT_SYSVAR_ID",
    "SYSTEM_PROGRAM_ID",
    "TOKEN_PROGRAM_ID",
]
