"""Address Lookup Table program: create/extend instructions and account decoding.

Instruction data is bincode: u32 LE variant tag followed by the fields.
  CreateLookupTable  tag 0: recent_slot u64, bump u8
  ExtendLookupTable  tag 2: Vec<Pubkey> (u64 LE length + 32-byte keys)

Account layout: 56-byte LookupTableMeta header, then packed 32-byte addresses.
"""

import struct

from solders.address_lookup_table_account import AddressLookupTableAccount  # type: ignore[import-untyped]
from solders.instruction import AccountMeta, Instruction  # type: ignore[import-untyped]
from solders.pubkey import Pubkey  # type: ignore[import-untyped]

from src.programs.constants import ADDRESS_LOOKUP_TABLE_PROGRAM_ID, SYSTEM_PROGRAM_ID

LOOKUP_TABLE_META_SIZE = 56

_CREATE = 0
_EXTEND = 2


def derive_lookup_table_address(authority: Pubkey, recent_slot: int) -> tuple[Pubkey, int]:
    return Pubkey.find_program_address(
        [bytes(authority), recent_slot.to_bytes(8, "little")],
        ADDRESS_LOOKUP_TABLE_PROGRAM_ID,
    )


def create_lookup_table(
    authority: Pubkey, payer: Pubkey, recent_slot: int
) -> tuple[Instruction, Pubkey]:
    """Returns (instruction, table_address)."""
    table, bump = derive_lookup_table_address(authority, recent_slot)
    accounts = [
        AccountMeta(pubkey=table, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    data = struct.pack("<IQB", _CREATE, recent_slot, bump)
    return Instruction(ADDRESS_LOOKUP_TABLE_PROGRAM_ID, data, accounts), table


def extend_lookup_table(
    table: Pubkey, authority: Pubkey, payer: Pubkey, addresses: list[Pubkey]
) -> Instruction:
    if not addresses:
        raise ValueError("extend_lookup_table needs at least one address")
    accounts = [
        AccountMeta(pubkey=table, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    data = struct.pack("<IQ", _EXTEND, len(addresses)) + b"".join(bytes(a) for a in addresses)
    return Instruction(ADDRESS_LOOKUP_TABLE_PROGRAM_ID, data, accounts)


def decode_lookup_table(table: Pubkey, raw: bytes) -> AddressLookupTableAccount | None:
    """Parse raw account data into an AddressLookupTableAccount.

    Returns None when the data is too short to hold the meta header.
    """
    if len(raw) < LOOKUP_TABLE_META_SIZE:
        return None

    addresses = [
        Pubkey.from_bytes(raw[i : i + 32])
        for i in range(LOOKUP_TABLE_META_SIZE, len(raw) - 31, 32)
    ]
    return AddressLookupTableAccount(key=table, addresses=addresses)
