"""Fixed-layout wire encoding for ORE instruction payloads and accounts.

Every payload is a discriminator followed by fields serialized little-endian
at a fixed width, in declared order. The layout is the program's ABI: any
drift is rejected on-chain with an unhelpful error, so nothing here is
variable-length or self-describing.
"""

import math
import struct
from typing import Sequence

from solders.pubkey import Pubkey

from .abi import (
    ACCOUNT_DISCRIMINATOR_LEN, AUTOMATION_LAYOUT, BOARD_SQUARES, MINER_LAYOUT,
)
from .errors import EncodingError


class Field:
    """One fixed-width instruction argument type."""

    def __init__(self, name: str, width: int):
        self.name = name
        self.width = width

    def pack(self, value) -> bytes:
        raise NotImplementedError

    def unpack(self, data: bytes, offset: int = 0):
        raise NotImplementedError

    def __repr__(self):
        return f"<{self.name}>"


class UInt(Field):
    def __init__(self, name: str, width: int, signed: bool = False):
        super().__init__(name, width)
        self.signed = signed
        if signed:
            self.lo, self.hi = -(1 << (8 * width - 1)), (1 << (8 * width - 1)) - 1
        else:
            self.lo, self.hi = 0, (1 << (8 * width)) - 1

    def pack(self, value) -> bytes:
        if isinstance(value, bool) or not isinstance(value, int):
            raise EncodingError(f"{self.name} expects int, got {type(value).__name__}")
        if not self.lo <= value <= self.hi:
            raise EncodingError(f"{self.name} out of range: {value}")
        return value.to_bytes(self.width, "little", signed=self.signed)

    def unpack(self, data: bytes, offset: int = 0) -> int:
        return int.from_bytes(data[offset:offset + self.width], "little", signed=self.signed)


class Float64(Field):
    def __init__(self):
        super().__init__("f64", 8)

    def pack(self, value) -> bytes:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise EncodingError(f"f64 expects a number, got {type(value).__name__}")
        if not math.isfinite(value):
            raise EncodingError(f"f64 must be finite, got {value}")
        return struct.pack("<d", float(value))

    def unpack(self, data: bytes, offset: int = 0) -> float:
        return struct.unpack_from("<d", data, offset)[0]


class SquareMask(Field):
    """25 square flags packed into a u32 bitmask."""

    def __init__(self):
        super().__init__("squares", 4)

    def pack(self, value) -> bytes:
        return encode_mask(value).to_bytes(4, "little")

    def unpack(self, data: bytes, offset: int = 0) -> list[bool]:
        return decode_mask(int.from_bytes(data[offset:offset + 4], "little"))


U8 = UInt("u8", 1)
U32 = UInt("u32", 4)
U64 = UInt("u64", 8)
I64 = UInt("i64", 8, signed=True)
F64 = Float64()
SQUARES = SquareMask()

FIELD_TYPES = {f.name: f for f in (U8, U32, U64, I64, F64)}


def encode_mask(flags: Sequence[bool]) -> int:
    """Pack exactly 25 flags into a mask; bit i is set iff flags[i]."""
    if len(flags) != BOARD_SQUARES:
        raise EncodingError(f"Expected {BOARD_SQUARES} square flags, got {len(flags)}")
    mask = 0
    for i, selected in enumerate(flags):
        if selected:
            mask |= 1 << i
    return mask


def decode_mask(mask: int) -> list[bool]:
    if not 0 <= mask < (1 << BOARD_SQUARES):
        raise EncodingError(f"Square mask out of range: {mask:#x}")
    return [bool(mask >> i & 1) for i in range(BOARD_SQUARES)]


def parse_squares(text: str) -> list[bool]:
    """Parse "all" or a comma list of square indexes ("0,4,12") into flags."""
    text = text.strip().lower()
    if text == "all":
        return [True] * BOARD_SQUARES
    flags = [False] * BOARD_SQUARES
    for part in text.split(","):
        try:
            index = int(part)
        except ValueError:
            raise EncodingError(f"Invalid square index: {part!r}") from None
        if not 0 <= index < BOARD_SQUARES:
            raise EncodingError(f"Square index out of range: {index}")
        flags[index] = True
    return flags


def encode(opcode: int | bytes, fields: Sequence[tuple[Field, object]] = ()) -> bytes:
    """Discriminator followed by each (field, value) at its fixed width.

    An int opcode is the 1-byte steel enum discriminant; bytes are used as
    given (Anchor programs take an 8-byte discriminator).
    """
    if isinstance(opcode, int):
        payload = U8.pack(opcode)
    else:
        payload = bytes(opcode)
    for field, value in fields:
        payload += field.pack(value)
    return payload


def u64_seed(value: int) -> bytes:
    return U64.pack(value)


def derive_address(seeds: Sequence[str | bytes], program_id: str | Pubkey,
                   authority: str | Pubkey | None = None) -> tuple[Pubkey, int]:
    """Program-derived address and bump for seeds (plus authority key, if given).

    Same hash construction as the runtime's find_program_address: string
    seeds are utf-8 encoded, the authority's 32 bytes are the last seed.
    """
    raw = [s.encode() if isinstance(s, str) else bytes(s) for s in seeds]
    if authority is not None:
        raw.append(bytes(as_pubkey(authority)))
    for seed in raw:
        if len(seed) > 32:
            raise EncodingError(f"Seed longer than 32 bytes: {seed!r}")
    return Pubkey.find_program_address(raw, as_pubkey(program_id))


def as_pubkey(value: str | Pubkey) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise EncodingError(f"Invalid public key {value!r}: {e}") from None


def _layout_size(layout) -> int:
    size = 0
    for _, kind in layout:
        size += _kind_width(kind)
    return size


def _kind_width(kind: str) -> int:
    if kind == "pubkey":
        return 32
    if kind == "bytes16":
        return 16
    if kind.endswith("]"):
        base, count = kind[:-1].split("[")
        return FIELD_TYPES[base].width * int(count)
    return FIELD_TYPES[kind].width


def decode_account(data: bytes, layout) -> dict:
    """Decode account data (after the 8-byte discriminator) into a dict."""
    needed = ACCOUNT_DISCRIMINATOR_LEN + _layout_size(layout)
    if len(data) < needed:
        raise EncodingError(f"Account data too short: {len(data)} < {needed} bytes")
    out = {}
    offset = ACCOUNT_DISCRIMINATOR_LEN
    for name, kind in layout:
        width = _kind_width(kind)
        if kind == "pubkey":
            out[name] = Pubkey.from_bytes(data[offset:offset + 32])
        elif kind == "bytes16":
            out[name] = bytes(data[offset:offset + 16])
        elif kind.endswith("]"):
            field = FIELD_TYPES[kind.split("[")[0]]
            out[name] = [
                field.unpack(data, offset + i * field.width)
                for i in range(width // field.width)
            ]
        else:
            out[name] = FIELD_TYPES[kind].unpack(data, offset)
        offset += width
    return out


def decode_miner(data: bytes) -> dict:
    return decode_account(data, MINER_LAYOUT)


def decode_automation(data: bytes) -> dict:
    return decode_account(data, AUTOMATION_LAYOUT)
