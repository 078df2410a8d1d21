"""Reading and writing the raw .BTF section: header, types and strings."""

from __future__ import annotations

import dataclasses
import struct
from dataclasses import dataclass
from typing import Mapping, Optional

from btfkit.errors import NotSupportedError, discard_zeroes
from btfkit.rawtypes import BTF_MAGIC, FuncLinkage, Kind, RawType, read_types
from btfkit.strings import StringTable, read_string_table

_HEADER_FORMAT = "HBBIIIII"
HEADER_SIZE = struct.calcsize("<" + _HEADER_FORMAT)


def _struct_prefix(byte_order: str) -> str:
    if byte_order == "little":
        return "<"
    if byte_order == "big":
        return ">"
    raise ValueError(f"unknown byte order {byte_order!r}")


@dataclass
class BtfHeader:
    """The header at the start of a .BTF section."""

    magic: int = BTF_MAGIC
    version: int = 1
    flags: int = 0
    hdr_len: int = HEADER_SIZE
    type_off: int = 0
    type_len: int = 0
    string_off: int = 0
    string_len: int = 0

    def pack(self, byte_order: str) -> bytes:
        """Encode the header in the given byte order."""
        return struct.pack(_struct_prefix(byte_order) + _HEADER_FORMAT, *dataclasses.astuple(self))


def read_btf_header(data: bytes, byte_order: str) -> BtfHeader:
    """Decode the header at the start of data without validating it."""
    prefix = _struct_prefix(byte_order)
    if len(data) < HEADER_SIZE:
        raise ValueError("can't read header: unexpected EOF")
    return BtfHeader(*struct.unpack_from(prefix + _HEADER_FORMAT, data, 0))


def parse_btf(data: bytes, byte_order: str) -> tuple[list[RawType], StringTable]:
    """Parse a .BTF section into raw types and its string table."""
    data = bytes(data)
    header = read_btf_header(data, byte_order)

    if header.magic != BTF_MAGIC:
        raise ValueError(f"incorrect magic value {header.magic}")
    if header.version != 1:
        raise ValueError(f"unexpected version {header.version}")
    if header.flags != 0:
        raise ValueError(f"unsupported flags {header.flags}")

    remainder = header.hdr_len - HEADER_SIZE
    if remainder < 0:
        raise ValueError("header is too short")
    padding = data[HEADER_SIZE : HEADER_SIZE + remainder]
    if len(padding) < remainder:
        raise ValueError("header padding: unexpected EOF")
    try:
        discard_zeroes(padding)
    except ValueError as err:
        raise ValueError(f"header padding: {err}") from err

    string_start = header.hdr_len + header.string_off
    try:
        strings = read_string_table(data[string_start : string_start + header.string_len])
    except ValueError as err:
        raise ValueError(f"can't read type names: {err}") from err

    type_start = header.hdr_len + header.type_off
    try:
        raw_types = read_types(data[type_start : type_start + header.type_len], byte_order)
    except ValueError as err:
        raise ValueError(f"can't read types: {err}") from err

    return raw_types, strings


def fixup_datasec(
    raw_types: list[RawType],
    strings: StringTable,
    section_sizes: Optional[Mapping[str, int]],
    variable_offsets: Optional[Mapping[tuple[str, str], int]],
) -> None:
    """Fill in sizes of data sections and offsets of their variables.

    variable_offsets is keyed by (section name, variable name). The raw
    types are modified in place.
    """
    section_sizes = section_sizes or {}
    variable_offsets = variable_offsets or {}

    for raw in raw_types:
        if raw.kind() is not Kind.DATASEC:
            continue

        name = strings.lookup(raw.name_off)
        if name in (".kconfig", ".ksyms"):
            raise NotSupportedError(f"reference to {name}: not supported")

        if raw.size_type != 0:
            continue

        if name not in section_sizes:
            raise ValueError(f"data section {name}: missing size")
        raw.size_type = section_sizes[name]

        for index, secinfo in enumerate(raw.data or []):
            type_index = secinfo.type - 1
            if type_index < 0 or type_index >= len(raw_types):
                raise ValueError(
                    f"data section {name}: invalid type id {type_index} for variable {index}"
                )
            try:
                var_name = strings.lookup(raw_types[type_index].name_off)
            except ValueError as err:
                raise ValueError(
                    f"data section {name}: can't get name for type {type_index}: {err}"
                ) from err

            key = (name, var_name)
            if key not in variable_offsets:
                raise ValueError(f"data section {name}: missing offset for variable {var_name}")
            secinfo.offset = variable_offsets[key]


def marshal_btf(
    raw_types: list[RawType],
    strings: bytes,
    byte_order: str,
    strip_func_linkage: bool = False,
) -> bytes:
    """Encode raw types and a string table as a complete .BTF section.

    With strip_func_linkage, functions are written with static linkage;
    the raw types passed in are left unchanged.
    """
    parts = []
    for raw in raw_types:
        if strip_func_linkage and raw.kind() is Kind.FUNC:
            raw = dataclasses.replace(raw)
            raw.set_linkage(FuncLinkage.STATIC)
        parts.append(raw.marshal(byte_order))
    type_section = b"".join(parts)
    strings = bytes(strings)

    header = BtfHeader(
        hdr_len=HEADER_SIZE,
        type_off=0,
        type_len=len(type_section),
        string_off=len(type_section),
        string_len=len(strings),
    )
    return header.pack(byte_order) + type_section + strings