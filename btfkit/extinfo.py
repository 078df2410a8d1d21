"""The .BTF.ext section: function infos, line infos and CO-RE relocations."""

from __future__ import annotations

import enum
import re
import struct
from dataclasses import dataclass
from typing import Iterable

from btfkit.rawtypes import BTF_MAGIC
from btfkit.strings import StringTable

INSTRUCTION_SIZE = 8
_MAX_RECORD_SIZE = 256
_CORE_RELO_FORMAT = "IIII"
_CORE_RELO_SIZE = struct.calcsize("<" + _CORE_RELO_FORMAT)
_EXT_HEADER_FORMAT = "HBBIIIII"
_CORE_HEADER_FORMAT = "II"
_DIGITS_RE = re.compile(r"[0-9]+", re.ASCII)
_U32 = 0xFFFFFFFF


def _struct_prefix(byte_order: str) -> str:
    if byte_order == "little":
        return "<"
    if byte_order == "big":
        return ">"
    raise ValueError(f"unknown byte order {byte_order!r}")


class _ShortRead(ValueError):
    pass


class _Reader:
    def __init__(self, data: bytes, prefix: str) -> None:
        self._data = bytes(data)
        self._pos = 0
        self._prefix = prefix

    @property
    def at_end(self) -> bool:
        return self._pos >= len(self._data)

    def read(self, count: int) -> bytes:
        if count > len(self._data) - self._pos:
            raise _ShortRead("unexpected EOF")
        chunk = self._data[self._pos : self._pos + count]
        self._pos += count
        return chunk

    def unpack(self, fmt: str) -> tuple:
        fmt = self._prefix + fmt
        return struct.unpack(fmt, self.read(struct.calcsize(fmt)))


class CoreKind(enum.IntEnum):
    """The kind of a CO-RE relocation."""

    FIELD_BYTE_OFFSET = 0
    FIELD_BYTE_SIZE = 1
    FIELD_EXISTS = 2
    FIELD_SIGNED = 3
    FIELD_LSHIFT_U64 = 4
    FIELD_RSHIFT_U64 = 5
    TYPE_ID_LOCAL = 6
    TYPE_ID_TARGET = 7
    TYPE_EXISTS = 8
    TYPE_SIZE = 9
    ENUMVAL_EXISTS = 10
    ENUMVAL_VALUE = 11

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, int) and 0 <= value <= _U32:
            member = int.__new__(cls, value)
            member._name_ = f"UNKNOWN_{value}"
            member._value_ = value
            return member
        return None

    def __str__(self) -> str:
        return _CORE_KIND_NAMES.get(int(self), "unknown")

    def checks_for_existence(self) -> bool:
        """Return True for relocations that test whether something exists."""
        return self in (CoreKind.ENUMVAL_EXISTS, CoreKind.TYPE_EXISTS, CoreKind.FIELD_EXISTS)


_CORE_KIND_NAMES = {
    0: "byte_off",
    1: "byte_sz",
    2: "field_exists",
    3: "signed",
    4: "lshift_u64",
    5: "rshift_u64",
    6: "local_type_id",
    7: "target_type_id",
    8: "type_exists",
    9: "type_size",
    10: "enumval_exists",
    11: "enumval_value",
}


@dataclass(frozen=True)
class ExtInfoRecord:
    """One func or line info record; insn_off is in bytes."""

    insn_off: int
    opaque: bytes


@dataclass(frozen=True)
class ExtInfo:
    """Records of one section together with their on-disk size."""

    record_size: int = 0
    records: tuple[ExtInfoRecord, ...] = ()

    def append(self, other: ExtInfo, offset: int) -> ExtInfo:
        """Return these records followed by other's, shifted by offset bytes."""
        if other.record_size != self.record_size:
            raise ValueError(
                f"ext_info record size mismatch, want {self.record_size} "
                f"(got {other.record_size})"
            )
        shifted = tuple(
            ExtInfoRecord(record.insn_off + offset, record.opaque) for record in other.records
        )
        return ExtInfo(self.record_size, self.records + shifted)

    def marshal_binary(self, byte_order: str) -> bytes:
        """Encode the records with offsets counted in instructions."""
        prefix = _struct_prefix(byte_order)
        return b"".join(
            struct.pack(prefix + "I", (record.insn_off // INSTRUCTION_SIZE) & _U32)
            + record.opaque
            for record in self.records
        )


@dataclass(frozen=True)
class CoreRelo:
    """A CO-RE relocation against one instruction."""

    insn_off: int
    type_id: int
    accessor: tuple[int, ...]
    kind: CoreKind


def append_core_relos(
    relos: Iterable[CoreRelo], other: Iterable[CoreRelo], offset: int
) -> list[CoreRelo]:
    """Concatenate relocations, shifting those of other by offset bytes."""
    result = list(relos)
    result.extend(
        CoreRelo((relo.insn_off + offset) & _U32, relo.type_id, relo.accessor, relo.kind)
        for relo in other
    )
    return result


def parse_core_accessor(accessor: str) -> tuple[int, ...]:
    """Parse a colon-separated list of indices such as "0:1:3"."""
    if accessor == "":
        raise ValueError("empty accessor")
    result = []
    for part in accessor.split(":"):
        if not _DIGITS_RE.fullmatch(part):
            raise ValueError(f"accessor index {part!r}: invalid syntax")
        index = int(part)
        if index >= 1 << 31:
            raise ValueError(f"accessor index {part!r}: value out of range")
        result.append(index)
    return tuple(result)


def format_core_accessor(accessor: Iterable[int]) -> str:
    """Format an accessor back into its colon-separated form."""
    return ":".join(str(index) for index in accessor)


def _parse_ext_info_header(reader: _Reader, strings: StringTable) -> tuple[str, int]:
    try:
        sec_name_off, num_info = reader.unpack("II")
    except _ShortRead as err:
        raise ValueError(f"read ext info header: {err}") from err
    try:
        sec_name = strings.lookup(sec_name_off)
    except ValueError as err:
        raise ValueError(f"get section name: {err}") from err
    if num_info == 0:
        raise ValueError(f"section {sec_name} has zero records")
    return sec_name, num_info


def parse_ext_info(data: bytes, byte_order: str, strings: StringTable) -> dict[str, ExtInfo]:
    """Parse a func info or line info subsection, keyed by section name."""
    reader = _Reader(data, _struct_prefix(byte_order))
    try:
        (record_size,) = reader.unpack("I")
    except _ShortRead as err:
        raise ValueError(f"can't read record size: {err}") from err

    if record_size < 4:
        raise ValueError("record size too short")
    if record_size > _MAX_RECORD_SIZE:
        raise ValueError(f"record size {record_size} exceeds {_MAX_RECORD_SIZE}")

    result: dict[str, ExtInfo] = {}
    while not reader.at_end:
        sec_name, num_info = _parse_ext_info_header(reader, strings)
        records = []
        for _ in range(num_info):
            try:
                (byte_off,) = reader.unpack("I")
            except _ShortRead as err:
                raise ValueError(
                    f"section {sec_name}: can't read extended info offset: {err}"
                ) from err
            try:
                opaque = reader.read(record_size - 4)
            except _ShortRead as err:
                raise ValueError(f"section {sec_name}: can't read record: {err}") from err
            if byte_off % INSTRUCTION_SIZE != 0:
                raise ValueError(
                    f"section {sec_name}: offset {byte_off} is not aligned with instruction size"
                )
            records.append(ExtInfoRecord(byte_off, opaque))
        result[sec_name] = ExtInfo(record_size, tuple(records))
    return result


def parse_core_relos(
    data: bytes, byte_order: str, strings: StringTable
) -> dict[str, list[CoreRelo]]:
    """Parse the CO-RE relocation subsection, keyed by section name."""
    reader = _Reader(data, _struct_prefix(byte_order))
    try:
        (record_size,) = reader.unpack("I")
    except _ShortRead as err:
        raise ValueError(f"read record size: {err}") from err

    if record_size != _CORE_RELO_SIZE:
        raise ValueError(f"expected record size {_CORE_RELO_SIZE}, got {record_size}")

    result: dict[str, list[CoreRelo]] = {}
    while not reader.at_end:
        sec_name, num_info = _parse_ext_info_header(reader, strings)
        relos = []
        for _ in range(num_info):
            try:
                insn_off, type_id, access_str_off, kind = reader.unpack(_CORE_RELO_FORMAT)
            except _ShortRead as err:
                raise ValueError(f"section {sec_name}: read record: {err}") from err
            if insn_off % INSTRUCTION_SIZE != 0:
                raise ValueError(
                    f"section {sec_name}: offset {insn_off} is not aligned with instruction size"
                )
            accessor_str = strings.lookup(access_str_off)
            try:
                accessor = parse_core_accessor(accessor_str)
            except ValueError as err:
                raise ValueError(f"accessor {accessor_str!r}: {err}") from err
            relos.append(CoreRelo(insn_off, type_id, accessor, CoreKind(kind)))
        result[sec_name] = relos
    return result


def parse_ext_infos(
    data: bytes, byte_order: str, strings: StringTable
) -> tuple[dict[str, ExtInfo], dict[str, ExtInfo], dict[str, list[CoreRelo]]]:
    """Parse a whole .BTF.ext section into func infos, line infos and relocations."""
    data = bytes(data)
    reader = _Reader(data, _struct_prefix(byte_order))
    try:
        (magic, version, flags, hdr_len, func_off, func_len, line_off, line_len) = reader.unpack(
            _EXT_HEADER_FORMAT
        )
    except _ShortRead as err:
        raise ValueError(f"can't read header: {err}") from err

    if magic != BTF_MAGIC:
        raise ValueError(f"incorrect magic value {magic}")
    if version != 1:
        raise ValueError(f"unexpected version {version}")
    if flags != 0:
        raise ValueError(f"unsupported flags {flags}")

    remainder = hdr_len - struct.calcsize("<" + _EXT_HEADER_FORMAT)
    if remainder < 0:
        raise ValueError("header is too short")

    core_off = core_len = 0
    core_header_size = struct.calcsize("<" + _CORE_HEADER_FORMAT)
    if remainder >= core_header_size:
        try:
            core_off, core_len = reader.unpack(_CORE_HEADER_FORMAT)
        except _ShortRead as err:
            raise ValueError(f"can't read CO-RE relocation header: {err}") from err
        remainder -= core_header_size

    # Unlike .BTF, padding in the .BTF.ext header need not be zero.
    try:
        reader.read(remainder)
    except _ShortRead as err:
        raise ValueError(f"header padding: {err}") from err

    def section(offset: int, length: int) -> bytes:
        start = hdr_len + offset
        return data[start : start + length]

    try:
        func_info = parse_ext_info(section(func_off, func_len), byte_order, strings)
    except ValueError as err:
        raise ValueError(f"function info: {err}") from err

    try:
        line_info = parse_ext_info(section(line_off, line_len), byte_order, strings)
    except ValueError as err:
        raise ValueError(f"line info: {err}") from err

    relos: dict[str, list[CoreRelo]] = {}
    if core_off > 0 and core_len > 0:
        try:
            relos = parse_core_relos(section(core_off, core_len), byte_order, strings)
        except ValueError as err:
            raise ValueError(f"CO-RE relocation info: {err}") from err

    return func_info, line_info, relos