"""Raw BTF type records as laid out in the type section."""

from __future__ import annotations

import dataclasses
import enum
import struct
from dataclasses import dataclass
from typing import ClassVar, Union

BTF_MAGIC = 0xEB9F

_KIND_SHIFT = 24
_KIND_LEN = 5
_VLEN_SHIFT = 0
_VLEN_LEN = 16
_KIND_FLAG_SHIFT = 31
_KIND_FLAG_LEN = 1

_HEADER_FORMAT = "III"
_U32 = 0xFFFFFFFF


def _struct_prefix(byte_order: str) -> str:
    if byte_order == "little":
        return "<"
    if byte_order == "big":
        return ">"
    raise ValueError(f"unknown byte order {byte_order!r}")


class Kind(enum.IntEnum):
    """The kind of a BTF type, equivalent to BTF_KIND_*."""

    UNKNOWN = 0
    INT = 1
    POINTER = 2
    ARRAY = 3
    STRUCT = 4
    UNION = 5
    ENUM = 6
    FORWARD = 7
    TYPEDEF = 8
    VOLATILE = 9
    CONST = 10
    RESTRICT = 11
    FUNC = 12
    FUNC_PROTO = 13
    VAR = 14
    DATASEC = 15
    FLOAT = 16

    def __str__(self) -> str:
        return _KIND_NAMES[self]


_KIND_NAMES = {
    Kind.UNKNOWN: "Unknown",
    Kind.INT: "Integer",
    Kind.POINTER: "Pointer",
    Kind.ARRAY: "Array",
    Kind.STRUCT: "Struct",
    Kind.UNION: "Union",
    Kind.ENUM: "Enumeration",
    Kind.FORWARD: "Forward",
    Kind.TYPEDEF: "Typedef",
    Kind.VOLATILE: "Volatile",
    Kind.CONST: "Const",
    Kind.RESTRICT: "Restrict",
    Kind.FUNC: "Function",
    Kind.FUNC_PROTO: "Function Proto",
    Kind.VAR: "Variable",
    Kind.DATASEC: "Section",
    Kind.FLOAT: "Float",
}


class FuncLinkage(enum.IntEnum):
    """Linkage of a BTF function."""

    STATIC = 0
    GLOBAL = 1
    EXTERN = 2

    def __str__(self) -> str:
        return self.name.lower()


class VarLinkage(enum.IntEnum):
    """Linkage of a BTF variable."""

    STATIC = 0
    GLOBAL = 1
    EXTERN = 2

    def __str__(self) -> str:
        return self.name.lower()


class IntEncoding(enum.IntFlag):
    """Encoding bits of a BTF integer."""

    SIGNED = 1
    CHAR = 2
    BOOL = 4


class _Record:
    _FORMAT: ClassVar[str] = ""

    def _pack(self, prefix: str) -> bytes:
        return struct.pack(prefix + self._FORMAT, *dataclasses.astuple(self))

    @classmethod
    def _size(cls, prefix: str) -> int:
        return struct.calcsize(prefix + cls._FORMAT)

    @classmethod
    def _unpack(cls, prefix: str, data: bytes, pos: int):
        return cls(*struct.unpack_from(prefix + cls._FORMAT, data, pos))


@dataclass
class BtfArray(_Record):
    """Array description following an array type record."""

    _FORMAT: ClassVar[str] = "III"
    type: int = 0
    index_type: int = 0
    nelems: int = 0


@dataclass
class BtfMember(_Record):
    """A member of a struct or union record."""

    _FORMAT: ClassVar[str] = "III"
    name_off: int = 0
    type: int = 0
    offset: int = 0


@dataclass
class BtfVarSecinfo(_Record):
    """A variable inside a data section record."""

    _FORMAT: ClassVar[str] = "III"
    type: int = 0
    offset: int = 0
    size: int = 0


@dataclass
class BtfVariable(_Record):
    """Linkage information following a variable record."""

    _FORMAT: ClassVar[str] = "I"
    linkage: int = 0


@dataclass
class BtfEnum(_Record):
    """A value of an enum record."""

    _FORMAT: ClassVar[str] = "Ii"
    name_off: int = 0
    val: int = 0


@dataclass
class BtfParam(_Record):
    """A parameter of a function prototype record."""

    _FORMAT: ClassVar[str] = "II"
    name_off: int = 0
    type: int = 0


RawData = Union[None, int, BtfArray, BtfVariable, list]

_SINGLE_DATA = {Kind.ARRAY: BtfArray, Kind.VAR: BtfVariable}
_LIST_DATA = {
    Kind.STRUCT: BtfMember,
    Kind.UNION: BtfMember,
    Kind.ENUM: BtfEnum,
    Kind.FUNC_PROTO: BtfParam,
    Kind.DATASEC: BtfVarSecinfo,
}


@dataclass
class RawType:
    """A btf_type header together with the data that follows it."""

    name_off: int = 0
    info: int = 0
    size_type: int = 0
    data: RawData = None

    def _get_info(self, length: int, shift: int) -> int:
        return (self.info >> shift) & ((1 << length) - 1)

    def _set_info(self, value: int, length: int, shift: int) -> None:
        mask = (1 << length) - 1
        cleared = self.info & ~(mask << shift) & _U32
        self.info = cleared | ((value & mask) << shift)

    def kind(self) -> Kind:
        """Return the kind stored in the info bits."""
        return Kind(self._get_info(_KIND_LEN, _KIND_SHIFT))

    def set_kind(self, kind: Kind) -> None:
        """Store kind in the info bits."""
        self._set_info(int(kind), _KIND_LEN, _KIND_SHIFT)

    def vlen(self) -> int:
        """Return the number of trailing records, e.g. struct members."""
        return self._get_info(_VLEN_LEN, _VLEN_SHIFT)

    def set_vlen(self, vlen: int) -> None:
        """Store the number of trailing records."""
        self._set_info(vlen, _VLEN_LEN, _VLEN_SHIFT)

    def kind_flag(self) -> bool:
        """Return the kind flag bit."""
        return self._get_info(_KIND_FLAG_LEN, _KIND_FLAG_SHIFT) == 1

    def linkage(self) -> FuncLinkage:
        """Return the function linkage stored in the vlen bits."""
        return FuncLinkage(self._get_info(_VLEN_LEN, _VLEN_SHIFT))

    def set_linkage(self, linkage: FuncLinkage) -> None:
        """Store a function linkage in the vlen bits."""
        self._set_info(int(linkage), _VLEN_LEN, _VLEN_SHIFT)

    def marshal(self, byte_order: str) -> bytes:
        """Encode the header and its data in the given byte order."""
        prefix = _struct_prefix(byte_order)
        out = struct.pack(prefix + _HEADER_FORMAT, self.name_off, self.info, self.size_type)
        data = self.data
        if data is None:
            return out
        if isinstance(data, int):
            return out + struct.pack(prefix + "I", data)
        if isinstance(data, (list, tuple)):
            return out + b"".join(item._pack(prefix) for item in data)
        return out + data._pack(prefix)


def read_types(data: bytes, byte_order: str) -> list[RawType]:
    """Decode a BTF type section into raw type records."""
    prefix = _struct_prefix(byte_order)
    data = bytes(data)
    header_size = struct.calcsize(prefix + _HEADER_FORMAT)
    types: list[RawType] = []
    pos = 0
    type_id = 1
    while pos < len(data):
        if len(data) - pos < header_size:
            raise ValueError(f"can't read type info for id {type_id}: unexpected EOF")
        name_off, info, size_type = struct.unpack_from(prefix + _HEADER_FORMAT, data, pos)
        pos += header_size
        raw = RawType(name_off, info, size_type)

        kind_value = raw._get_info(_KIND_LEN, _KIND_SHIFT)
        try:
            kind = Kind(kind_value)
        except ValueError:
            raise ValueError(
                f"type id {type_id}: unknown kind: Unknown ({kind_value})"
            ) from None

        if kind is Kind.INT:
            needed, description = 4, "uint32"
        elif kind in _SINGLE_DATA:
            cls = _SINGLE_DATA[kind]
            needed, description = cls._size(prefix), cls.__name__
        elif kind in _LIST_DATA:
            cls = _LIST_DATA[kind]
            needed, description = cls._size(prefix) * raw.vlen(), f"list of {cls.__name__}"
        else:
            needed, description = 0, ""

        if needed > len(data) - pos:
            raise ValueError(
                f"type id {type_id}: kind {kind}: can't read {description}: unexpected EOF"
            )

        if kind is Kind.INT:
            (raw.data,) = struct.unpack_from(prefix + "I", data, pos)
        elif kind in _SINGLE_DATA:
            raw.data = _SINGLE_DATA[kind]._unpack(prefix, data, pos)
        elif kind in _LIST_DATA:
            cls = _LIST_DATA[kind]
            size = cls._size(prefix)
            raw.data = [cls._unpack(prefix, data, pos + i * size) for i in range(raw.vlen())]
        pos += needed

        types.append(raw)
        type_id += 1
    return types


def int_encoding(raw: int) -> tuple[IntEncoding, int, int]:
    """Split the data word of an integer type into encoding, offset and bits."""
    return (
        IntEncoding((raw & 0x0F000000) >> 24),
        (raw & 0x00FF0000) >> 16,
        raw & 0x000000FF,
    )