"""Sizes, copies and construction of the BTF type graph."""

from __future__ import annotations

from typing import Callable, Iterable, Optional

from btfkit.rawtypes import FuncLinkage, Kind, RawType, VarLinkage, int_encoding
from btfkit.strings import StringTable
from btfkit.types import (
    MAX_TYPE_DEPTH,
    Array,
    Const,
    Datasec,
    Enum,
    EnumValue,
    Float,
    Func,
    FuncParam,
    FuncProto,
    Fwd,
    FwdKind,
    Int,
    Member,
    NamedType,
    Pointer,
    Qualifier,
    Restrict,
    Struct,
    Type,
    TypeSlot,
    Typedef,
    Union,
    Var,
    VarSecinfo,
    Void,
    Volatile,
)

_MAX_INT64 = (1 << 63) - 1

Transform = Optional[Callable[[Type], Type]]


def _element_size(typ: Type) -> int | None:
    if isinstance(typ, Pointer):
        return 8
    if isinstance(typ, Enum):
        return 4
    if isinstance(typ, Void):
        return 0
    if isinstance(typ, (Int, Struct, Union, Datasec, Float)):
        return typ.size
    return None


def sizeof(typ: Optional[Type]) -> int:
    """Return the size of a type in bytes.

    Raises ValueError if the size can't be computed.
    """
    count = 1
    for _ in range(MAX_TYPE_DEPTH):
        if isinstance(typ, Array):
            if count > 0 and typ.nelems > _MAX_INT64 // count:
                raise ValueError(f"type {typ}: overflow")
            # Arrays may be of zero length, so count may become zero as well.
            count *= typ.nelems
            typ = typ.type
            continue

        elem = _element_size(typ) if typ is not None else None
        if elem is None:
            if isinstance(typ, Typedef):
                typ = typ.type
                continue
            if isinstance(typ, Qualifier):
                typ = typ.qualify()
                continue
            raise ValueError(f"unsized type {type(typ).__name__}")

        if count > 0 and elem > _MAX_INT64 // count:
            raise ValueError(f"type {typ}: overflow")
        return count * elem

    raise ValueError(f"type {typ}: exceeded type depth")


def _copy_slot(slot: TypeSlot, copies: dict[Type, Type], transform: Transform) -> None:
    work = [slot]
    while work:
        current = work.pop()
        original = current.get()
        if original is None:
            continue
        existing = copies.get(original)
        if existing is not None:
            current.set(existing)
            continue

        source = transform(original) if transform is not None else original
        cpy = source.copy()
        copies[original] = cpy
        current.set(cpy)
        work.extend(cpy.walk())


def copy_type(typ: Type, transform: Transform = None) -> Type:
    """Copy a type and everything it refers to; the graph may contain cycles.

    Exceptions raised by transform propagate unchanged.
    """
    holder: list[Optional[Type]] = [typ]
    _copy_slot(TypeSlot(holder, 0), {}, transform)
    return holder[0]


def copy_types(types: Iterable[Type], transform: Transform = None) -> list[Type]:
    """Copy several types, sharing copies of types they have in common."""
    result = list(types)
    copies: dict[Type, Type] = {}
    for index in range(len(result)):
        _copy_slot(TypeSlot(result, index), copies, transform)
    return result


def essential_name(name: str) -> str:
    """Return name without a ___ flavour suffix."""
    index = name.rfind("___")
    if index > 0:
        return name[:index]
    return name


def _lookup(strings: StringTable, offset: int, context: str) -> str:
    try:
        return strings.lookup(offset)
    except ValueError as err:
        raise ValueError(f"{context}: {err}") from err


def inflate_raw_types(
    raw_types: list[RawType], strings: StringTable
) -> tuple[list[Type], dict[str, list[NamedType]]]:
    """Turn raw types linked by ID into a graph of Types.

    Returns the types indexed by type ID (Void at index 0) and the named
    types grouped by their essential name.
    """
    fixups: list[tuple[int, Kind, TypeSlot]] = []

    def fixup(type_id: int, expected: Kind, slot: TypeSlot) -> None:
        fixups.append((type_id, expected, slot))

    def convert_members(raws: list, kind_flag: bool) -> list[Member]:
        members = []
        for index, raw_member in enumerate(raws):
            name = _lookup(strings, raw_member.name_off, f"can't get name for member {index}")
            member = Member(name=name, offset_bits=raw_member.offset)
            if kind_flag:
                member.bitfield_size = raw_member.offset >> 24
                member.offset_bits &= 0xFFFFFF
            members.append(member)
            fixup(raw_member.type, Kind.UNKNOWN, TypeSlot(member, "type"))
        return members

    types: list[Type] = [Void()]
    named_types: dict[str, list[NamedType]] = {}

    for index, raw in enumerate(raw_types):
        type_id = index + 1
        name = _lookup(strings, raw.name_off, f"get name for type id {type_id}")
        try:
            kind = raw.kind()
        except ValueError:
            raise ValueError(f"type id {type_id}: unknown kind: {raw.info >> 24 & 0x1F}") from None

        typ: Type
        if kind is Kind.INT:
            if not isinstance(raw.data, int):
                raise ValueError(f"type id {type_id}: integer without encoding")
            encoding, offset, bits = int_encoding(raw.data)
            typ = Int(type_id, name, raw.size_type, encoding, offset, bits)

        elif kind is Kind.POINTER:
            typ = Pointer(type_id)
            fixup(raw.size_type, Kind.UNKNOWN, TypeSlot(typ, "target"))

        elif kind is Kind.ARRAY:
            # The index type is unused and not exposed.
            typ = Array(type_id, None, raw.data.nelems)
            fixup(raw.data.type, Kind.UNKNOWN, TypeSlot(typ, "type"))

        elif kind in (Kind.STRUCT, Kind.UNION):
            label = "struct" if kind is Kind.STRUCT else "union"
            try:
                members = convert_members(raw.data or [], raw.kind_flag())
            except ValueError as err:
                raise ValueError(f"{label} {name} (id {type_id}): {err}") from err
            cls = Struct if kind is Kind.STRUCT else Union
            typ = cls(type_id, name, raw.size_type, members)

        elif kind is Kind.ENUM:
            values = []
            for value_index, raw_value in enumerate(raw.data or []):
                value_name = _lookup(
                    strings, raw_value.name_off, f"get name for enum value {value_index}"
                )
                values.append(EnumValue(value_name, raw_value.val))
            typ = Enum(type_id, name, values)

        elif kind is Kind.FORWARD:
            typ = Fwd(type_id, name, FwdKind.UNION if raw.kind_flag() else FwdKind.STRUCT)

        elif kind is Kind.TYPEDEF:
            typ = Typedef(type_id, name)
            fixup(raw.size_type, Kind.UNKNOWN, TypeSlot(typ, "type"))

        elif kind in (Kind.VOLATILE, Kind.CONST, Kind.RESTRICT):
            cls = {Kind.VOLATILE: Volatile, Kind.CONST: Const, Kind.RESTRICT: Restrict}[kind]
            typ = cls(type_id)
            fixup(raw.size_type, Kind.UNKNOWN, TypeSlot(typ, "type"))

        elif kind is Kind.FUNC:
            try:
                linkage = raw.linkage()
            except ValueError:
                raise ValueError(f"type id {type_id}: invalid function linkage") from None
            typ = Func(type_id, name, None, linkage)
            fixup(raw.size_type, Kind.FUNC_PROTO, TypeSlot(typ, "type"))

        elif kind is Kind.FUNC_PROTO:
            raw_params = raw.data or []
            params = []
            for param_index, raw_param in enumerate(raw_params):
                param_name = _lookup(
                    strings,
                    raw_param.name_off,
                    f"get name for func proto parameter {param_index}",
                )
                params.append(FuncParam(param_name))
            for param, raw_param in zip(params, raw_params):
                fixup(raw_param.type, Kind.UNKNOWN, TypeSlot(param, "type"))
            typ = FuncProto(type_id, None, params)
            fixup(raw.size_type, Kind.UNKNOWN, TypeSlot(typ, "return_type"))

        elif kind is Kind.VAR:
            try:
                var_linkage = VarLinkage(raw.data.linkage)
            except ValueError:
                raise ValueError(f"type id {type_id}: invalid variable linkage") from None
            typ = Var(type_id, name, None, var_linkage)
            fixup(raw.size_type, Kind.UNKNOWN, TypeSlot(typ, "type"))

        elif kind is Kind.DATASEC:
            raw_vars = raw.data or []
            secinfos = [VarSecinfo(None, raw_var.offset, raw_var.size) for raw_var in raw_vars]
            for secinfo, raw_var in zip(secinfos, raw_vars):
                fixup(raw_var.type, Kind.VAR, TypeSlot(secinfo, "type"))
            typ = Datasec(type_id, name, raw.size_type, secinfos)

        elif kind is Kind.FLOAT:
            typ = Float(type_id, name, raw.size_type)

        else:
            raise ValueError(f"type id {type_id}: unknown kind: {kind}")

        types.append(typ)
        if isinstance(typ, NamedType):
            key = essential_name(typ.name)
            if key:
                named_types.setdefault(key, []).append(typ)

    for type_id, expected, slot in fixups:
        if type_id >= len(types):
            raise ValueError(f"reference to invalid type id: {type_id}")
        raw_kind = raw_types[type_id - 1].kind() if type_id > 0 else Kind.UNKNOWN
        if expected is not Kind.UNKNOWN and raw_kind is not expected:
            raise ValueError(
                f"expected type id {type_id} to have kind {expected}, found {raw_kind}"
            )
        slot.set(types[type_id])

    return types, named_types


__all__ = [
    "sizeof",
    "copy_type",
    "copy_types",
    "essential_name",
    "inflate_raw_types",
    "FuncLinkage",
]