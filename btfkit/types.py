"""The graph of BTF types, connected by references instead of type IDs."""

from __future__ import annotations

import copy as _copy
import dataclasses
import enum
import json
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from btfkit.rawtypes import FuncLinkage, IntEncoding, VarLinkage

MAX_TYPE_DEPTH = 32


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _id_of(typ: Optional[Type]) -> int:
    return 0 if typ is None else typ.type_id


class TypeSlot:
    """A place that holds a Type: an attribute of an object or a list index."""

    __slots__ = ("owner", "key")

    def __init__(self, owner: Any, key: str | int) -> None:
        self.owner = owner
        self.key = key

    def get(self) -> Optional[Type]:
        """Return the type stored in the slot."""
        if isinstance(self.key, int):
            return self.owner[self.key]
        return getattr(self.owner, self.key)

    def set(self, value: Optional[Type]) -> None:
        """Store value in the slot."""
        if isinstance(self.key, int):
            self.owner[self.key] = value
        else:
            setattr(self.owner, self.key, value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TypeSlot):
            return NotImplemented
        return self.owner is other.owner and self.key == other.key

    def __hash__(self) -> int:
        return hash((id(self.owner), self.key))

    def __repr__(self) -> str:
        return f"TypeSlot({type(self.owner).__name__}, {self.key!r})"


class Type:
    """A type described by BTF. Types compare and hash by identity."""

    type_id: int = 0

    def copy(self) -> Type:
        """Copy the type without copying the types it refers to."""
        return _copy.copy(self)

    def walk(self) -> Iterator[TypeSlot]:
        """Yield the slots of all directly nested types, in a fixed order."""
        yield from ()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self}>"


class NamedType(Type):
    """A type that carries a name, empty for anonymous types."""

    name: str = ""


class Composite(Type):
    """A struct or union: a type made of members."""

    members: list

    def copy(self) -> Type:
        cpy = super().copy()
        cpy.members = [dataclasses.replace(member) for member in self.members]
        return cpy

    def walk(self) -> Iterator[TypeSlot]:
        for member in self.members:
            yield TypeSlot(member, "type")


class Qualifier(Type):
    """A const, volatile or restrict qualifier of another type."""

    type: Optional[Type] = None

    def qualify(self) -> Optional[Type]:
        """Return the qualified type."""
        return self.type

    def walk(self) -> Iterator[TypeSlot]:
        yield TypeSlot(self, "type")


@dataclass(eq=False, repr=False)
class Void(Type):
    """The unit type of BTF, always type ID 0."""

    def __str__(self) -> str:
        return "void#0"


@dataclass(eq=False, repr=False)
class Int(NamedType):
    """An integer of a given size."""

    type_id: int = 0
    name: str = ""
    size: int = 0
    encoding: IntEncoding = IntEncoding(0)
    offset_bits: int = 0
    bits: int = 0

    def __str__(self) -> str:
        if self.encoding & IntEncoding.CHAR:
            text = "char"
        elif self.encoding & IntEncoding.BOOL:
            text = "bool"
        else:
            prefix = "" if self.encoding & IntEncoding.SIGNED else "u"
            text = f"{prefix}int{self.size * 8}"
        text += f"#{self.type_id}"
        if self.bits > 0:
            text += f"[bits={self.bits}]"
        return text

    def is_bitfield(self) -> bool:
        """Return True if the integer starts at a non-zero bit offset."""
        return self.offset_bits > 0


@dataclass(eq=False, repr=False)
class Pointer(Type):
    """A pointer to another type."""

    type_id: int = 0
    target: Optional[Type] = None

    def __str__(self) -> str:
        return f"pointer#{self.type_id}[target=#{_id_of(self.target)}]"

    def walk(self) -> Iterator[TypeSlot]:
        yield TypeSlot(self, "target")


@dataclass(eq=False, repr=False)
class Array(Type):
    """An array with a fixed number of elements."""

    type_id: int = 0
    type: Optional[Type] = None
    nelems: int = 0

    def __str__(self) -> str:
        return f"array#{self.type_id}[type=#{_id_of(self.type)} n={self.nelems}]"

    def walk(self) -> Iterator[TypeSlot]:
        yield TypeSlot(self, "type")


@dataclass
class Member:
    """A member of a struct or union; not a type itself."""

    name: str = ""
    type: Optional[Type] = None
    offset_bits: int = 0
    bitfield_size: int = 0


@dataclass(eq=False, repr=False)
class Struct(Composite, NamedType):
    """A compound type of consecutive members."""

    type_id: int = 0
    name: str = ""
    size: int = 0
    members: list[Member] = field(default_factory=list)

    def __str__(self) -> str:
        return f"struct#{self.type_id}[{_quote(self.name)}]"


@dataclass(eq=False, repr=False)
class Union(Composite, NamedType):
    """A compound type whose members share the same memory."""

    type_id: int = 0
    name: str = ""
    size: int = 0
    members: list[Member] = field(default_factory=list)

    def __str__(self) -> str:
        return f"union#{self.type_id}[{_quote(self.name)}]"


@dataclass
class EnumValue:
    """A value of an enum; not a type itself."""

    name: str = ""
    value: int = 0


@dataclass(eq=False, repr=False)
class Enum(NamedType):
    """An enumeration of named values."""

    type_id: int = 0
    name: str = ""
    values: list[EnumValue] = field(default_factory=list)

    def __str__(self) -> str:
        return f"enum#{self.type_id}[{_quote(self.name)}]"

    def copy(self) -> Type:
        cpy = super().copy()
        cpy.values = [dataclasses.replace(value) for value in self.values]
        return cpy


class FwdKind(enum.IntEnum):
    """The kind of a forward declaration."""

    STRUCT = 0
    UNION = 1

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(eq=False, repr=False)
class Fwd(NamedType):
    """A forward declaration of a struct or union."""

    type_id: int = 0
    name: str = ""
    kind: FwdKind = FwdKind.STRUCT

    def __str__(self) -> str:
        return f"fwd#{self.type_id}[{self.kind} {_quote(self.name)}]"


@dataclass(eq=False, repr=False)
class Typedef(NamedType):
    """An alias of another type."""

    type_id: int = 0
    name: str = ""
    type: Optional[Type] = None

    def __str__(self) -> str:
        return f"typedef#{self.type_id}[{_quote(self.name)} #{_id_of(self.type)}]"

    def walk(self) -> Iterator[TypeSlot]:
        yield TypeSlot(self, "type")


@dataclass(eq=False, repr=False)
class Volatile(Qualifier):
    """The volatile qualifier."""

    type_id: int = 0
    type: Optional[Type] = None

    def __str__(self) -> str:
        return f"volatile#{self.type_id}[#{_id_of(self.type)}]"


@dataclass(eq=False, repr=False)
class Const(Qualifier):
    """The const qualifier."""

    type_id: int = 0
    type: Optional[Type] = None

    def __str__(self) -> str:
        return f"const#{self.type_id}[#{_id_of(self.type)}]"


@dataclass(eq=False, repr=False)
class Restrict(Qualifier):
    """The restrict qualifier."""

    type_id: int = 0
    type: Optional[Type] = None

    def __str__(self) -> str:
        return f"restrict#{self.type_id}[#{_id_of(self.type)}]"


@dataclass(eq=False, repr=False)
class Func(NamedType):
    """A function definition; type refers to its prototype."""

    type_id: int = 0
    name: str = ""
    type: Optional[Type] = None
    linkage: FuncLinkage = FuncLinkage.STATIC

    def __str__(self) -> str:
        return (
            f"func#{self.type_id}[{self.linkage} {_quote(self.name)} "
            f"proto=#{_id_of(self.type)}]"
        )

    def walk(self) -> Iterator[TypeSlot]:
        yield TypeSlot(self, "type")


@dataclass
class FuncParam:
    """A parameter of a function prototype."""

    name: str = ""
    type: Optional[Type] = None


@dataclass(eq=False, repr=False)
class FuncProto(Type):
    """A function declaration: return type and parameters."""

    type_id: int = 0
    return_type: Optional[Type] = None
    params: list[FuncParam] = field(default_factory=list)

    def __str__(self) -> str:
        params = "".join(f"{_quote(p.name)}=#{_id_of(p.type)}, " for p in self.params)
        return f"proto#{self.type_id}[{params}return=#{_id_of(self.return_type)}]"

    def walk(self) -> Iterator[TypeSlot]:
        yield TypeSlot(self, "return_type")
        for param in self.params:
            yield TypeSlot(param, "type")

    def copy(self) -> Type:
        cpy = super().copy()
        cpy.params = [dataclasses.replace(param) for param in self.params]
        return cpy


@dataclass(eq=False, repr=False)
class Var(NamedType):
    """A global variable."""

    type_id: int = 0
    name: str = ""
    type: Optional[Type] = None
    linkage: VarLinkage = VarLinkage.STATIC

    def __str__(self) -> str:
        return f"var#{self.type_id}[{self.linkage} {_quote(self.name)}]"

    def walk(self) -> Iterator[TypeSlot]:
        yield TypeSlot(self, "type")


@dataclass
class VarSecinfo:
    """A variable inside a data section; not a type itself."""

    type: Optional[Type] = None
    offset: int = 0
    size: int = 0


@dataclass(eq=False, repr=False)
class Datasec(NamedType):
    """A global program section containing data."""

    type_id: int = 0
    name: str = ""
    size: int = 0
    vars: list[VarSecinfo] = field(default_factory=list)

    def __str__(self) -> str:
        return f"section#{self.type_id}[{_quote(self.name)}]"

    def walk(self) -> Iterator[TypeSlot]:
        for var in self.vars:
            yield TypeSlot(var, "type")

    def copy(self) -> Type:
        cpy = super().copy()
        cpy.vars = [dataclasses.replace(var) for var in self.vars]
        return cpy


@dataclass(eq=False, repr=False)
class Float(NamedType):
    """A floating point number of a given size."""

    type_id: int = 0
    name: str = ""
    size: int = 0

    def __str__(self) -> str:
        return f"float{self.size * 8}#{self.type_id}[{_quote(self.name)}]"