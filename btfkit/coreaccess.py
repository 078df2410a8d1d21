"""Walking local and target types in step for CO-RE relocations."""

from __future__ import annotations

import dataclasses
from collections import deque
from dataclasses import dataclass
from typing import Optional, Sequence

from btfkit.errors import NotSupportedError
from btfkit.extinfo import format_core_accessor
from btfkit.typegraph import essential_name, sizeof
from btfkit.types import (
    MAX_TYPE_DEPTH,
    Array,
    Composite,
    Enum,
    EnumValue,
    FuncProto,
    Fwd,
    Int,
    Member,
    Pointer,
    Qualifier,
    Struct,
    Type,
    Typedef,
    Union,
    Void,
)

_U32 = 0xFFFFFFFF
_MISSING = object()


class ImpossibleRelocationError(ValueError):
    """The local type can't be matched against the target type."""

    def __init__(self, message: str = "impossible relocation") -> None:
        super().__init__(message)


def _impossible(context: str) -> ImpossibleRelocationError:
    return ImpossibleRelocationError(f"{context}: impossible relocation")


def _rewrap(err: Exception, prefix: str) -> Exception:
    message = f"{prefix}: {err}"
    if isinstance(err, ImpossibleRelocationError):
        return ImpossibleRelocationError(message)
    if isinstance(err, NotSupportedError):
        return NotSupportedError(message)
    return ValueError(message)


@dataclass(frozen=True)
class CoreField:
    """A field reached through an accessor and its offset in bits."""

    type: Optional[Type]
    offset: int


def accessor_enum_value(accessor: Sequence[int], typ: Optional[Type]) -> EnumValue:
    """Return the value of enum typ that accessor selects."""
    if not isinstance(typ, Enum):
        raise ValueError(f"not an enum: {typ}")
    if len(accessor) > 1:
        raise ValueError(f"invalid accessor {format_core_accessor(accessor)} for enum")
    index = accessor[0]
    if index >= len(typ.values):
        raise ValueError(f"invalid index {index} for {typ}")
    return typ.values[index]


def _adjust_offset(base: int, typ: Optional[Type], n: int) -> int:
    size = sizeof(typ)
    return (base + ((n * size * 8) & _U32)) & _U32


def core_find_field(
    local: Optional[Type], accessor: Sequence[int], target: Optional[Type]
) -> tuple[CoreField, CoreField]:
    """Follow accessor through local and find the matching field in target.

    Returns the local and the target field with offsets in bits from the
    start of the respective root type.
    """
    if not accessor:
        raise ValueError("empty accessor")

    # The first index offsets a pointer to the base type, as for arrays.
    local_offset = _adjust_offset(0, local, accessor[0])
    target_offset = _adjust_offset(0, target, accessor[0])

    try:
        core_are_members_compatible(local, target)
    except (ValueError, NotSupportedError) as err:
        raise _rewrap(err, "fields") from err

    local_maybe_flex = False
    target_maybe_flex = False
    for acc in accessor[1:]:
        if isinstance(local, Composite):
            local_members = local.members
            if acc >= len(local_members):
                raise ValueError(f"invalid accessor {acc} for {local}")

            local_member = local_members[acc]
            if local_member.name == "":
                if not isinstance(local_member.type, Composite):
                    raise ValueError(
                        f"unnamed field with type {local_member.type}: not supported"
                    )
                # An anonymous struct or union: step into it.
                local = local_member.type
                local_offset = (local_offset + local_member.offset_bits) & _U32
                local_maybe_flex = False
                continue

            if not isinstance(target, Composite):
                raise _impossible("target not composite")

            target_member, last = core_find_member(target, local_member.name)
            if target_member.bitfield_size > 0:
                raise NotSupportedError(
                    f'field "{target_member.name}" is a bitfield: not supported'
                )

            local = local_member.type
            local_maybe_flex = acc == len(local_members) - 1
            local_offset = (local_offset + local_member.offset_bits) & _U32
            target = target_member.type
            target_maybe_flex = last
            target_offset = (target_offset + target_member.offset_bits) & _U32

        elif isinstance(local, Array):
            if not isinstance(target, Array):
                raise _impossible("target not array")

            if local.nelems == 0 and not local_maybe_flex:
                raise ValueError("local type has invalid flexible array")
            if target.nelems == 0 and not target_maybe_flex:
                raise ValueError("target type has invalid flexible array")

            if local.nelems > 0 and acc >= local.nelems:
                raise ValueError(f"invalid access of {local} at index {acc}")
            if target.nelems > 0 and acc >= target.nelems:
                raise _impossible("out of bounds access of target")

            local = local.type
            local_maybe_flex = False
            local_offset = _adjust_offset(local_offset, local, acc)

            target = target.type
            target_maybe_flex = False
            target_offset = _adjust_offset(target_offset, target, acc)

        else:
            raise NotSupportedError(
                f"relocate field of {type(local).__name__}: not supported"
            )

        core_are_members_compatible(local, target)

    return CoreField(local, local_offset), CoreField(target, target_offset)


def core_find_member(typ: Composite, name: str) -> tuple[Member, bool]:
    """Find a member by name, looking through anonymous structs and unions.

    Returns a copy of the member with its offset relative to typ, and
    whether it is the last member of the composite that holds it.
    """
    if name == "":
        raise ValueError("can't search for anonymous member")

    targets: deque[tuple[Composite, int]] = deque([(typ, 0)])
    visited: set[tuple[Composite, int]] = set()

    while targets:
        target = targets.popleft()
        if target in visited:
            continue
        if len(visited) >= MAX_TYPE_DEPTH:
            raise ValueError("type is nested too deep")
        visited.add(target)

        composite, base = target
        members = composite.members
        for index, member in enumerate(members):
            if member.name == name:
                found = dataclasses.replace(
                    member, offset_bits=(member.offset_bits + base) & _U32
                )
                return found, index == len(members) - 1

            # Not a match, but it may be an anonymous struct or union.
            if member.name != "":
                continue

            if not isinstance(member.type, Composite):
                raise ValueError(
                    f"anonymous non-composite type {type(member.type).__name__} not allowed"
                )
            targets.append((member.type, (base + member.offset_bits) & _U32))

    raise _impossible("no matching member")


def core_find_enum_value(
    local: Optional[Type], accessor: Sequence[int], target: Optional[Type]
) -> tuple[EnumValue, EnumValue]:
    """Find the value of target that corresponds to the local enum value."""
    local_value = accessor_enum_value(accessor, local)

    if not isinstance(target, Enum):
        raise ImpossibleRelocationError()

    local_name = essential_name(local_value.name)
    for target_value in target.values:
        if essential_name(target_value.name) == local_name:
            return local_value, target_value

    raise ImpossibleRelocationError()


def core_are_types_compatible(local: Optional[Type], target: Optional[Type]) -> bool:
    """Check two types for compatibility in type-based relocations.

    Names are ignored beyond the root. Returns True if compatible and
    raises ImpossibleRelocationError if not.
    """
    local_queue: deque[Optional[Type]] = deque()
    target_queue: deque[Optional[Type]] = deque()
    current_local: object = local
    current_target: object = target
    depth = 0

    while current_local is not _MISSING and current_target is not _MISSING:
        if depth >= MAX_TYPE_DEPTH:
            raise ValueError("types are nested too deep")

        lv, tv = current_local, current_target
        if type(lv) is not type(tv):
            raise _impossible("type mismatch")

        if isinstance(lv, (Void, Struct, Union, Enum, Fwd)):
            pass
        elif isinstance(lv, Int):
            if lv.is_bitfield() or tv.is_bitfield():
                raise _impossible("bitfield")
        elif isinstance(lv, (Pointer, Array)):
            depth += 1
            local_queue.extend(slot.get() for slot in lv.walk())
            target_queue.extend(slot.get() for slot in tv.walk())
        elif isinstance(lv, FuncProto):
            if len(lv.params) != len(tv.params):
                raise _impossible("function param mismatch")
            depth += 1
            local_queue.extend(slot.get() for slot in lv.walk())
            target_queue.extend(slot.get() for slot in tv.walk())
        else:
            raise ValueError(f"unsupported type {type(lv).__name__}")

        current_local = local_queue.popleft() if local_queue else _MISSING
        current_target = target_queue.popleft() if target_queue else _MISSING

    if current_local is not _MISSING:
        raise ValueError(f"dangling local type {type(current_local).__name__}")
    if current_target is not _MISSING:
        raise ValueError(f"dangling target type {type(current_target).__name__}")
    return True


def core_are_members_compatible(local: Optional[Type], target: Optional[Type]) -> bool:
    """Check two types for compatibility in field-based relocations.

    Returns True if compatible and raises ImpossibleRelocationError if not.
    """

    def names_match(a: str, b: str) -> bool:
        # Anonymous and named types are allowed to match.
        if a == "" or b == "" or essential_name(a) == essential_name(b):
            return True
        raise _impossible("names don't match")

    if isinstance(local, Composite) and isinstance(target, Composite):
        return True

    if type(local) is not type(target):
        raise _impossible("type mismatch")

    if isinstance(local, (Array, Pointer)):
        return True
    if isinstance(local, (Enum, Fwd)):
        return names_match(local.name, target.name)
    if isinstance(local, Int):
        if local.is_bitfield() or target.is_bitfield():
            raise _impossible("bitfield")
        return True

    raise NotSupportedError(f"type {local}: not supported")


def skip_qualifier_and_typedef(typ: Optional[Type]) -> Optional[Type]:
    """Strip const, volatile, restrict and typedefs from typ."""
    result = typ
    for _ in range(MAX_TYPE_DEPTH + 1):
        if isinstance(result, Qualifier):
            result = result.qualify()
        elif isinstance(result, Typedef):
            result = result.type
        else:
            return result
    raise ValueError("exceeded type depth")