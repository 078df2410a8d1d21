"""Computing CO-RE relocations of a program against target BTF."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from btfkit.coreaccess import (
    ImpossibleRelocationError,
    core_are_types_compatible,
    core_find_enum_value,
    core_find_field,
    skip_qualifier_and_typedef,
)
from btfkit.errors import NotSupportedError
from btfkit.extinfo import CoreKind, CoreRelo, format_core_accessor
from btfkit.typegraph import copy_type, essential_name, sizeof
from btfkit.types import Fwd, NamedType, Type

if TYPE_CHECKING:
    from btfkit.spec import Spec

_U32 = 0xFFFFFFFF

_FIELD_BYTE_OFFSET = CoreKind(0)
_FIELD_BYTE_SIZE = CoreKind(1)
_FIELD_EXISTS = CoreKind(2)
_TYPE_ID_LOCAL = CoreKind(6)
_TYPE_ID_TARGET = CoreKind(7)
_TYPE_EXISTS = CoreKind(8)
_TYPE_SIZE = CoreKind(9)
_ENUMVAL_EXISTS = CoreKind(10)
_ENUMVAL_VALUE = CoreKind(11)


class AmbiguousRelocationError(ValueError):
    """Several target types match a relocation with different results."""

    def __init__(self, message: str = "ambiguous relocation") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class CoreFixup:
    """The result of computing a CO-RE relocation for a target."""

    kind: CoreKind
    local: int = 0
    target: int = 0
    poison: bool = False

    def __str__(self) -> str:
        if self.poison:
            return f"{self.kind}=poison"
        return f"{self.kind}={self.local}->{self.target}"

    def agrees_with(self, other: CoreFixup) -> bool:
        """Return True if both fixups have the same local and target values."""
        return self.local == other.local and self.target == other.target

    def is_non_existent(self) -> bool:
        """Return True if this fixup reports that something doesn't exist."""
        return self.kind.checks_for_existence() and self.target == 0


def _rewrap(err: Exception, prefix: str) -> Exception:
    message = f"{prefix}: {err}"
    for cls in (AmbiguousRelocationError, ImpossibleRelocationError, NotSupportedError):
        if isinstance(err, cls):
            return cls(message)
    return ValueError(message)


def _check_type_accessor(kind: CoreKind, accessor: Sequence[int]) -> None:
    if len(accessor) != 1 or accessor[0] != 0:
        raise ValueError(f"{kind}: unexpected accessor {format_core_accessor(accessor)}")


def core_calculate_fixup(
    local: Optional[Type],
    local_id: int,
    target: Optional[Type],
    target_id: int,
    relo: CoreRelo,
) -> CoreFixup:
    """Calculate the fixup for one local type, target type and relocation."""
    kind = relo.kind

    def fixup(local_value: int, target_value: int) -> CoreFixup:
        return CoreFixup(kind, local_value & _U32, target_value & _U32, False)

    def poison() -> CoreFixup:
        if kind.checks_for_existence():
            return fixup(1, 0)
        return CoreFixup(kind, 0, 0, True)

    if kind in (_TYPE_ID_TARGET, _TYPE_SIZE, _TYPE_EXISTS):
        _check_type_accessor(kind, relo.accessor)
        try:
            core_are_types_compatible(local, target)
        except ImpossibleRelocationError:
            return poison()
        except ValueError as err:
            raise ValueError(f"relocation {kind}: {err}") from err

        if kind == _TYPE_EXISTS:
            return fixup(1, 1)
        if kind == _TYPE_ID_TARGET:
            return fixup(local_id, target_id)
        return fixup(sizeof(local), sizeof(target))

    if kind in (_ENUMVAL_VALUE, _ENUMVAL_EXISTS):
        try:
            local_value, target_value = core_find_enum_value(local, relo.accessor, target)
        except ImpossibleRelocationError:
            return poison()
        except ValueError as err:
            raise ValueError(f"relocation {kind}: {err}") from err

        if kind == _ENUMVAL_EXISTS:
            return fixup(1, 1)
        return fixup(local_value.value, target_value.value)

    if kind in (_FIELD_BYTE_OFFSET, _FIELD_BYTE_SIZE, _FIELD_EXISTS):
        if isinstance(target, Fwd):
            # A forward declaration has no fields; a full declaration
            # elsewhere in the BTF may still match.
            return poison()

        try:
            local_field, target_field = core_find_field(local, relo.accessor, target)
        except ImpossibleRelocationError:
            return poison()
        except (ValueError, NotSupportedError) as err:
            raise _rewrap(err, f"target {target}") from err

        if kind == _FIELD_EXISTS:
            return fixup(1, 1)
        if kind == _FIELD_BYTE_OFFSET:
            return fixup(local_field.offset // 8, target_field.offset // 8)
        return fixup(sizeof(local_field.type), sizeof(target_field.type))

    raise NotSupportedError(f"relocation {kind}: not supported")


def core_calculate_fixups(
    local: Type, targets: Iterable[NamedType], relos: Sequence[CoreRelo]
) -> list[CoreFixup]:
    """Calculate fixups for relos using the best matching target.

    The best target needs the least poisoning. Targets with equal scores
    must agree, otherwise AmbiguousRelocationError is raised.
    """
    local_id = local.type_id
    local = copy_type(local, skip_qualifier_and_typedef)

    best_score = len(relos)
    best_fixups: Optional[list[CoreFixup]] = None
    for candidate in targets:
        target_id = candidate.type_id
        target = copy_type(candidate, skip_qualifier_and_typedef)

        score = 0  # lower is better
        fixups = []
        for relo in relos:
            try:
                result = core_calculate_fixup(local, local_id, target, target_id, relo)
            except (ValueError, NotSupportedError) as err:
                raise _rewrap(err, f"target {target}") from err
            if result.poison or result.is_non_existent():
                score += 1
            fixups.append(result)

        if score > best_score:
            continue
        if score < best_score:
            best_score = score
            best_fixups = fixups
            continue

        for best, current in zip(best_fixups or [], fixups):
            if not best.agrees_with(current):
                raise AmbiguousRelocationError(
                    f"{best.kind}: multiple types match: ambiguous relocation"
                )

    if best_fixups is None:
        # Nothing matched at all: poison everything.
        best_fixups = [CoreFixup(relo.kind, poison=True) for relo in relos]

    return best_fixups


def core_relocate(local: Spec, target: Spec, relos: Sequence[CoreRelo]) -> dict[int, CoreFixup]:
    """Compute the fixups for relos against target, keyed by instruction offset."""
    if local.byte_order != target.byte_order:
        raise ValueError(f"can't relocate {local.byte_order} against {target.byte_order}")

    result: dict[int, CoreFixup] = {}
    relos_by_id: dict[int, list[CoreRelo]] = {}
    for relo in relos:
        if relo.kind == _TYPE_ID_LOCAL:
            # The local type ID needs no target at all.
            _check_type_accessor(relo.kind, relo.accessor)
            result[relo.insn_off] = CoreFixup(
                relo.kind, relo.type_id & _U32, relo.type_id & _U32, False
            )
            continue
        relos_by_id.setdefault(relo.type_id, []).append(relo)

    for type_id in sorted(relos_by_id):
        if type_id >= len(local.types):
            raise ValueError(f"invalid type id {type_id}")

        local_type = local.types[type_id]
        if not isinstance(local_type, NamedType) or local_type.name == "":
            raise NotSupportedError(
                f"relocate unnamed or anonymous type {local_type}: not supported"
            )

        group = relos_by_id[type_id]
        targets = target.named_types.get(essential_name(local_type.name), [])
        try:
            fixups = core_calculate_fixups(local_type, targets, group)
        except (ValueError, NotSupportedError) as err:
            raise _rewrap(err, f"relocate {local_type}") from err

        for relo, fixup in zip(group, fixups):
            result[relo.insn_off] = fixup

    return result