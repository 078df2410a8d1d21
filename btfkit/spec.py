"""Decoded BTF: loading it from ELF files and the kernel, and querying it."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Mapping, Optional, Union

from btfkit.core import CoreFixup, core_relocate
from btfkit.elf import (
    SHN_HIRESERVE,
    SHN_LORESERVE,
    SHT_NOBITS,
    SHT_PROGBITS,
    ElfError,
    ElfFile,
    ElfSection,
    read_elf,
)
from btfkit.errors import NATIVE_ENDIAN, NotSupportedError
from btfkit.extinfo import CoreRelo, ExtInfo, append_core_relos, parse_ext_infos
from btfkit.rawparse import fixup_datasec, marshal_btf, parse_btf
from btfkit.rawtypes import RawType
from btfkit.strings import StringTable
from btfkit.typegraph import copy_types, essential_name, inflate_raw_types
from btfkit.types import NamedType, Type

_U32 = 0xFFFFFFFF

_KERNEL_BTF_PATH = "/sys/kernel/btf/vmlinux"
_VMLINUX_LOCATIONS = (
    "/boot/vmlinux-{0}",
    "/lib/modules/{0}/vmlinux-{0}",
    "/lib/modules/{0}/build/vmlinux",
    "/usr/lib/modules/{0}/kernel/vmlinux",
    "/usr/lib/debug/boot/vmlinux-{0}",
    "/usr/lib/debug/boot/vmlinux-{0}.debug",
    "/usr/lib/debug/lib/modules/{0}/vmlinux",
)

ElfInput = Union[bytes, bytearray, memoryview, BinaryIO]


class NotFoundError(LookupError):
    """The requested BTF or type does not exist."""

    def __init__(self, message: str = "not found") -> None:
        super().__init__(message)


class NoExtendedInfoError(LookupError):
    """The BTF carries no extended (.BTF.ext) information."""

    def __init__(self, message: str = "no extended info") -> None:
        super().__init__(message)


@dataclass(eq=False)
class Spec:
    """Decoded BTF: raw records, the type graph and extended info."""

    raw_types: list[RawType]
    strings: StringTable
    types: list[Type]
    named_types: dict[str, list[NamedType]]
    func_infos: Optional[dict[str, ExtInfo]] = None
    line_infos: Optional[dict[str, ExtInfo]] = None
    core_relos: Optional[dict[str, list[CoreRelo]]] = None
    byte_order: str = NATIVE_ENDIAN

    def copy(self) -> Spec:
        """Return a Spec with a deep copy of the type graph.

        The raw types, strings and extended info are shared.
        """
        types = copy_types(self.types)
        named_types: dict[str, list[NamedType]] = {}
        for typ in types:
            if isinstance(typ, NamedType):
                named_types.setdefault(essential_name(typ.name), []).append(typ)
        return Spec(
            self.raw_types,
            self.strings,
            types,
            named_types,
            self.func_infos,
            self.line_infos,
            self.core_relos,
            self.byte_order,
        )

    def marshal(self, byte_order: str, strip_func_linkage: bool = False) -> bytes:
        """Encode the spec as a .BTF section in the given byte order."""
        return marshal_btf(self.raw_types, self.strings, byte_order, strip_func_linkage)

    def program(self, name: str, length: int) -> Program:
        """Return the BTF for the program in section name.

        length is the size of the instruction stream in bytes.
        """
        if length == 0:
            raise ValueError("length musn't be zero")

        if self.func_infos is None and self.line_infos is None and self.core_relos is None:
            raise NoExtendedInfoError(f"BTF for section {name}: no extended info")

        func_infos = (self.func_infos or {}).get(name)
        line_infos = (self.line_infos or {}).get(name)
        relos = (self.core_relos or {}).get(name)
        if func_infos is None and line_infos is None and relos is None:
            raise ValueError(f"no extended BTF info for section {name}")

        return Program(self, length, func_infos, line_infos, list(relos or []))

    def find_type(self, name: str, cls: type) -> NamedType:
        """Return the only type of class cls called name.

        Raises NotFoundError if there is none and ValueError if there are
        several.
        """
        candidate: Optional[NamedType] = None
        for typ in self.named_types.get(essential_name(name), []):
            if type(typ) is not cls or typ.name != name:
                continue
            if candidate is not None:
                raise ValueError(f"type {name}: multiple candidates for {cls.__name__}")
            candidate = typ

        if candidate is None:
            raise NotFoundError(f"type {name}: not found")
        return candidate


def _append_ext(a: Optional[ExtInfo], b: Optional[ExtInfo], offset: int) -> Optional[ExtInfo]:
    a_size = a.record_size if a is not None else 0
    b_size = b.record_size if b is not None else 0
    if a_size != b_size:
        raise ValueError(f"ext_info record size mismatch, want {a_size} (got {b_size})")
    if a is None or b is None:
        return a if a is not None else b
    return a.append(b, offset)


@dataclass(eq=False)
class Program:
    """The BTF information for one stream of instructions."""

    spec: Spec
    length: int
    func_infos_ext: Optional[ExtInfo] = None
    line_infos_ext: Optional[ExtInfo] = None
    core_relos: list[CoreRelo] = field(default_factory=list)

    def append(self, other: Program) -> None:
        """Append the information of other, which follows this program."""
        if other.spec is not self.spec:
            raise ValueError("can't append program with different BTF specs")

        try:
            func_infos = _append_ext(self.func_infos_ext, other.func_infos_ext, self.length)
        except ValueError as err:
            raise ValueError(f"func infos: {err}") from err
        try:
            line_infos = _append_ext(self.line_infos_ext, other.line_infos_ext, self.length)
        except ValueError as err:
            raise ValueError(f"line infos: {err}") from err

        self.func_infos_ext = func_infos
        self.line_infos_ext = line_infos
        self.core_relos = list(append_core_relos(self.core_relos, other.core_relos, self.length))
        self.length += other.length

    def _marshal(self, info: Optional[ExtInfo], what: str) -> tuple[int, bytes]:
        if self.spec.byte_order != NATIVE_ENDIAN:
            raise ValueError(f"can't marshal {what} different endianness")
        if info is None:
            return 0, b""
        return info.record_size, bytes(info.marshal_binary(NATIVE_ENDIAN) or b"")

    def func_infos(self) -> tuple[int, bytes]:
        """Return the record size and binary form of the function infos."""
        return self._marshal(self.func_infos_ext, "func infos")

    def line_infos(self) -> tuple[int, bytes]:
        """Return the record size and binary form of the line infos."""
        return self._marshal(self.line_infos_ext, "line infos")

    def fixups(self, target: Optional[Spec] = None) -> dict[int, CoreFixup]:
        """Return the CO-RE fixups needed to run against target.

        Without a target, the running kernel's BTF is used.
        """
        if not self.core_relos:
            return {}
        if target is None:
            target = load_kernel_spec()
        if self.spec.byte_order != target.byte_order:
            raise ValueError("can't calculate fixups for mixed endianness")
        return core_relocate(self.spec, target, self.core_relos)


def _find_btf_sections(
    elf: ElfFile,
) -> tuple[Optional[ElfSection], Optional[ElfSection], dict[str, int]]:
    btf = ext = None
    sizes: dict[str, int] = {}
    for section in elf.sections:
        if section.name == ".BTF":
            btf = section
        elif section.name == ".BTF.ext":
            ext = section
        elif section.type in (SHT_PROGBITS, SHT_NOBITS):
            if section.size > _U32:
                raise ValueError(f"section {section.name} exceeds maximum size")
            sizes[section.name] = section.size
    return btf, ext, sizes


def load_naked_spec(
    data: bytes,
    byte_order: str,
    section_sizes: Optional[Mapping[str, int]] = None,
    variable_offsets: Optional[Mapping[tuple[str, str], int]] = None,
) -> Spec:
    """Decode a bare .BTF section."""
    raw_types, strings = parse_btf(data, byte_order)
    fixup_datasec(raw_types, strings, section_sizes, variable_offsets)
    types, named_types = inflate_raw_types(raw_types, strings)
    return Spec(raw_types, strings, types, named_types, byte_order=byte_order)


def load_spec_from_elf(data: ElfInput) -> Spec:
    """Read the BTF sections of an ELF object file.

    Raises NotFoundError if the file contains no BTF.
    """
    elf = read_elf(data)
    btf, ext, sizes = _find_btf_sections(elf)
    if btf is None:
        raise NotFoundError("btf: not found")

    try:
        symbols = elf.symbols()
    except ElfError as err:
        raise ValueError(f"can't read symbols: {err}") from err

    offsets: dict[tuple[str, str], int] = {}
    for symbol in symbols:
        if SHN_LORESERVE <= symbol.section <= SHN_HIRESERVE:
            # Things like SHN_ABS.
            continue
        if symbol.section >= len(elf.sections):
            raise ValueError(f"symbol {symbol.name}: invalid section {symbol.section}")
        section_name = elf.sections[symbol.section].name
        if section_name not in sizes:
            continue
        if symbol.value > _U32:
            raise ValueError(
                f"section {section_name}: symbol {symbol.name}: size exceeds maximum"
            )
        offsets[(section_name, symbol.name)] = symbol.value

    spec = load_naked_spec(btf.data, elf.byte_order, sizes, offsets)
    if ext is None:
        return spec

    try:
        func_infos, line_infos, relos = parse_ext_infos(ext.data, elf.byte_order, spec.strings)
    except ValueError as err:
        raise ValueError(f"can't read ext info: {err}") from err
    spec.func_infos = func_infos
    spec.line_infos = line_infos
    spec.core_relos = relos
    return spec


def load_spec_from_vmlinux(data: ElfInput) -> Spec:
    """Read the .BTF section of a kernel image."""
    elf = read_elf(data)
    try:
        btf, _, _ = _find_btf_sections(elf)
    except ValueError as err:
        raise ValueError(f".BTF ELF section: {err}") from err
    if btf is None:
        raise ValueError("unable to find .BTF ELF section")
    return load_naked_spec(btf.data, elf.byte_order)


def _read_optional(path: str) -> Optional[bytes]:
    try:
        return Path(path).read_bytes()
    except OSError:
        return None


def _load_kernel_spec() -> Spec:
    try:
        release = os.uname().release
    except AttributeError as err:
        raise NotSupportedError(f"can't read kernel release number: {err}") from err

    data = _read_optional(_KERNEL_BTF_PATH)
    if data is not None:
        return load_naked_spec(data, NATIVE_ENDIAN)

    for location in _VMLINUX_LOCATIONS:
        data = _read_optional(location.format(release))
        if data is not None:
            return load_spec_from_vmlinux(data)

    raise NotSupportedError(f"no BTF for kernel version {release}: not supported")


_kernel_lock = threading.Lock()
_kernel_cache: dict[str, Spec] = {}


def load_kernel_spec() -> Spec:
    """Return the running kernel's BTF; a successful load is cached.

    Raises NotSupportedError if the kernel provides no BTF.
    """
    with _kernel_lock:
        if "spec" not in _kernel_cache:
            _kernel_cache["spec"] = _load_kernel_spec()
        return _kernel_cache["spec"]