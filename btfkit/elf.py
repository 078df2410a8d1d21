"""A small, defensive reader for ELF object files."""

from __future__ import annotations

import contextlib
import struct
import zlib
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator, Union

ELF_MAGIC = b"\x7fELF"

SHT_NULL = 0
SHT_PROGBITS = 1
SHT_SYMTAB = 2
SHT_STRTAB = 3
SHT_NOBITS = 8
SHT_DYNSYM = 11

SHF_COMPRESSED = 0x800
ELFCOMPRESS_ZLIB = 1

SHN_UNDEF = 0
SHN_LORESERVE = 0xFF00
SHN_ABS = 0xFFF1
SHN_COMMON = 0xFFF2
SHN_XINDEX = 0xFFFF
SHN_HIRESERVE = 0xFFFF

_IDENT_SIZE = 16
_HEADER_FORMATS = {32: "HHIIIIIHHHHHH", 64: "HHIQQQIHHHHHH"}
_SECTION_FORMATS = {32: "IIIIIIIIII", 64: "IIQQQQIIQQ"}
_SYMBOL_FORMATS = {32: "IIIBBH", 64: "IBBHQQ"}
_CHDR_FORMATS = {32: "III", 64: "IIQQ"}


class ElfError(ValueError):
    """The data is not a valid or supported ELF file."""


@contextlib.contextmanager
def _safe(what: str) -> Iterator[None]:
    try:
        yield
    except ElfError:
        raise
    except (struct.error, IndexError, ValueError, zlib.error) as err:
        raise ElfError(f"reading {what} failed: {err}") from err


def _get_string(table: bytes, start: int) -> str | None:
    if start < 0 or start >= len(table):
        return None
    end = table.find(b"\x00", start)
    if end == -1:
        end = len(table)
    return table[start:end].decode("utf-8", errors="replace")


@dataclass
class ElfSection:
    """A section header together with the section's contents."""

    name: str
    type: int
    flags: int
    addr: int
    offset: int
    size: int
    link: int
    info: int
    addralign: int
    entsize: int
    data: bytes = field(default=b"", repr=False)


@dataclass(frozen=True)
class ElfSymbol:
    """An entry of a symbol table."""

    name: str
    info: int
    other: int
    section: int
    value: int
    size: int


@dataclass
class ElfFile:
    """A parsed ELF file: its class, byte order and sections."""

    elf_class: int
    byte_order: str
    type: int
    machine: int
    sections: list[ElfSection]

    @property
    def _prefix(self) -> str:
        return "<" if self.byte_order == "little" else ">"

    def _read_symbols(self, section_type: int) -> list[ElfSymbol]:
        table = next((s for s in self.sections if s.type == section_type), None)
        if table is None:
            raise ElfError("no symbol section")

        fmt = self._prefix + _SYMBOL_FORMATS[self.elf_class]
        entry_size = struct.calcsize(fmt)
        data = table.data
        if len(data) % entry_size != 0:
            raise ElfError("length of symbol section is not a multiple of SymSize")
        if not data:
            raise ElfError("symbol section is empty")
        if not 0 < table.link < len(self.sections):
            raise ElfError("invalid ELF string table section")
        strtab = self.sections[table.link].data

        symbols = []
        # The first entry is the reserved null symbol.
        for offset in range(entry_size, len(data), entry_size):
            fields = struct.unpack_from(fmt, data, offset)
            if self.elf_class == 32:
                name_off, value, size, info, other, shndx = fields
            else:
                name_off, info, other, shndx, value, size = fields
            name = _get_string(strtab, name_off) or ""
            symbols.append(ElfSymbol(name, info, other, shndx, value, size))
        return symbols

    def symbols(self) -> list[ElfSymbol]:
        """Return the entries of the symbol table, without the null symbol."""
        with _safe("ELF symbols"):
            return self._read_symbols(SHT_SYMTAB)

    def dynamic_symbols(self) -> list[ElfSymbol]:
        """Return the entries of the dynamic symbol table, without the null symbol."""
        with _safe("ELF dynamic symbols"):
            return self._read_symbols(SHT_DYNSYM)


def _section_data(
    raw: bytes, header: tuple, elf_class: int, prefix: str, name: str
) -> tuple[bytes, int]:
    _, sh_type, flags, _, offset, size = header[:6]
    if sh_type == SHT_NOBITS:
        return b"", size
    if offset + size > len(raw):
        raise ElfError(f"section {name}: data out of range")
    data = raw[offset : offset + size]
    if not flags & SHF_COMPRESSED:
        return data, size

    chdr_fmt = prefix + _CHDR_FORMATS[elf_class]
    chdr_size = struct.calcsize(chdr_fmt)
    if len(data) < chdr_size:
        raise ElfError(f"section {name}: truncated compression header")
    fields = struct.unpack_from(chdr_fmt, data)
    ch_type = fields[0]
    ch_size = fields[1] if elf_class == 32 else fields[2]
    if ch_type != ELFCOMPRESS_ZLIB:
        raise ElfError(f"section {name}: unsupported compression type {ch_type}")
    return zlib.decompress(data[chdr_size:]), ch_size


def _parse(raw: bytes) -> ElfFile:
    if len(raw) < _IDENT_SIZE or raw[:4] != ELF_MAGIC:
        raise ElfError("bad magic number")

    class_byte, data_byte, ident_version = raw[4], raw[5], raw[6]
    if class_byte == 1:
        elf_class = 32
    elif class_byte == 2:
        elf_class = 64
    else:
        raise ElfError(f"unknown ELF class {class_byte}")
    if data_byte == 1:
        byte_order, prefix = "little", "<"
    elif data_byte == 2:
        byte_order, prefix = "big", ">"
    else:
        raise ElfError(f"unknown ELF data encoding {data_byte}")
    if ident_version != 1:
        raise ElfError(f"unknown ELF version {ident_version}")

    header_fmt = prefix + _HEADER_FORMATS[elf_class]
    if len(raw) < _IDENT_SIZE + struct.calcsize(header_fmt):
        raise ElfError("truncated ELF header")
    (e_type, machine, version, _entry, _phoff, shoff, _flags, _ehsize,
     _phentsize, _phnum, shentsize, shnum, shstrndx) = struct.unpack_from(
        header_fmt, raw, _IDENT_SIZE
    )
    if version != 1:
        raise ElfError(f"unknown ELF version {version}")

    section_fmt = prefix + _SECTION_FORMATS[elf_class]
    section_size = struct.calcsize(section_fmt)

    if shoff == 0:
        if shnum != 0:
            raise ElfError(f"invalid ELF shnum {shnum} for shoff=0")
        return ElfFile(elf_class, byte_order, e_type, machine, [])

    if shentsize < section_size:
        raise ElfError(f"invalid ELF shentsize {shentsize}")
    if shoff + section_size > len(raw):
        raise ElfError("section headers out of range")

    if shnum == 0 or shstrndx == SHN_XINDEX:
        first = struct.unpack_from(section_fmt, raw, shoff)
        if shnum == 0:
            shnum = first[5]
        if shstrndx == SHN_XINDEX:
            shstrndx = first[6]

    if shoff + shnum * shentsize > len(raw):
        raise ElfError("section headers out of range")
    if not 0 <= shstrndx < shnum:
        raise ElfError(f"invalid ELF shstrndx {shstrndx}")

    headers = [
        struct.unpack_from(section_fmt, raw, shoff + i * shentsize) for i in range(shnum)
    ]

    names_header = headers[shstrndx]
    if names_header[1] != SHT_STRTAB:
        raise ElfError("invalid ELF section name string table type")
    names, _ = _section_data(raw, names_header, elf_class, prefix, "section names")

    sections = []
    for header in headers:
        name = _get_string(names, header[0])
        if name is None:
            raise ElfError(f"bad section name index {header[0]}")
        data, size = _section_data(raw, header, elf_class, prefix, name)
        (_, sh_type, flags, addr, offset, _, link, info, addralign, entsize) = header
        sections.append(
            ElfSection(name, sh_type, flags, addr, offset, size, link, info, addralign, entsize, data)
        )
    return ElfFile(elf_class, byte_order, e_type, machine, sections)


def read_elf(data: Union[bytes, bytearray, memoryview, BinaryIO]) -> ElfFile:
    """Parse an ELF file from bytes or a binary file object.

    Any malformed input raises ElfError.
    """
    if hasattr(data, "read"):
        data = data.read()
    raw = bytes(data)
    with _safe("ELF file"):
        return _parse(raw)