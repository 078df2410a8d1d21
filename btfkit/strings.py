"""The NUL-separated string section of BTF."""

from __future__ import annotations


class StringTable(bytes):
    """A BTF string section: NUL-terminated strings addressed by offset."""

    def lookup(self, offset: int) -> str:
        """Return the string that starts at offset."""
        if offset < 0:
            raise ValueError(f"offset {offset} is negative")
        if offset >= len(self):
            raise ValueError(f"offset {offset} is out of bounds")
        if offset > 0 and self[offset - 1] != 0:
            raise ValueError(f"offset {offset} isn't start of a string")
        end = self.find(b"\x00", offset)
        if end == -1:
            raise ValueError(f"offset {offset} isn't null terminated")
        return self[offset:end].decode("utf-8", errors="replace")


def read_string_table(data: bytes) -> StringTable:
    """Validate a raw string section and return it as a StringTable."""
    contents = bytes(data)
    if not contents:
        raise ValueError("string table is empty")
    if contents[0] != 0:
        raise ValueError("first item in string table is non-empty")
    if contents[-1] != 0:
        raise ValueError("string table isn't null terminated")
    return StringTable(contents)