import pytest

from btfkit.errors import NotSupportedError
from btfkit.rawparse import (
    HEADER_SIZE,
    BtfHeader,
    fixup_datasec,
    marshal_btf,
    parse_btf,
    read_btf_header,
)
from btfkit.rawtypes import (
    BTF_MAGIC,
    BtfMember,
    BtfParam,
    BtfVariable,
    BtfVarSecinfo,
    FuncLinkage,
    Kind,
    RawType,
)
from btfkit.strings import read_string_table

STRINGS = b"\x00int\x00s\x00m\x00f\x00"


def make_raw(kind, name_off=0, size_type=0, data=None):
    raw = RawType(name_off=name_off, size_type=size_type, data=data)
    raw.set_kind(kind)
    if isinstance(data, list):
        raw.set_vlen(len(data))
    return raw


def sample_types():
    func = make_raw(Kind.FUNC, name_off=9, size_type=4)
    func.set_linkage(FuncLinkage.GLOBAL)
    return [
        make_raw(Kind.INT, name_off=1, size_type=4, data=32),
        make_raw(Kind.POINTER, size_type=1),
        make_raw(
            Kind.STRUCT,
            name_off=5,
            size_type=8,
            data=[BtfMember(7, 1, 0), BtfMember(0, 2, 32)],
        ),
        make_raw(Kind.FUNC_PROTO, size_type=1, data=[BtfParam(0, 2)]),
        func,
    ]


def test_header_wire_bytes():
    blob = marshal_btf(sample_types(), STRINGS, "little")
    assert blob[:8] == b"\x9f\xeb\x01\x00\x18\x00\x00\x00"
    big = marshal_btf(sample_types(), STRINGS, "big")
    assert big[:2] == b"\xeb\x9f"
    assert HEADER_SIZE == 24


@pytest.mark.parametrize("byte_order", ["little", "big"])
def test_round_trip(byte_order):
    types = sample_types()
    blob = marshal_btf(types, STRINGS, byte_order)
    raw_types, strings = parse_btf(blob, byte_order)
    assert raw_types == types
    assert bytes(strings) == STRINGS


def test_header_describes_sections():
    blob = marshal_btf(sample_types(), STRINGS, "little")
    header = read_btf_header(blob, "little")
    assert header.magic == BTF_MAGIC
    assert header.type_off == 0
    assert header.string_off == header.type_len
    assert header.string_len == len(STRINGS)
    assert len(blob) == HEADER_SIZE + header.type_len + header.string_len


def test_header_pack_round_trip():
    header = BtfHeader(type_len=12, string_off=12, string_len=3)
    assert read_btf_header(header.pack("big"), "big") == header


def test_read_header_too_short():
    with pytest.raises(ValueError, match="can't read header"):
        read_btf_header(b"\x9f\xeb", "little")


def test_strip_func_linkage():
    types = sample_types()
    blob = marshal_btf(types, STRINGS, "little", strip_func_linkage=True)
    raw_types, _ = parse_btf(blob, "little")
    assert raw_types[4].linkage() is FuncLinkage.STATIC
    assert types[4].linkage() is FuncLinkage.GLOBAL
    assert raw_types[:4] == types[:4]


@pytest.mark.parametrize(
    "index, value, message",
    [
        (0, 0, "incorrect magic"),
        (2, 2, "unexpected version"),
        (3, 1, "unsupported flags"),
    ],
)
def test_invalid_header_fields(index, value, message):
    blob = bytearray(marshal_btf(sample_types(), STRINGS, "little"))
    blob[index] = value
    with pytest.raises(ValueError, match=message):
        parse_btf(bytes(blob), "little")


def section_with_header(header, padding, byte_order="little"):
    types = b"".join(raw.marshal(byte_order) for raw in sample_types())
    header.type_len = len(types)
    header.string_off = len(types)
    header.string_len = len(STRINGS)
    return header.pack(byte_order) + padding + types + STRINGS


def test_header_too_short():
    blob = section_with_header(BtfHeader(hdr_len=HEADER_SIZE - 4), b"")
    with pytest.raises(ValueError, match="header is too short"):
        parse_btf(blob, "little")


def test_zero_padding_accepted():
    blob = section_with_header(BtfHeader(hdr_len=HEADER_SIZE + 4), b"\x00" * 4)
    raw_types, strings = parse_btf(blob, "little")
    assert raw_types == sample_types()
    assert bytes(strings) == STRINGS


def test_non_zero_padding_rejected():
    blob = section_with_header(BtfHeader(hdr_len=HEADER_SIZE + 4), b"\x00\x00\x00\x01")
    with pytest.raises(ValueError, match="header padding"):
        parse_btf(blob, "little")


def test_empty_string_table_rejected():
    blob = BtfHeader().pack("little")
    with pytest.raises(ValueError, match="can't read type names"):
        parse_btf(blob, "little")


def test_truncated_types_rejected():
    blob = marshal_btf(sample_types(), STRINGS, "little")
    header = read_btf_header(blob, "little")
    header.type_len -= 2
    broken = header.pack("little") + blob[HEADER_SIZE:]
    with pytest.raises(ValueError, match="can't read types"):
        parse_btf(broken, "little")


DATASEC_STRINGS = b"\x00.data\x00x\x00int\x00"


def datasec_types(section_name_off=1):
    return [
        make_raw(Kind.INT, name_off=9, size_type=4, data=32),
        make_raw(Kind.VAR, name_off=7, size_type=1, data=BtfVariable(1)),
        make_raw(Kind.DATASEC, name_off=section_name_off, data=[BtfVarSecinfo(2, 0, 4)]),
    ]


def test_fixup_datasec():
    types = datasec_types()
    strings = read_string_table(DATASEC_STRINGS)
    fixup_datasec(types, strings, {".data": 16}, {(".data", "x"): 8})
    assert types[2].size_type == 16
    assert types[2].data[0].offset == 8


def test_fixup_datasec_keeps_existing_size():
    types = datasec_types()
    types[2].size_type = 5
    fixup_datasec(types, read_string_table(DATASEC_STRINGS), None, None)
    assert types[2].size_type == 5
    assert types[2].data[0].offset == 0


def test_fixup_datasec_missing_size():
    with pytest.raises(ValueError, match="missing size"):
        fixup_datasec(datasec_types(), read_string_table(DATASEC_STRINGS), {}, {})


def test_fixup_datasec_missing_offset():
    with pytest.raises(ValueError, match="missing offset for variable x"):
        fixup_datasec(datasec_types(), read_string_table(DATASEC_STRINGS), {".data": 16}, {})


def test_fixup_datasec_invalid_type_id():
    types = datasec_types()
    types[2].data[0].type = 9
    with pytest.raises(ValueError, match="invalid type id"):
        fixup_datasec(types, read_string_table(DATASEC_STRINGS), {".data": 16}, {})


def test_fixup_datasec_kconfig_not_supported():
    strings = read_string_table(b"\x00.kconfig\x00x\x00int\x00")
    types = [
        make_raw(Kind.INT, name_off=12, size_type=4, data=32),
        make_raw(Kind.VAR, name_off=10, size_type=1, data=BtfVariable(1)),
        make_raw(Kind.DATASEC, name_off=1, data=[BtfVarSecinfo(2, 0, 4)]),
    ]
    with pytest.raises(NotSupportedError, match=".kconfig"):
        fixup_datasec(types, strings, {".kconfig": 4}, {})


def test_fixup_then_round_trip():
    types = datasec_types()
    fixup_datasec(types, read_string_table(DATASEC_STRINGS), {".data": 16}, {(".data", "x"): 8})
    raw_types, _ = parse_btf(marshal_btf(types, DATASEC_STRINGS, "big"), "big")
    assert raw_types == types