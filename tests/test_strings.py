import pytest

from btfkit.strings import StringTable, read_string_table

TABLE = b"\x00one\x00two\x00"


def test_read_string_table_keeps_contents():
    st = read_string_table(TABLE)
    assert bytes(st) == TABLE


@pytest.mark.parametrize("offset,want", [(0, ""), (1, "one"), (5, "two")])
def test_lookup(offset, want):
    st = read_string_table(TABLE)
    assert st.lookup(offset) == want


def test_lookup_middle_of_string_fails():
    st = read_string_table(TABLE)
    with pytest.raises(ValueError, match="isn't start of a string"):
        st.lookup(2)


def test_lookup_out_of_bounds():
    st = read_string_table(TABLE)
    with pytest.raises(ValueError, match="out of bounds"):
        st.lookup(len(TABLE))


def test_lookup_not_terminated():
    st = StringTable(b"\x00ab")
    with pytest.raises(ValueError, match="isn't null terminated"):
        st.lookup(1)


def test_lookup_negative_offset():
    st = read_string_table(TABLE)
    with pytest.raises(ValueError):
        st.lookup(-1)


def test_reject_non_terminated_table():
    with pytest.raises(ValueError, match="null terminated"):
        read_string_table(b"\x00one")


def test_reject_non_empty_first_item():
    with pytest.raises(ValueError, match="non-empty"):
        read_string_table(b"one\x00")


def test_reject_empty_table():
    with pytest.raises(ValueError, match="empty"):
        read_string_table(b"")