import pytest

from btfkit.version import Version, find_kernel_version, parse_version


def test_version_ordering():
    a = parse_version("1.2")
    b = parse_version("2.2.1")
    assert a == Version(1, 2, 0)
    assert b == Version(2, 2, 1)
    assert a.less(b)
    assert not b.less(a)

    v200 = Version(2, 0, 0)
    assert a.less(v200)
    assert not v200.less(a)


def test_version_equal_is_not_less():
    assert not Version(1, 2, 3).less(Version(1, 2, 3))


def test_version_string():
    assert str(Version(4, 9)) == "v4.9"
    assert str(Version(2, 1, 1)) == "v2.1.1"


def test_unspecified():
    assert Version().unspecified()
    assert not Version(0, 0, 1).unspecified()


@pytest.mark.parametrize("text", ["", "1", "abc", "x.1.2"])
def test_parse_version_invalid(text):
    with pytest.raises(ValueError, match="invalid version"):
        parse_version(text)


def test_kernel_encoding():
    assert Version(256, 256, 256).kernel() == 255
    assert Version(4, 9, 128).kernel() == 264576


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Ubuntu 4.15.0-91.92-generic 4.15.18", Version(4, 15, 18)),
        ("#1 SMP Debian 4.19.37-5+deb10u2 (2019-08-08)", Version(4, 19, 37)),
        ("4.19.0-5-amd64", Version(4, 19, 0)),
        (
            "Linux foo 5.6.0-0.bpo.2-amd64 #1 SMP Debian 5.6.14-2~bpo10+1 (2020-06-09) x86_64 GNU/Linux",
            Version(5, 6, 14),
        ),
        ("4.19-ovh-xxxx-std-ipv6-64", Version(4, 19, 0)),
        ("5.5.10-arch1-1", Version(5, 5, 10)),
        ("4.14.167-0-virt", Version(4, 14, 167)),
        ("5.0.16-100.fc28.x86_64", Version(5, 0, 16)),
        ("4.18.0-240.15.1.el8_3.x86_64", Version(4, 18, 0)),
        ("#1 SMP Debian 4.19.181-1 (2021-03-19)", Version(4, 19, 181)),
        ("4.19.0-16-amd64", Version(4, 19, 0)),
    ],
)
def test_find_kernel_version(text, expected):
    assert find_kernel_version(text) == expected


@pytest.mark.parametrize(
    "text",
    [
        "#1577309 SMP Thu Dec 31 08:32:02 UTC 2020",
        "#1 SMP PREEMPT Thu, 11 Mar 2021 21:27:06 +0000",
        "#1-Alpine SMP Thu Jan 23 10:58:18 UTC 2020",
        "#1 SMP Tue May 14 18:22:28 UTC 2019",
        "#1 SMP Mon Mar 1 17:16:16 UTC 2021",
    ],
)
def test_find_kernel_version_missing(text):
    with pytest.raises(ValueError, match="no kernel version"):
        find_kernel_version(text)