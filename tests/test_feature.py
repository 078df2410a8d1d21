import pytest

from btfkit.errors import NotSupportedError
from btfkit.feature import FeatureDetectionError, UnsupportedFeatureError, feature_test
from btfkit.version import Version


def test_supported_feature_is_called_lazily():
    calls = []

    probe = feature_test("foo", "1.0", lambda: calls.append(1))
    assert calls == []

    assert probe() is None
    assert calls == [1]

    assert probe() is None
    assert calls == [1]


def test_unsupported_feature_is_cached():
    calls = []

    def fn():
        calls.append(1)
        raise NotSupportedError()

    probe = feature_test("bar", "2.1.1", fn)

    with pytest.raises(UnsupportedFeatureError) as first:
        probe()
    assert "2.1.1" in str(first.value)
    assert isinstance(first.value, NotSupportedError)
    assert first.value.name == "bar"
    assert first.value.minimum_version == Version(2, 1, 1)
    assert str(first.value) == "bar not supported (requires >= v2.1.1)"

    with pytest.raises(UnsupportedFeatureError) as second:
        probe()
    assert second.value is first.value
    assert calls == [1]


def test_failed_probe_is_not_cached():
    calls = []

    def fn():
        calls.append(1)
        raise RuntimeError("foo")

    probe = feature_test("bar", "2.1.1", fn)

    with pytest.raises(FeatureDetectionError) as first:
        probe()
    with pytest.raises(FeatureDetectionError) as second:
        probe()

    assert first.value is not second.value
    assert str(first.value) == "detect support for bar: foo"
    assert isinstance(first.value.__cause__, RuntimeError)
    assert calls == [1, 1]


def test_unspecified_version_message():
    err = UnsupportedFeatureError("thing", Version())
    assert str(err) == "thing not supported"


def test_invalid_version_is_rejected():
    with pytest.raises(ValueError, match="invalid version"):
        feature_test("foo", "bogus", lambda: None)