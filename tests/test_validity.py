import pytest

from ecm.common.validity import (
    MAX_SECONDS,
    SEC_PER_MONTH,
    ValidityError,
    human_duration,
    parse_validity,
    parse_validity_strict,
)


def test_mixed_units():
    assert parse_validity("1y 2mo 4d 1h") == 31557600 + 2 * 2629800 + 4 * 86400 + 3600


@pytest.mark.parametrize(
    "text,expected",
    [
        ("1mo", SEC_PER_MONTH),
        ("1m", 60),
        ("30s", 30),
        ("2 h", 7200),
        ("1y2d", 31557600 + 2 * 86400),
        ("  14d  ", 14 * 86400),
        ("0s", 0),
    ],
)
def test_units(text, expected):
    assert parse_validity(text) == expected


@pytest.mark.parametrize("text", ["", "   ", None])
def test_empty_is_zero(text):
    assert parse_validity(text) == 0
    assert parse_validity_strict(text) == 0


@pytest.mark.parametrize("text", ["5x", "d", "10", "1d 5", "1d x2h", "-1d", "1.5d"])
def test_malformed_is_zero(text):
    assert parse_validity(text) == 0
    with pytest.raises(ValidityError):
        parse_validity_strict(text)


def test_no_partial_result():
    # the valid "1d" must not leak through
    assert parse_validity("1d 3q") == 0


def test_overflow_guarded():
    assert parse_validity("99999999999999999999y") == 0
    assert parse_validity(f"{MAX_SECONDS}s") == MAX_SECONDS
    assert parse_validity(f"{MAX_SECONDS}s 1s") == 0


def test_long_digit_run_is_overflow():
    token = "1" * 5000 + "s"
    assert parse_validity(token) == 0
    with pytest.raises(ValidityError, match="overflow"):
        parse_validity_strict("9" * 5000 + "d")


def test_leading_zeros_do_not_count_as_overflow():
    assert parse_validity_strict("0" * 40 + "5s") == 5


def test_malformed_is_logged(caplog):
    parse_validity("5x")
    assert "unknown unit" in caplog.text


@pytest.mark.parametrize(
    "seconds,expected",
    [
        (0, "0s"),
        (90061, "1d 1h 1m 1s"),
        (3600, "1h"),
        (-60, "-1m"),
        (365 * 86400 + 5, "1y 5s"),
    ],
)
def test_human_duration(seconds, expected):
    assert human_duration(seconds) == expected
