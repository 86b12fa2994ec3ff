import pytest

from labrecipe.errors import ConfigurationError
from labrecipe.version import VersionKey, check_token


def test_parse_and_str():
    """A key parsed from its dash-joined form should print back the same way."""
    key = VersionKey.parse("7-0-0-0")
    assert key.tokens == ("7", "0", "0", "0")
    assert str(key) == "7-0-0-0"


def test_from_tokens_matches_parse():
    """Keys built from keyword tokens and from text should be equal and hash the same."""
    a = VersionKey.from_tokens(E="7", S="0", C="0", T="1")
    b = VersionKey.parse("7-0-0-1")
    assert a == b
    assert hash(a) == hash(b)


def test_numeric_tokens_are_strings():
    """Integer tokens should be accepted and stored as strings."""
    key = VersionKey.from_tokens(E=7, S=0, C=0, T=0)
    assert key.tokens == ("7", "0", "0", "0")


def test_prefix_and_suffix():
    """Prefixes should have the requested number of tokens, suffixes dash-join them."""
    key = VersionKey.parse("7-1-2-3")
    assert key.prefix(0) == ()
    assert key.prefix(2) == ("7", "1")
    assert key.suffix(0) == ""
    assert key.suffix(1) == "7"
    assert key.suffix(3) == "7-1-2"
    assert key.suffix(4) == "7-1-2-3"


def test_prefix_out_of_range():
    """Asking for a prefix deeper than the key should raise a configuration error."""
    key = VersionKey.parse("7-0-0-0")
    with pytest.raises(ConfigurationError):
        key.prefix(5)


def test_getitem_by_level():
    """Tokens should be accessible by level name."""
    key = VersionKey.parse("7-1-2-3")
    assert key["E"] == "7"
    assert key["T"] == "3"
    with pytest.raises(KeyError):
        key["X"]


def test_replace_only_changes_given_level():
    """Replacing a level should leave the other levels and the original key unchanged."""
    key = VersionKey.parse("7-0-0-0")
    new_key = key.replace(T="1")
    assert str(new_key) == "7-0-0-1"
    assert str(key) == "7-0-0-0"


@pytest.mark.parametrize("token", ["", "a-b", "a/b", "..", ".", "has space", None])
def test_invalid_tokens_rejected(token):
    """Empty, separator-containing and path-unsafe tokens should be rejected."""
    with pytest.raises(ConfigurationError):
        check_token("E", token)


@pytest.mark.parametrize("token", ["7", "v1.2", "abc_DEF", "0"])
def test_valid_tokens_accepted(token):
    """Letters, digits, underscores and dots should all be fine."""
    assert check_token("E", token) == token


def test_wrong_number_of_tokens():
    """A key with too few or too many tokens should be rejected."""
    with pytest.raises(ConfigurationError):
        VersionKey.parse("7-0-0")
    with pytest.raises(ConfigurationError):
        VersionKey.parse("7-0-0-0-0")


def test_missing_level_rejected():
    """Building a key without all four levels should be rejected."""
    with pytest.raises(ConfigurationError):
        VersionKey.from_tokens(E="7", S="0", C="0")


def test_unknown_level_rejected():
    """Unknown level names should be rejected rather than ignored."""
    with pytest.raises(ConfigurationError):
        VersionKey.from_tokens(E="7", S="0", C="0", T="0", X="1")


def test_key_is_immutable():
    """Version keys are frozen."""
    key = VersionKey.parse("7-0-0-0")
    with pytest.raises(AttributeError):
        key.tokens = ("8", "0", "0", "0")
