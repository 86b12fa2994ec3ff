"""The hierarchical version key threaded through every store path.

A run is parameterized by exactly four version tokens, one per level of the
pipeline (``E``, ``S``, ``C``, ``T``). Stores are keyed by a prefix of these
tokens, so changing a later token only changes the paths of the stores at
that depth and deeper, and everything upstream is reused as is.
"""

import re
from dataclasses import dataclass

from labrecipe.errors import ConfigurationError

LEVELS = ("E", "S", "C", "T")
"""Names of the version levels, from coarsest to finest."""
SEPARATOR = "-"
"""Character used to join a role name and the version prefix in a store name."""

TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_.]+$")


def check_token(level: str, token) -> str:
    """Validate a single version token, raising a ``ConfigurationError`` if it
    is empty or not path-safe.

    The separator is not allowed in tokens, otherwise ``("1-2", "3")`` and
    ``("1", "2-3")`` would resolve to the same store.
    """
    if token is None:
        raise ConfigurationError(f"Version token {level} is not set")
    token = str(token)
    if token == "":
        raise ConfigurationError(f"Version token {level} is empty")
    if token in (".", "..") or not TOKEN_PATTERN.match(token):
        raise ConfigurationError(
            f"Version token {level}='{token}' is not path-safe (allowed: letters, digits, '_' and '.')"
        )
    return token


@dataclass(frozen=True)
class VersionKey:
    """Immutable ``(E, S, C, T)`` tuple of version tokens.

    Example:
        .. code-block:: python

            key = VersionKey.from_tokens(E="7", S="0", C="0", T="0")
            key.suffix(2)  # "7-0"
            key.replace(T="1").suffix(4)  # "7-0-0-1"
    """

    tokens: tuple

    def __post_init__(self):
        tokens = tuple(self.tokens)
        if len(tokens) != len(LEVELS):
            raise ConfigurationError(
                f"A version key needs {len(LEVELS)} tokens ({', '.join(LEVELS)}), got {len(tokens)}"
            )
        checked = tuple(check_token(level, token) for level, token in zip(LEVELS, tokens))
        object.__setattr__(self, "tokens", checked)

    @classmethod
    def from_tokens(cls, **tokens) -> "VersionKey":
        """Build a key from keyword tokens, e.g. ``from_tokens(E="7", S="0", C="0", T="0")``."""
        unknown = set(tokens) - set(LEVELS)
        if len(unknown) > 0:
            raise ConfigurationError(f"Unknown version levels: {', '.join(sorted(unknown))}")
        return cls(tuple(tokens.get(level) for level in LEVELS))

    @classmethod
    def parse(cls, text: str) -> "VersionKey":
        """Build a key from its dash-joined form, e.g. ``"7-0-0-0"``."""
        if text is None or text == "":
            raise ConfigurationError("Version key is empty")
        return cls(tuple(text.split(SEPARATOR)))

    def __getitem__(self, level: str) -> str:
        try:
            return self.tokens[LEVELS.index(level)]
        except ValueError:
            raise KeyError(level) from None

    def __str__(self):
        return self.suffix(len(LEVELS))

    def as_dict(self) -> dict[str, str]:
        return dict(zip(LEVELS, self.tokens))

    def prefix(self, depth: int) -> tuple:
        """The first ``depth`` tokens of the key."""
        if depth < 0 or depth > len(LEVELS):
            raise ConfigurationError(f"Version depth {depth} is out of range 0-{len(LEVELS)}")
        return self.tokens[:depth]

    def suffix(self, depth: int) -> str:
        """The dash-joined prefix of the key used in store names (empty for depth 0)."""
        return SEPARATOR.join(self.prefix(depth))

    def replace(self, **tokens) -> "VersionKey":
        """Return a copy of this key with the given levels changed."""
        values = self.as_dict()
        for level, token in tokens.items():
            if level not in values:
                raise ConfigurationError(f"Unknown version level: {level}")
            values[level] = token
        return VersionKey.from_tokens(**values)
