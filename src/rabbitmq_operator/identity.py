"""Composite identifiers for objects keyed on more than one field.

Exchanges, permissions and topic permissions are addressed by several
natural-key fields. They are exposed to the declarative engine as a single
token made by joining the fields with IDENTIFIER_DELIMITER, e.g.
"svc@staging" for the permissions of user "svc" in vhost "staging".
Users and vhosts use their name as-is.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .errors import MalformedIdentifier

IDENTIFIER_DELIMITER = "@"


@dataclass(frozen=True)
class IdentifierFormat:
    """Ordered field names making up a kind's import token."""

    fields: tuple[str, ...]

    @property
    def part_count(self) -> int:
        return len(self.fields)

    @property
    def pattern(self) -> str:
        """Human-readable format, e.g. "user@vhost@exchange"."""
        return IDENTIFIER_DELIMITER.join(self.fields)


EXCHANGE_FORMAT = IdentifierFormat(("name", "vhost"))
PERMISSION_FORMAT = IdentifierFormat(("user", "vhost"))
TOPIC_PERMISSION_FORMAT = IdentifierFormat(("user", "vhost", "exchange"))


def encode(parts: Sequence[str]) -> str:
    """Join natural-key parts into an identifier token.

    Raises:
        MalformedIdentifier: If a part is empty or contains the delimiter,
            since the token could not be decoded back unambiguously.
    """
    for part in parts:
        if not part or IDENTIFIER_DELIMITER in part:
            placeholder = IDENTIFIER_DELIMITER.join(f"part{i}" for i in range(len(parts)))
            raise MalformedIdentifier(
                IDENTIFIER_DELIMITER.join(parts),
                placeholder,
                operation="encode",
            )
    return IDENTIFIER_DELIMITER.join(parts)


def decode(
    token: str,
    expected_part_count: int,
    expected_format: str | None = None,
    *,
    kind: str | None = None,
) -> list[str]:
    """Split an identifier token into its natural-key parts.

    Args:
        token: The import token, e.g. "user@vhost@exchange".
        expected_part_count: Number of parts the kind is keyed on.
        expected_format: Format shown in the error message.
        kind: Object kind recorded on the error.

    Returns:
        The parts in order.

    Raises:
        MalformedIdentifier: On a wrong part count or any empty part.
    """
    parts = token.split(IDENTIFIER_DELIMITER)
    if len(parts) != expected_part_count or any(part == "" for part in parts):
        fmt = expected_format or IDENTIFIER_DELIMITER.join(
            f"part{i}" for i in range(expected_part_count)
        )
        raise MalformedIdentifier(token, fmt, operation="import", kind=kind)
    return parts


def encode_as(fmt: IdentifierFormat, values: dict[str, str], *, kind: str | None = None) -> str:
    """Encode the named key fields in the order the format declares."""
    try:
        return encode([values[name] for name in fmt.fields])
    except MalformedIdentifier as e:
        raise MalformedIdentifier(e.token, fmt.pattern, operation="encode", kind=kind) from e


def decode_as(fmt: IdentifierFormat, token: str, *, kind: str | None = None) -> dict[str, str]:
    """Decode a token into a mapping of key field name to value."""
    parts = decode(token, fmt.part_count, fmt.pattern, kind=kind)
    return dict(zip(fmt.fields, parts, strict=True))
