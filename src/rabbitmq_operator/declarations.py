"""Declaration file loading with validation.

A declaration file lists the broker objects that should exist:

    users:
      - name: svc
        passwordEnv: SVC_PASSWORD
        passwordWoVersion: "1"
        tags: [management]
    vhosts:
      - name: staging
    permissions:
      - user: svc
        vhost: staging
        configure: ".*"
        write: ".*"
        read: ".*"
    topicPermissions: []
    exchanges:
      - name: events
        vhost: staging
        settings:
          type: topic
          durable: true

Entries are validated into the desired models before any broker call.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .config import MAX_DECLARATION_FILE_SIZE_BYTES
from .errors import ConfigurationInvalid, MalformedIdentifier
from .models import (
    DesiredObject,
    ExchangeSpec,
    PermissionSpec,
    TopicPermissionSpec,
    UserSpec,
    VhostSpec,
    validate_desired,
)

logger = logging.getLogger(__name__)

# Top-level keys in the order objects are applied; grants come after the
# users and vhosts they refer to
SECTIONS: tuple[tuple[str, type[DesiredObject]], ...] = (
    ("vhosts", VhostSpec),
    ("users", UserSpec),
    ("exchanges", ExchangeSpec),
    ("permissions", PermissionSpec),
    ("topicPermissions", TopicPermissionSpec),
)

PASSWORD_ENV_KEY = "passwordEnv"


class DeclarationLoadError(Exception):
    """Raised when a declaration file cannot be loaded or validated."""

    pass


@dataclass
class Declarations:
    """Validated declarations, grouped by kind."""

    vhosts: list[VhostSpec] = field(default_factory=list)
    users: list[UserSpec] = field(default_factory=list)
    exchanges: list[ExchangeSpec] = field(default_factory=list)
    permissions: list[PermissionSpec] = field(default_factory=list)
    topic_permissions: list[TopicPermissionSpec] = field(default_factory=list)

    def __iter__(self) -> Iterator[DesiredObject]:
        yield from self.vhosts
        yield from self.users
        yield from self.exchanges
        yield from self.permissions
        yield from self.topic_permissions

    def __len__(self) -> int:
        return sum(1 for _ in self)


def _resolve_password(entry: dict[str, Any], location: str) -> dict[str, Any]:
    """Replace passwordEnv with the value of the named environment variable."""
    if PASSWORD_ENV_KEY not in entry:
        return entry
    variable = entry[PASSWORD_ENV_KEY]
    if "passwordWo" in entry or "password" in entry:
        raise DeclarationLoadError(
            f"{location}: passwordEnv cannot be combined with a literal password"
        )
    value = os.environ.get(str(variable))
    if not value:
        raise DeclarationLoadError(
            f"{location}: environment variable {variable} is not set"
        )
    resolved = {k: v for k, v in entry.items() if k != PASSWORD_ENV_KEY}
    resolved["passwordWo"] = value
    return resolved


def parse_declarations(data: dict[str, Any], source: str = "<declarations>") -> Declarations:
    """Validate a parsed declaration mapping.

    Raises:
        DeclarationLoadError: On unknown sections, non-list sections or
            entries that fail model validation.
    """
    known = {name for name, _ in SECTIONS}
    unknown = set(data) - known
    if unknown:
        raise DeclarationLoadError(
            f"Unknown sections in {source}: {sorted(unknown)}. Valid sections: {sorted(known)}"
        )

    parsed: dict[str, list[DesiredObject]] = {}
    errors: list[str] = []
    for section, model in SECTIONS:
        entries = data.get(section) or []
        if not isinstance(entries, list):
            raise DeclarationLoadError(f"Section '{section}' in {source} must be a list")

        objects: list[DesiredObject] = []
        for index, entry in enumerate(entries):
            location = f"{section}[{index}]"
            if not isinstance(entry, dict):
                errors.append(f"  - {location}: entry must be a mapping")
                continue
            if model is UserSpec:
                entry = _resolve_password(entry, location)
            try:
                objects.append(validate_desired(model, entry))
            except ConfigurationInvalid as e:
                errors.extend(f"  - {location}.{err}" for err in e.errors)
        parsed[section] = objects

    if errors:
        raise DeclarationLoadError(f"Validation failed for {source}:\n" + "\n".join(errors))

    declarations = Declarations(
        vhosts=parsed["vhosts"],  # type: ignore[arg-type]
        users=parsed["users"],  # type: ignore[arg-type]
        exchanges=parsed["exchanges"],  # type: ignore[arg-type]
        permissions=parsed["permissions"],  # type: ignore[arg-type]
        topic_permissions=parsed["topicPermissions"],  # type: ignore[arg-type]
    )
    _check_duplicates(declarations, source)
    return declarations


def _check_duplicates(declarations: Declarations, source: str) -> None:
    seen: set[tuple[str, str]] = set()
    for desired in declarations:
        try:
            key = (desired.KIND.value, desired.identifier)
        except MalformedIdentifier as e:
            raise DeclarationLoadError(f"Invalid {desired.KIND.value} key in {source}: {e}") from e
        if key in seen:
            raise DeclarationLoadError(
                f"Duplicate {desired.KIND.value} '{desired.identifier}' in {source}"
            )
        seen.add(key)


def load_declarations(path: Path) -> Declarations:
    """Load and validate a declaration file.

    Args:
        path: YAML file to read.

    Returns:
        Validated declarations.

    Raises:
        DeclarationLoadError: If the file cannot be loaded or validated.
    """
    if not path.exists():
        raise DeclarationLoadError(f"Declaration file not found: {path}")

    # Check file size before reading
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise DeclarationLoadError(f"Failed to stat declaration file {path}: {e}") from e

    if file_size > MAX_DECLARATION_FILE_SIZE_BYTES:
        raise DeclarationLoadError(
            f"Declaration file exceeds maximum size of "
            f"{MAX_DECLARATION_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise DeclarationLoadError(f"Failed to read declaration file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise DeclarationLoadError(f"Invalid YAML in {path}: {e}") from e

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise DeclarationLoadError(f"Declaration file must contain a YAML mapping: {path}")

    declarations = parse_declarations(raw_data, str(path))
    logger.info(
        "Loaded declarations",
        extra={"path": str(path), "objects": len(declarations)},
    )
    return declarations
