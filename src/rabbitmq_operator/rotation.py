"""Password rotation for users.

A user's password is write-only: it is accepted from the declaration but
never stored in observed state. What is stored is a caller-chosen version
marker. A new password hash is pushed to the broker only when that marker
changes; otherwise the hash the broker already holds is sent back
unchanged, because the management API replaces the whole user record on
every PUT.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass

from .errors import ConfigurationInvalid

SHA256_HASHING_ALGORITHM = "rabbit_password_hashing_sha256"
SALT_LENGTH_BYTES = 4


def hash_password(password: str, salt: bytes | None = None) -> str:
    """Hash a password the way the broker's SHA-256 backend expects.

    The result is base64(salt + sha256(salt + utf8(password))) with a
    4-byte random salt.
    """
    if salt is None:
        salt = secrets.token_bytes(SALT_LENGTH_BYTES)
    digest = hashlib.sha256(salt + password.encode("utf-8")).digest()
    return base64.b64encode(salt + digest).decode("ascii")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a plaintext password against a SHA-256 broker hash."""
    raw = base64.b64decode(password_hash)
    salt = raw[:SALT_LENGTH_BYTES]
    return secrets.compare_digest(hash_password(password, salt), password_hash)


@dataclass(frozen=True)
class PasswordUpdate:
    """Password fields to submit with a user PUT."""

    rotate: bool
    password_hash: str
    hashing_algorithm: str


def needs_rotation(desired_version: str, observed_version: str | None) -> bool:
    """A rotation is due whenever the version marker differs."""
    return desired_version != observed_version


def plan_password_update(
    desired_version: str,
    observed_version: str | None,
    password: str | None,
    observed_hash: str,
    observed_algorithm: str,
) -> PasswordUpdate:
    """Decide which password hash accompanies a user update.

    Args:
        desired_version: Version marker from the declaration.
        observed_version: Version marker recorded at the last reconcile.
        password: Write-only password from the declaration, if supplied.
        observed_hash: Hash currently stored by the broker.
        observed_algorithm: Hashing algorithm currently stored by the broker.

    Returns:
        The hash to submit. When not rotating, the observed hash and
        algorithm are returned unchanged.

    Raises:
        ConfigurationInvalid: If a rotation is due but no password was given.
    """
    if not needs_rotation(desired_version, observed_version):
        return PasswordUpdate(
            rotate=False,
            password_hash=observed_hash,
            hashing_algorithm=observed_algorithm,
        )

    if not password:
        raise ConfigurationInvalid(
            "password_wo_version changed but no password_wo was supplied",
            errors=["password_wo: required when password_wo_version changes"],
        )

    return PasswordUpdate(
        rotate=True,
        password_hash=hash_password(password),
        hashing_algorithm=SHA256_HASHING_ALGORITHM,
    )
