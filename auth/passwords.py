"""
auth/passwords.py -- Credential hashing and verification.

Security design decisions:
  KDF: PBKDF2-HMAC-SHA512 from hashlib, 64-byte output, 16-byte random salt
       per call, iteration count from Settings.pbkdf2_iterations (>= 10,000).
       The iteration count makes each guess deliberately expensive.

  Record format: "<hex(derived_key)>:<hex(salt)>". The salt fed to the KDF is
       the ASCII hex string, not the raw bytes -- records written by earlier
       deployments were derived that way and must keep verifying.

  Comparison: hmac.compare_digest, so verification time does not depend on
       how many leading bytes of the derived key match.

  Malformed records: verify_password() returns False, never raises. A broken
       row in the directory is a failed login, not a 500.

  Logging: nothing in this module logs. Passwords, salts, and derived keys
       (or any prefix of them) must never reach a log line.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

from auth.models import CredentialRecord
from core.config import get_settings

SALT_BYTES = 16
KEY_BYTES = 64
_DIGEST = "sha512"
_SEPARATOR = ":"


class MalformedCredentialRecord(ValueError):
    """The stored credential string cannot be parsed. Internal to this module."""


# ---------------------------------------------------------------------------
# Record (de)serialization
# ---------------------------------------------------------------------------


def serialize_record(record: CredentialRecord) -> str:
    return f"{record.derived_key.hex()}{_SEPARATOR}{record.salt.hex()}"


def parse_record(value: str) -> CredentialRecord:
    """Split "<key_hex>:<salt_hex>" on the first separator and decode both halves.

    Raises MalformedCredentialRecord if either half is missing, empty, or not hex.
    """
    if not isinstance(value, str):
        raise MalformedCredentialRecord("credential record is not a string")
    key_hex, sep, salt_hex = value.partition(_SEPARATOR)
    if not sep or not key_hex or not salt_hex:
        raise MalformedCredentialRecord("credential record is missing a part")
    try:
        return CredentialRecord(derived_key=bytes.fromhex(key_hex), salt=bytes.fromhex(salt_hex))
    except ValueError as exc:
        raise MalformedCredentialRecord("credential record is not hex encoded") from exc


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------


def _derive(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac(
        _DIGEST,
        password.encode("utf-8"),
        salt.hex().encode("ascii"),
        iterations,
        dklen=KEY_BYTES,
    )


def create_credential(password: str, iterations: int | None = None) -> CredentialRecord:
    """Derive a new CredentialRecord for password with a fresh random salt."""
    rounds = iterations if iterations is not None else get_settings().pbkdf2_iterations
    salt = secrets.token_bytes(SALT_BYTES)
    return CredentialRecord(derived_key=_derive(password, salt, rounds), salt=salt)


def hash_password(password: str, iterations: int | None = None) -> str:
    """Return the serialized credential record for password.

    Two calls with the same password return different strings (fresh salt);
    both verify.
    """
    return serialize_record(create_credential(password, iterations))


def verify_password(password: str, record: str, iterations: int | None = None) -> bool:
    """Return True if password matches the serialized credential record.

    Returns False -- never raises -- for a malformed record.
    """
    try:
        parsed = parse_record(record)
    except MalformedCredentialRecord:
        return False
    rounds = iterations if iterations is not None else get_settings().pbkdf2_iterations
    candidate = _derive(password, parsed.salt, rounds)
    return hmac.compare_digest(candidate, parsed.derived_key)


# Timing equalization dummy record [C1].
# login() verifies against this when the username does not exist, so an
# unknown user costs the same KDF work as a wrong password.
DUMMY_RECORD: str = hash_password(secrets.token_hex(16))
