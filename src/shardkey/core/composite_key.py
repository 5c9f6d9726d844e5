"""Composite shard keys: a 16-bit distribution tag and a 48-bit record ordinal.

Layout of the packed 64-bit value (big-endian on the wire):

    |63 ........ 48|47 ................................ 0|
    | distribution |               record                |

The distribution selects a shard or partition, the record identifies an
entity within it. Externally a key travels as an 11-character, unpadded
URL-safe base64 token.

The distribution is carried in a signed 16-bit slot, so its legal range is
0-32767. A buffer with bit 63 set decodes to a negative distribution and is
rejected by the same validator construction uses.
"""
from __future__ import annotations

import base64
import binascii
import dataclasses
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DISTRIBUTION_BITS = 16
RECORD_BITS = 48
DISTRIBUTION_SHIFT = RECORD_BITS

RECORD_MASK = 0x0000FFFFFFFFFFFF
MAX_RECORD = RECORD_MASK
MAX_DISTRIBUTION = (1 << (DISTRIBUTION_BITS - 1)) - 1  # 32767, signed slot

KEY_SIZE = 8        # bytes
TOKEN_LENGTH = 11   # ceil(8 * 8 / 6), no padding
BYTE_ORDER = "big"

_UINT64_MASK = (1 << 64) - 1
_SIGN_BIT_16 = 1 << (DISTRIBUTION_BITS - 1)

# URL-safe base64 alphabet (RFC 4648 section 5)
TOKEN_ALPHABET = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
)


class OutOfRangeError(ValueError):
    """A distribution or record value does not fit its bit field."""


class MalformedInputError(ValueError):
    """A byte buffer or token cannot be decoded into a key."""


def _require_int(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")


def validate_distribution(value: int) -> int:
    """Return value if it is a legal distribution (0-32767)."""
    _require_int("Distribution", value)
    if value < 0:
        raise OutOfRangeError(f"Distribution value must not be negative: {value}")
    if value > MAX_DISTRIBUTION:
        raise OutOfRangeError(
            f"Distribution value must fit a signed 16-bit slot "
            f"(0-{MAX_DISTRIBUTION}): {value}"
        )
    return value


def validate_record(value: int) -> int:
    """Return value if it fits in the 48 least significant bits."""
    _require_int("Record", value)
    # Negative ints have every high bit set, so the mask catches them too.
    if value & ~RECORD_MASK:
        raise OutOfRangeError(
            f"Record value must not exceed 48 least significant bits: {value}"
        )
    return value


@dataclass(frozen=True, slots=True, order=True)
class CompositeKey:
    """
    Immutable (distribution, record) pair with a reversible 64-bit packing.

    Both fields are validated on construction; derived keys built with
    ``with_distribution``/``with_record`` go through the same checks, as
    does every decode path. Ordering follows (distribution, record), which
    is also the ordering of the packed integers.
    """
    distribution: int = 0
    record: int = 0

    def __post_init__(self) -> None:
        validate_distribution(self.distribution)
        validate_record(self.record)

    def with_distribution(self, distribution: int) -> CompositeKey:
        """Return a copy with a new distribution."""
        return dataclasses.replace(self, distribution=distribution)

    def with_record(self, record: int) -> CompositeKey:
        """Return a copy with a new record."""
        return dataclasses.replace(self, record=record)

    # ------------------------------------------------------------------
    # Integer form
    # ------------------------------------------------------------------

    def to_int(self) -> int:
        """Pack into a non-negative 64-bit integer."""
        # Fields occupy disjoint bit ranges, so + and | agree.
        return (self.distribution << DISTRIBUTION_SHIFT) + (self.record & RECORD_MASK)

    @property
    def packed(self) -> int:
        return self.to_int()

    @classmethod
    def from_int(cls, packed: int) -> CompositeKey:
        """Unpack a 64-bit integer, signed or unsigned."""
        _require_int("Packed key", packed)
        if not -(1 << 63) <= packed <= _UINT64_MASK:
            raise MalformedInputError(f"Packed key does not fit in 64 bits: {packed}")
        packed &= _UINT64_MASK
        record = packed & RECORD_MASK
        distribution = packed >> DISTRIBUTION_SHIFT
        if distribution & _SIGN_BIT_16:
            # Reinterpret the top 16 bits as a signed 16-bit value.
            distribution -= 1 << DISTRIBUTION_BITS
        return cls(distribution=distribution, record=record)

    # ------------------------------------------------------------------
    # Byte form
    # ------------------------------------------------------------------

    def to_bytes(self) -> bytes:
        """Serialize to 8 big-endian bytes."""
        return self.to_int().to_bytes(KEY_SIZE, BYTE_ORDER)

    @classmethod
    def from_bytes(cls, buffer, offset: int = 0) -> CompositeKey:
        """Deserialize the 8 bytes starting at offset.

        Bytes past offset + 8 are ignored. Raises MalformedInputError when
        fewer than 8 bytes are available and OutOfRangeError when the
        decoded distribution is negative.
        """
        try:
            view = memoryview(buffer).cast("B")
        except TypeError as exc:
            raise TypeError(
                f"Key buffer must be bytes-like, got {type(buffer).__name__}"
            ) from exc
        if offset < 0 or len(view) - offset < KEY_SIZE:
            logger.debug("Rejected key buffer: %d bytes at offset %d", len(view), offset)
            raise MalformedInputError(
                f"Key buffer needs {KEY_SIZE} bytes at offset {offset}, "
                f"got {max(len(view) - offset, 0)}"
            )
        packed = int.from_bytes(view[offset:offset + KEY_SIZE], BYTE_ORDER)
        return cls.from_int(packed)

    # ------------------------------------------------------------------
    # Token form
    # ------------------------------------------------------------------

    def to_base64url(self) -> str:
        """Encode as an unpadded URL-safe base64 token (11 characters)."""
        return base64.urlsafe_b64encode(self.to_bytes()).decode("ascii").rstrip("=")

    @classmethod
    def from_base64url(cls, token: str) -> CompositeKey:
        """Decode a token produced by to_base64url."""
        if not isinstance(token, str):
            raise TypeError(f"Token must be a str, got {type(token).__name__}")
        if len(token) != TOKEN_LENGTH:
            logger.debug("Rejected token of length %d: %r", len(token), token)
            raise MalformedInputError(
                f"Token must be {TOKEN_LENGTH} characters, got {len(token)}: {token!r}"
            )
        bad = sorted(set(token) - TOKEN_ALPHABET)
        if bad:
            logger.debug("Rejected token with invalid characters: %r", token)
            raise MalformedInputError(
                f"Invalid characters in token {token!r}: {''.join(bad)!r}"
            )
        padded = token + "=" * (-len(token) % 4)
        try:
            raw = base64.urlsafe_b64decode(padded)
        except binascii.Error as exc:
            raise MalformedInputError(f"Token is not valid base64url: {token!r}") from exc
        if len(raw) != KEY_SIZE:
            raise MalformedInputError(
                f"Token must decode to {KEY_SIZE} bytes, got {len(raw)}: {token!r}"
            )
        # The last character carries 2 spare bits; only one spelling is valid.
        canonical = base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
        if canonical != token:
            logger.debug("Rejected non-canonical token %r (expected %r)", token, canonical)
            raise MalformedInputError(f"Token has non-zero trailing bits: {token!r}")
        return cls.from_bytes(raw)

    def __str__(self) -> str:
        return self.to_base64url()


# Convenience functions
def encode_key(distribution: int, record: int) -> str:
    """Encode a (distribution, record) pair straight to a token."""
    return CompositeKey(distribution, record).to_base64url()


def decode_key(token: str) -> tuple[int, int]:
    """Decode a token to a (distribution, record) tuple."""
    key = CompositeKey.from_base64url(token)
    return key.distribution, key.record
