"""Change-detection fingerprints.

A destination path is fingerprinted either by content hash (when it is in the
platform's hash-tracked set) or by the UTC mtime of its source file. Both kinds
persist as plain text; decoding needs the same hash-tracked set that produced
them, so the delta step decodes once, at its boundary.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Collection, Union

from .core.hashing import hash_bytes, hash_file
from .errors import TimestampParseError
from .manifest import to_slash

_STRICT_FORMATS = ("%Y-%m-%dT%H:%M:%S.%fZ", "%Y-%m-%dT%H:%M:%SZ")


class FingerprintKind(enum.Enum):
    HASH = "hash"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class Hash:
    digest: str

    kind = FingerprintKind.HASH

    def encode(self) -> str:
        return self.digest


@dataclass(frozen=True)
class Timestamp:
    instant: datetime

    kind = FingerprintKind.TIMESTAMP

    def encode(self) -> str:
        return format_timestamp(self.instant)


Fingerprint = Union[Hash, Timestamp]


def format_timestamp(dt: datetime) -> str:
    """UTC, millisecond precision, literal trailing Z."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def timestamp_from_mtime(mtime: float) -> Timestamp:
    dt = datetime.fromtimestamp(mtime, tz=timezone.utc)
    return Timestamp(dt.replace(microsecond=(dt.microsecond // 1000) * 1000))


def parse_timestamp(text: str, path: str = "") -> datetime:
    value = text.strip()
    for fmt in _STRICT_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise TimestampParseError(path, text) from None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ----- classifier -----

def is_hash_tracked(dest_path: str, hash_tracked: Collection[str]) -> bool:
    """Tracked-set membership, ignoring case so lower-cased destinations still match."""
    d = to_slash(dest_path)
    if d in hash_tracked:
        return True
    d = d.lower()
    return any(to_slash(t).lower() == d for t in hash_tracked)


def classify(dest_path: str, hash_tracked: Collection[str]) -> FingerprintKind:
    if is_hash_tracked(dest_path, hash_tracked):
        return FingerprintKind.HASH
    return FingerprintKind.TIMESTAMP


def make_fingerprint(dest_path: str, hash_tracked: Collection[str], *,
                     content: bytes | None = None, mtime: float | None = None) -> Fingerprint:
    """Pure form of the classifier: bytes for hash-tracked paths, mtime otherwise."""
    if classify(dest_path, hash_tracked) is FingerprintKind.HASH:
        if content is None:
            raise ValueError(f"{dest_path} is hash-tracked, file content required")
        return Hash(hash_bytes(content))
    if mtime is None:
        raise ValueError(f"{dest_path} is timestamp-tracked, mtime required")
    return timestamp_from_mtime(mtime)


def fingerprint_file(dest_path: str, hash_tracked: Collection[str],
                     source_file: Path, staged_file: Path, digest: str | None = None) -> Fingerprint:
    """Hash the staged copy, or timestamp the source it was copied from.

    digest, when given, is an already computed hash of staged_file.
    """
    if classify(dest_path, hash_tracked) is FingerprintKind.HASH:
        return Hash(digest or hash_file(staged_file))
    return make_fingerprint(dest_path, hash_tracked, mtime=source_file.stat().st_mtime)


def decode(dest_path: str, text: str, hash_tracked: Collection[str]) -> Fingerprint:
    """Turn persisted text back into a fingerprint; bad timestamps raise."""
    if classify(dest_path, hash_tracked) is FingerprintKind.HASH:
        return Hash(text.strip())
    return Timestamp(parse_timestamp(text, dest_path))


# ----- comparison -----

def newest(current: Fingerprint, seen: Fingerprint) -> Fingerprint:
    """Pick which of two records of the same path to keep when merging."""
    if isinstance(current, Timestamp) and isinstance(seen, Timestamp):
        return seen if seen.instant > current.instant else current
    # hashes: the most recently seen distinct value wins
    return seen


def needs_transfer(staged: Fingerprint, prior: Fingerprint | None) -> bool:
    if prior is None:
        return True
    if isinstance(staged, Hash) and isinstance(prior, Hash):
        return staged.digest.lower() != prior.digest.lower()
    if isinstance(staged, Timestamp) and isinstance(prior, Timestamp):
        return staged.instant > prior.instant
    return True
