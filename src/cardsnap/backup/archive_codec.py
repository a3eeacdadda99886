"""Archive codec: canonical manifest encoding, per-record checksums, envelope.

Two layers:

  manifest  (cleartext, encrypted as a whole)
      {"schemaVersion", "exportedAt", "records", "stores", "checksums"}

  envelope  (what the user actually carries around)
      {"format", "scheme", "kdf", "iterations", "salt", "iv", "authTag",
       "ciphertext", "info"}

All JSON written here goes through ``canonical_json()``: sorted keys, no
whitespace, UTF-8. Identical inputs therefore give identical bytes, which is
what makes the per-record SHA-256 checksums reproducible.

``info`` is a small preview (schema version, export time, counts) so a caller
can show what an archive contains before asking for the password. It is bound
to the ciphertext as AES-GCM associated data.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from returns.result import Failure, Result, Success

from ..core.errors import (
    ChecksumMismatch,
    CodecError,
    IntegrityError,
    MalformedArchive,
    UnsupportedSchemaVersion,
)
from ..records.models import (
    CardRecord,
    Record,
    RecordKind,
    RecordValidationError,
    StoreRecord,
    format_timestamp,
    parse_timestamp,
    record_key,
    utc_now,
)
from .backup_crypto import BackupCrypto

logger = logging.getLogger(__name__)

# Manifest schema version; increment if the manifest layout changes
SCHEMA_VERSION = 1

ENVELOPE_FORMAT = "cardsnap-backup"

# Lowercase hex SHA-256, as written by compute_checksum
_DIGEST_RE = re.compile(r"[0-9a-f]{64}")


def canonical_json(obj: Any) -> bytes:
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False
    ).encode("utf-8")


def record_bytes(record: Record) -> bytes:
    """Canonical bytes for one record; input to its checksum."""
    return canonical_json(record.to_dict())


def compute_checksum(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# ── Manifest ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ChecksumEntry:
    record_id: str
    kind: RecordKind
    digest: str

    def to_dict(self) -> Dict[str, str]:
        return {"recordId": self.record_id, "kind": self.kind.value, "digest": self.digest}


@dataclass
class Manifest:
    schema_version: int
    exported_at: datetime
    records: List[CardRecord] = field(default_factory=list)
    stores: List[StoreRecord] = field(default_factory=list)
    checksums: List[ChecksumEntry] = field(default_factory=list)

    def all_records(self) -> List[Record]:
        return [*self.records, *self.stores]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "exportedAt": format_timestamp(self.exported_at),
            "records": [r.to_dict() for r in self.records],
            "stores": [s.to_dict() for s in self.stores],
            "checksums": [c.to_dict() for c in self.checksums],
        }


def build_manifest(
    records: Iterable[CardRecord],
    stores: Iterable[StoreRecord],
    exported_at: Optional[datetime] = None,
) -> Manifest:
    """Order records by id and attach one checksum per record."""
    cards = sorted(records, key=lambda r: r.id)
    store_list = sorted(stores, key=lambda s: s.id)
    checksums = [
        ChecksumEntry(r.id, r.kind, compute_checksum(record_bytes(r)))
        for r in [*cards, *store_list]
    ]
    return Manifest(
        schema_version=SCHEMA_VERSION,
        exported_at=exported_at or utc_now(),
        records=cards,
        stores=store_list,
        checksums=checksums,
    )


def serialize_manifest(manifest: Manifest) -> bytes:
    return canonical_json(manifest.to_dict())


def serialize(
    records: Iterable[CardRecord],
    stores: Iterable[StoreRecord],
    exported_at: Optional[datetime] = None,
) -> bytes:
    """Canonical manifest bytes for a record set."""
    return serialize_manifest(build_manifest(records, stores, exported_at))


def _schema_version(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise MalformedArchive(f"Invalid schemaVersion: {value!r}")
    if value > SCHEMA_VERSION:
        raise UnsupportedSchemaVersion(value, SCHEMA_VERSION)
    return value


def _unique(items: List[Record], what: str) -> None:
    seen = set()
    for item in items:
        if item.id in seen:
            raise MalformedArchive(f"Duplicate {what} id: {item.id}")
        seen.add(item.id)


def _parse_checksum(entry: Any) -> ChecksumEntry:
    if not isinstance(entry, dict):
        raise MalformedArchive("Checksum entry must be an object")
    record_id, kind, digest = entry.get("recordId"), entry.get("kind"), entry.get("digest")
    if not isinstance(record_id, str) or not isinstance(digest, str):
        raise MalformedArchive("Checksum entry needs string recordId and digest")
    if not _DIGEST_RE.fullmatch(digest):
        raise MalformedArchive(f"Checksum for {record_id} is not a SHA-256 hex digest")
    try:
        return ChecksumEntry(record_id, RecordKind(kind), digest)
    except ValueError:
        raise MalformedArchive(f"Unknown record kind in checksum: {kind!r}")


def parse_manifest(data: bytes) -> Result[Manifest, CodecError]:
    """Decode manifest bytes; structural problems become MalformedArchive."""
    try:
        doc = json.loads(data.decode("utf-8"))
        if not isinstance(doc, dict):
            raise MalformedArchive("Manifest must be a JSON object")
        version = _schema_version(doc.get("schemaVersion"))
        raw_records, raw_stores = doc.get("records"), doc.get("stores")
        raw_checksums = doc.get("checksums")
        for name, value in (("records", raw_records), ("stores", raw_stores), ("checksums", raw_checksums)):
            if not isinstance(value, list):
                raise MalformedArchive(f"Manifest field '{name}' must be a list")

        records = [CardRecord.from_dict(r) for r in raw_records]
        stores = [StoreRecord.from_dict(s) for s in raw_stores]
        _unique(records, "card")
        _unique(stores, "store")
        now = utc_now()
        for record in [*records, *stores]:
            record.validate(now=now)

        checksums = [_parse_checksum(c) for c in raw_checksums]
        manifest = Manifest(
            schema_version=version,
            exported_at=parse_timestamp(doc.get("exportedAt")),
            records=records,
            stores=stores,
            checksums=checksums,
        )
    except CodecError as e:
        return Failure(e)
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
        return Failure(MalformedArchive(f"Manifest is not valid JSON: {e}"))
    except RecordValidationError as e:
        return Failure(MalformedArchive(f"Invalid record in manifest: {e}"))
    return Success(manifest)


def verify_checksums(manifest: Manifest) -> Result[None, IntegrityError]:
    """Recompute each record's digest; fail on the first mismatch.

    A record with no checksum entry, a duplicated entry, or an entry with no
    record all count as a mismatch for that id.
    """
    expected: Dict[Tuple[str, str], str] = {}
    for entry in manifest.checksums:
        key = (entry.kind.value, entry.record_id)
        if key in expected:
            return Failure(ChecksumMismatch(entry.record_id))
        expected[key] = entry.digest

    for record in manifest.all_records():
        digest = expected.pop(record_key(record), None)
        actual = compute_checksum(record_bytes(record))
        if digest is None or not hmac.compare_digest(digest.encode("ascii"), actual.encode("ascii")):
            logger.debug("Checksum mismatch for %s %s", record.kind.value, record.id)
            return Failure(ChecksumMismatch(record.id))

    if expected:
        orphan = next(iter(expected))
        return Failure(ChecksumMismatch(orphan[1]))
    return Success(None)


# ── Envelope ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ArchiveInfo:
    """Cleartext preview of an archive, readable without the password."""

    schema_version: int
    exported_at: datetime
    record_count: int
    store_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "exportedAt": format_timestamp(self.exported_at),
            "recordCount": self.record_count,
            "storeCount": self.store_count,
        }

    @classmethod
    def from_manifest(cls, manifest: Manifest) -> "ArchiveInfo":
        return cls(
            schema_version=manifest.schema_version,
            exported_at=manifest.exported_at,
            record_count=len(manifest.records),
            store_count=len(manifest.stores),
        )

    def associated_data(self) -> bytes:
        return canonical_json(self.to_dict())


@dataclass(frozen=True)
class Envelope:
    salt: bytes
    iterations: int
    iv: bytes
    auth_tag: bytes
    ciphertext: bytes
    info: ArchiveInfo
    scheme: str = BackupCrypto.SCHEME
    kdf: str = BackupCrypto.KDF

    def to_dict(self) -> Dict[str, Any]:
        b64 = lambda raw: base64.b64encode(raw).decode("ascii")  # noqa: E731
        return {
            "format": ENVELOPE_FORMAT,
            "scheme": self.scheme,
            "kdf": self.kdf,
            "iterations": self.iterations,
            "salt": b64(self.salt),
            "iv": b64(self.iv),
            "authTag": b64(self.auth_tag),
            "ciphertext": b64(self.ciphertext),
            "info": self.info.to_dict(),
        }


def encode_envelope(envelope: Envelope) -> bytes:
    return canonical_json(envelope.to_dict())


def _b64_field(doc: Dict[str, Any], key: str) -> bytes:
    value = doc.get(key)
    if not isinstance(value, str):
        raise MalformedArchive(f"Envelope field '{key}' missing")
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError):
        raise MalformedArchive(f"Envelope field '{key}' is not valid base64")


def _count(info: Dict[str, Any], key: str) -> int:
    value = info.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedArchive(f"Envelope info '{key}' must be a non-negative integer")
    return value


def _parse_info(info: Any) -> ArchiveInfo:
    if not isinstance(info, dict):
        raise MalformedArchive("Envelope info missing")
    try:
        exported_at = parse_timestamp(info.get("exportedAt"))
    except RecordValidationError as e:
        raise MalformedArchive(f"Envelope info: {e}")
    return ArchiveInfo(
        schema_version=_schema_version(info.get("schemaVersion")),
        exported_at=exported_at,
        record_count=_count(info, "recordCount"),
        store_count=_count(info, "storeCount"),
    )


def decode_envelope(data: bytes) -> Result[Envelope, CodecError]:
    """Parse the envelope structure. Never touches the ciphertext contents."""
    try:
        try:
            doc = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError, RecursionError):
            raise MalformedArchive("Archive is not a JSON document")
        if not isinstance(doc, dict) or doc.get("format") != ENVELOPE_FORMAT:
            raise MalformedArchive("Not a CardSnap backup archive")
        if doc.get("scheme") != BackupCrypto.SCHEME:
            raise MalformedArchive(f"Unsupported encryption scheme: {doc.get('scheme')!r}")
        if doc.get("kdf") != BackupCrypto.KDF:
            raise MalformedArchive(f"Unsupported key derivation: {doc.get('kdf')!r}")

        iterations = doc.get("iterations")
        if (
            isinstance(iterations, bool)
            or not isinstance(iterations, int)
            or not BackupCrypto.MIN_ITERATIONS <= iterations <= BackupCrypto.MAX_ITERATIONS
        ):
            raise MalformedArchive(f"Invalid iteration count: {iterations!r}")

        salt, iv = _b64_field(doc, "salt"), _b64_field(doc, "iv")
        auth_tag, ciphertext = _b64_field(doc, "authTag"), _b64_field(doc, "ciphertext")
        if len(salt) < 16:
            raise MalformedArchive("Salt too short")
        if len(iv) < BackupCrypto.NONCE_LENGTH:
            raise MalformedArchive("IV too short")
        if len(auth_tag) != BackupCrypto.TAG_LENGTH:
            raise MalformedArchive("Authentication tag has the wrong length")

        envelope = Envelope(
            salt=salt,
            iterations=iterations,
            iv=iv,
            auth_tag=auth_tag,
            ciphertext=ciphertext,
            info=_parse_info(doc.get("info")),
        )
    except CodecError as e:
        return Failure(e)
    return Success(envelope)
