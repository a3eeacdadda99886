"""Card and store records held by the wallet vault.

Both record kinds share the same wire shape rules:
  - camelCase keys (the archive format is shared with the mobile client)
  - timestamps as ISO-8601 UTC strings
  - optional fields always present, set to null when empty

``to_dict()`` / ``from_dict()`` are the single source of truth for that shape;
the archive codec builds its canonical bytes from ``to_dict()``.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class CodeFormat(str, Enum):
    """Barcode symbologies a card payload can be rendered as."""
    QR = "qr"
    CODE128 = "code128"
    EAN13 = "ean13"
    UPC_A = "upc_a"
    PDF417 = "pdf417"
    CODE39 = "code39"

    @property
    def display_name(self) -> str:
        return _FORMAT_DISPLAY_NAMES[self]


_FORMAT_DISPLAY_NAMES = {
    CodeFormat.QR: "QR Code",
    CodeFormat.CODE128: "Code 128",
    CodeFormat.EAN13: "EAN-13",
    CodeFormat.UPC_A: "UPC-A",
    CodeFormat.PDF417: "PDF417",
    CodeFormat.CODE39: "Code 39",
}


class RecordKind(str, Enum):
    CARD = "card"
    STORE = "store"


class RecordValidationError(ValueError):
    """A record violates a data-model invariant."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render an aware datetime as a fixed-width UTC ISO-8601 string."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str):
        raise RecordValidationError(f"Timestamp must be a string, got {type(value).__name__}")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise RecordValidationError(f"Invalid timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise RecordValidationError(f"Field '{key}' must be a string or null")
    return value


def _required_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise RecordValidationError(f"Field '{key}' is required and must be a string")
    return value


@dataclass(frozen=True)
class CardRecord:
    """One loyalty/discount card."""

    id: str
    name: str
    code: str
    code_format: CodeFormat
    created_at: datetime
    updated_at: datetime
    store_id: Optional[str] = None
    notes: Optional[str] = None
    color_hex: Optional[str] = None
    image_ref: Optional[str] = None
    archived: bool = False

    kind = RecordKind.CARD

    def validate(self, now: Optional[datetime] = None) -> None:
        """Raise RecordValidationError if the card breaks an invariant."""
        if not self.id:
            raise RecordValidationError("Card id must not be empty")
        if not self.name.strip():
            raise RecordValidationError(f"Card {self.id}: name must not be blank")
        if not self.code.strip():
            raise RecordValidationError(f"Card {self.id}: code must not be blank")
        if self.updated_at < self.created_at:
            raise RecordValidationError(f"Card {self.id}: updated_at precedes created_at")
        if self.created_at > (now or utc_now()):
            raise RecordValidationError(f"Card {self.id}: created_at is in the future")

    def touch(self, **changes) -> "CardRecord":
        """Return a copy with *changes* applied and updated_at bumped."""
        return replace(self, updated_at=changes.pop("updated_at", utc_now()), **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "storeId": self.store_id,
            "code": self.code,
            "codeFormat": self.code_format.value,
            "notes": self.notes,
            "colorHex": self.color_hex,
            "imageRef": self.image_ref,
            "archived": self.archived,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CardRecord":
        if not isinstance(data, dict):
            raise RecordValidationError("Card entry must be an object")
        try:
            code_format = CodeFormat(data.get("codeFormat"))
        except ValueError as e:
            raise RecordValidationError(f"Unknown code format: {data.get('codeFormat')!r}") from e
        archived = data.get("archived", False)
        if not isinstance(archived, bool):
            raise RecordValidationError("Field 'archived' must be a boolean")
        return cls(
            id=_required_str(data, "id"),
            name=_required_str(data, "name"),
            code=_required_str(data, "code"),
            code_format=code_format,
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
            store_id=_optional_str(data, "storeId"),
            notes=_optional_str(data, "notes"),
            color_hex=_optional_str(data, "colorHex"),
            image_ref=_optional_str(data, "imageRef"),
            archived=archived,
        )


@dataclass(frozen=True)
class StoreRecord:
    """Merchant metadata. Cards point at stores by id only."""

    id: str
    brand_name: str
    country_code: str
    updated_at: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    supported_formats: Tuple[CodeFormat, ...] = ()

    kind = RecordKind.STORE

    def __post_init__(self):
        # Coordinates are always floats so 52 and 52.0 serialize to the same bytes
        for name in ("latitude", "longitude"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, bool) and isinstance(value, int):
                object.__setattr__(self, name, float(value))
        object.__setattr__(self, "supported_formats", tuple(self.supported_formats))

    def validate(self, now: Optional[datetime] = None) -> None:
        if not self.id:
            raise RecordValidationError("Store id must not be empty")
        if not self.brand_name.strip():
            raise RecordValidationError(f"Store {self.id}: brand name must not be blank")
        if len(self.country_code) != 2 or not self.country_code.isalpha():
            raise RecordValidationError(
                f"Store {self.id}: country code must be ISO-3166 alpha-2"
            )
        if self.latitude is not None and not -90.0 <= self.latitude <= 90.0:
            raise RecordValidationError(f"Store {self.id}: latitude out of range")
        if self.longitude is not None and not -180.0 <= self.longitude <= 180.0:
            raise RecordValidationError(f"Store {self.id}: longitude out of range")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "brandName": self.brand_name,
            "countryCode": self.country_code,
            "latitude": self.latitude,
            "longitude": self.longitude,
            # Sorted so equal sets always serialize identically
            "supportedFormats": sorted(f.value for f in self.supported_formats),
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoreRecord":
        if not isinstance(data, dict):
            raise RecordValidationError("Store entry must be an object")
        formats = data.get("supportedFormats") or []
        if not isinstance(formats, list):
            raise RecordValidationError("Field 'supportedFormats' must be a list")
        try:
            supported = tuple(CodeFormat(f) for f in formats)
        except ValueError as e:
            raise RecordValidationError(f"Unknown code format in store: {formats!r}") from e
        coords = {}
        for key in ("latitude", "longitude"):
            value = data.get(key)
            if value is not None and (isinstance(value, bool) or not isinstance(value, (int, float))):
                raise RecordValidationError(f"Field '{key}' must be a number or null")
            coords[key] = float(value) if value is not None else None
        return cls(
            id=_required_str(data, "id"),
            brand_name=_required_str(data, "brandName"),
            country_code=_required_str(data, "countryCode"),
            updated_at=parse_timestamp(data.get("updatedAt")),
            supported_formats=supported,
            **coords,
        )


Record = Union[CardRecord, StoreRecord]


def record_key(record: Record) -> tuple:
    """Identity used for partitioning and ordering: (kind, id)."""
    return (record.kind.value, record.id)
