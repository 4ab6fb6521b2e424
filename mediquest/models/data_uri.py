"""
Data URI parsing for images and documents passed between the caller,
the model endpoint and blob storage.

Expected format: ``data:<mimetype>;base64,<encoded_data>``.
"""

import base64
import binascii
import re
from dataclasses import dataclass

SUPPORTED_IMAGE_TYPES: dict[str, str] = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}

SUPPORTED_DOCUMENT_TYPES: dict[str, str] = {
    **SUPPORTED_IMAGE_TYPES,
    "application/pdf": "pdf",
}

_DATA_URI_PATTERN = re.compile(
    r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?:;[\w-]+=[\w.-]+)*;base64,(?P<data>.*)$",
    re.DOTALL,
)


@dataclass(frozen=True)
class DataUri:
    """A decoded-on-demand base64 data URI."""

    mime_type: str
    payload: str

    @property
    def extension(self) -> str:
        return SUPPORTED_DOCUMENT_TYPES.get(self.mime_type, "bin")

    def decode(self) -> bytes:
        return base64.b64decode(self.payload, validate=True)

    def to_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.payload}"

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str) -> "DataUri":
        return cls(mime_type=mime_type, payload=base64.b64encode(data).decode("ascii"))


def parse_data_uri(value: str, allowed_types: dict[str, str] = SUPPORTED_IMAGE_TYPES) -> DataUri:
    """
    Parse and check a base64 data URI.

    Args:
        value: The data URI string.
        allowed_types: MIME types accepted for this payload.

    Returns:
        The parsed DataUri.

    Raises:
        ValueError: If the string is empty, not a base64 data URI, carries an
            unsupported MIME type, or its payload is not valid base64.
    """
    if not value or not value.strip():
        raise ValueError("Encoded payload cannot be empty")

    match = _DATA_URI_PATTERN.match(value.strip())
    if not match:
        raise ValueError("Expected a base64 data URI: data:<mimetype>;base64,<data>")

    mime_type = match.group("mime").lower()
    if mime_type not in allowed_types:
        raise ValueError(
            f"Unsupported encoding {mime_type!r}; expected one of {sorted(allowed_types)}"
        )

    payload = re.sub(r"\s+", "", match.group("data"))
    if not payload:
        raise ValueError("Encoded payload cannot be empty")
    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("Payload is not valid base64") from e

    return DataUri(mime_type=mime_type, payload=payload)
