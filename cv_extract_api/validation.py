"""Validation of the base64 PDF payload submitted by callers."""

import base64
import binascii
import re
from dataclasses import dataclass

from cv_extract_api.config import get_settings
from cv_extract_api.errors import (
    InvalidEncoding,
    MalformedDocument,
    MissingField,
    PayloadTooLarge,
)

PDF_MIME_TYPE = "application/pdf"

# Prefix browsers add when a file is read with FileReader.readAsDataURL
DATA_URL_PREFIX = re.compile(r"^data:application/pdf;base64,", re.IGNORECASE)

_WHITESPACE = re.compile(r"\s+")
_BASE64_ALPHABET = re.compile(r"^[A-Za-z0-9+/=]+$")

PDF_HEADER = b"%PDF"
PDF_EOF_MARKER = b"%%EOF"


@dataclass(frozen=True)
class ExtractionRequest:
    """A decoded document ready to be sent to the model."""

    payload: bytes
    mime_type: str = PDF_MIME_TYPE

    @property
    def size(self) -> int:
        return len(self.payload)

    @property
    def base64(self) -> str:
        """Canonical base64 form (no prefix, no whitespace)."""
        return base64.b64encode(self.payload).decode("ascii")


def strip_data_url_prefix(value: str) -> str:
    """Remove a leading ``data:application/pdf;base64,`` marker if present."""
    return DATA_URL_PREFIX.sub("", value.strip(), count=1)


def estimate_decoded_size(usable: str) -> float:
    """Estimate decoded byte size from base64 length (3 bytes per 4 chars)."""
    return len(usable) * 0.75


class InputValidator:
    """Checks format, size and (optionally) PDF structure of a base64 payload."""

    def __init__(
        self,
        max_size_bytes: int | None = None,
        verify_structure: bool | None = None,
    ):
        """Initialize the validator.

        Args:
            max_size_bytes: Decoded size ceiling. Defaults to config value.
            verify_structure: Check for PDF header/EOF markers. Defaults to config value.
        """
        settings = get_settings()
        self._max_size_bytes = (
            max_size_bytes if max_size_bytes is not None else settings.max_pdf_size_bytes
        )
        self._verify_structure = (
            verify_structure if verify_structure is not None else settings.verify_pdf_structure
        )

    @property
    def max_size_mb(self) -> float:
        return round(self._max_size_bytes / (1024 * 1024), 3)

    def _usable(self, payload: object) -> str:
        if not isinstance(payload, str) or not payload.strip():
            raise MissingField("pdfBase64 must be a non-empty string")

        usable = _WHITESPACE.sub("", strip_data_url_prefix(payload))
        if not usable or not _BASE64_ALPHABET.match(usable):
            raise InvalidEncoding("pdfBase64 contains characters outside the base64 alphabet")
        return usable

    def validate(self, payload: object) -> int:
        """Validate a payload string and return its estimated decoded size.

        Raises:
            MissingField: payload is not a non-empty string.
            InvalidEncoding: payload has non-base64 characters.
            PayloadTooLarge: estimated size exceeds the ceiling.
            MalformedDocument: structure check enabled and markers missing.
        """
        usable = self._usable(payload)
        size = self._check_size(usable)
        if self._verify_structure:
            self._check_structure(self._decode(usable))
        return size

    def to_request(self, payload: object) -> ExtractionRequest:
        """Validate a payload and decode it into an ExtractionRequest."""
        usable = self._usable(payload)
        self._check_size(usable)
        data = self._decode(usable)
        if self._verify_structure:
            self._check_structure(data)
        return ExtractionRequest(payload=data)

    def _check_size(self, usable: str) -> int:
        size = estimate_decoded_size(usable)
        if size > self._max_size_bytes:
            raise PayloadTooLarge(
                self.max_size_mb,
                f"estimated {size:.0f} bytes exceeds ceiling of {self._max_size_bytes} bytes",
            )
        return int(size)

    @staticmethod
    def _decode(usable: str) -> bytes:
        try:
            return base64.b64decode(usable, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidEncoding(f"base64 decoding failed: {e}") from e

    @staticmethod
    def _check_structure(data: bytes) -> None:
        # Heuristic only: some valid PDFs carry leading junk or a trailing
        # marker variant and will be rejected here.
        if not data.startswith(PDF_HEADER):
            raise MalformedDocument("decoded payload does not start with %PDF")
        if PDF_EOF_MARKER not in data:
            raise MalformedDocument("decoded payload has no %%EOF marker")
