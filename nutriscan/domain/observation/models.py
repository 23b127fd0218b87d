"""
Observation domain models.

An observation is the triggering input of a resolution: a photo of a
plate or a scanned barcode. Both are immutable and keyed by content so
that identical observations share a cache entry across users.
"""

from __future__ import annotations

import hashlib
import re
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


_NON_DIGITS = re.compile(r"\D")


class PhotoObservation(BaseModel):
    """
    Photo of a dish.

    The SHA-256 of the image bytes is computed when not supplied and
    is the content key used by the response cache.

    Example:
        >>> photo = PhotoObservation(image_bytes=b"...jpeg...")
        >>> assert len(photo.image_hash) == 64
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["photo"] = "photo"
    image_bytes: bytes = Field(..., min_length=1, repr=False)
    image_hash: str = Field("", description="SHA-256 hex digest of image_bytes")

    @model_validator(mode="before")
    @classmethod
    def compute_hash(cls, data: Any) -> Any:
        """Fill image_hash from the bytes when missing."""
        if isinstance(data, dict) and not data.get("image_hash"):
            raw = data.get("image_bytes")
            if isinstance(raw, (bytes, bytearray)) and raw:
                data = {**data, "image_hash": hashlib.sha256(raw).hexdigest()}
        return data


class BarcodeObservation(BaseModel):
    """
    Scanned product barcode.

    Scanner noise (spaces, dashes, check-digit separators) is stripped;
    what remains must be 1-14 digits. Short internal codes such as store
    labels are allowed, they simply miss in the public databases.

    Example:
        >>> obs = BarcodeObservation(code=" 8901-058000290 ")
        >>> assert obs.code == "8901058000290"
        >>> assert obs.barcode_type == "EAN-13"
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["barcode"] = "barcode"
    code: str = Field(..., description="Barcode digits")

    @field_validator("code", mode="before")
    @classmethod
    def clean_code(cls, v: str) -> str:
        """Keep digits only."""
        if not isinstance(v, str):
            raise ValueError("Barcode must be a string")
        cleaned = _NON_DIGITS.sub("", v)
        if not 1 <= len(cleaned) <= 14:
            raise ValueError(f"Barcode must contain 1-14 digits: {v!r}")
        return cleaned

    @property
    def barcode_type(self) -> str:
        """Symbology guessed from length."""
        return {8: "EAN-8", 12: "UPC-A", 13: "EAN-13", 14: "ITF-14"}.get(
            len(self.code), "Unknown"
        )


Observation = Union[PhotoObservation, BarcodeObservation]


def cache_key(observation: Observation) -> str:
    """
    Content-derived cache key.

    Never includes user identity: nutrition facts for a product or a
    recognized image are shared by everybody.

    Example:
        >>> cache_key(BarcodeObservation(code="0001"))
        'barcode:0001'
    """
    if isinstance(observation, PhotoObservation):
        return f"photo:{observation.image_hash}"
    if isinstance(observation, BarcodeObservation):
        return f"barcode:{observation.code}"
    raise TypeError(f"Unsupported observation: {type(observation).__name__}")
