"""
Asset reference resolution.

Turns caller asset references into decoded, normalized images:

- raw bytes are decoded directly
- ``data:`` URIs are decoded in memory
- any other string is an opaque reference looked up through ``fetch``

Normalization (Pillow):
- non-animated PNG and baseline RGB / greyscale JPEG pass through
  byte-for-byte
- every other encoding is transcoded (first frame) to PNG, keeping alpha

Each slot resolves to a ResolvedAsset or to ``None`` (absent). Missing,
unreadable or undecodable input degrades to absent with a warning.
This module never raises and has no side effects.
"""

from __future__ import annotations

import base64
import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import unquote_to_bytes

from PIL import Image

from renderer.app.schemas.template import SLOT_NAME_PATTERN, AssetSlotDefinition

logger = logging.getLogger("renderer.resolver")

SLOT_NAME_RE = re.compile(SLOT_NAME_PATTERN)

AssetFetcher = Callable[[str], bytes]


@dataclass(frozen=True)
class ResolvedAsset:
    data: bytes
    media_type: str
    width: int
    height: int

    @property
    def extension(self) -> str:
        return "jpg" if self.media_type == "image/jpeg" else "png"

    def data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.media_type};base64,{encoded}"


@dataclass(frozen=True)
class ResolvedAssets:
    """Slot name to image, ``None`` marking an absent slot."""

    assets: Dict[str, Optional[ResolvedAsset]]
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    def __contains__(self, slot: str) -> bool:
        return slot in self.assets

    def get(self, slot: str) -> Optional[ResolvedAsset]:
        return self.assets.get(slot)

    def data_uris(self) -> Dict[str, Optional[str]]:
        return {
            slot: (asset.data_uri() if asset is not None else None)
            for slot, asset in self.assets.items()
        }


# ----------------------------------------------------------------------
# Decoding helpers
# ----------------------------------------------------------------------


def decode_data_uri(uri: str) -> bytes:
    """
    Decode a ``data:`` URI payload.

    Raises:
        ValueError: if the URI is malformed.
    """
    if not uri.startswith("data:"):
        raise ValueError("not a data URI")
    header, sep, payload = uri[5:].partition(",")
    if not sep:
        raise ValueError("data URI has no payload separator")
    if header.endswith(";base64"):
        return base64.b64decode(payload.strip(), validate=False)
    return unquote_to_bytes(payload)


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA", "La", "RGBa") or (
        img.mode == "P" and "transparency" in img.info
    )


def normalize_image(raw: bytes) -> ResolvedAsset:
    """
    Decode ``raw`` and return a pass-through or PNG-transcoded image.

    Raises:
        ValueError: if the bytes are not a decodable image.
    """
    if not raw:
        raise ValueError("empty image data")

    try:
        with Image.open(io.BytesIO(raw)) as img:
            img.load()
            fmt = img.format
            animated = bool(getattr(img, "is_animated", False))
            width, height = img.size

            if fmt == "PNG" and not animated:
                return ResolvedAsset(raw, "image/png", width, height)

            progressive = bool(
                img.info.get("progressive") or img.info.get("progression")
            )
            if fmt == "JPEG" and img.mode in ("RGB", "L") and not progressive:
                return ResolvedAsset(raw, "image/jpeg", width, height)

            if animated:
                img.seek(0)
            frame = img.convert("RGBA" if _has_alpha(img) else "RGB")
    except (OSError, SyntaxError, Image.DecompressionBombError) as exc:
        raise ValueError(f"undecodable image: {exc}") from exc

    buffer = io.BytesIO()
    frame.save(buffer, format="PNG")
    return ResolvedAsset(buffer.getvalue(), "image/png", width, height)


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------


def resolve_assets(
    asset_refs: Optional[Mapping[str, Any]],
    slots: Sequence[AssetSlotDefinition],
    fetch: Optional[AssetFetcher] = None,
) -> ResolvedAssets:
    """Resolve every declared slot, plus any extra referenced slot."""
    refs: Mapping[str, Any] = asset_refs or {}
    warnings: List[str] = []
    assets: Dict[str, Optional[ResolvedAsset]] = {}

    names = [slot.name for slot in slots]
    for name in refs:
        if name in names:
            continue
        if not isinstance(name, str) or not SLOT_NAME_RE.fullmatch(name):
            warnings.append(f"Asset slot name {name!r} is invalid and was ignored")
            continue
        warnings.append(f"Undeclared asset slot '{name}' passed through")
        names.append(name)

    required = {slot.name for slot in slots if slot.required}

    for name in names:
        ref = refs.get(name)
        if ref is None:
            assets[name] = None
            if name in required:
                warnings.append(f"Required asset slot '{name}' is unassigned")
            continue

        try:
            raw = _load(ref, fetch)
            assets[name] = normalize_image(raw)
        except Exception as exc:
            logger.warning(
                "asset_unresolvable",
                extra={"slot": name, "error": str(exc)},
            )
            warnings.append(f"Asset slot '{name}' is unusable: {exc}")
            assets[name] = None

    return ResolvedAssets(assets=assets, warnings=tuple(warnings))


def _load(ref: Any, fetch: Optional[AssetFetcher]) -> bytes:
    if isinstance(ref, (bytes, bytearray, memoryview)):
        return bytes(ref)
    if isinstance(ref, str):
        if ref.startswith("data:"):
            return decode_data_uri(ref)
        if fetch is None:
            raise ValueError(f"no asset store to resolve reference '{ref}'")
        return fetch(ref)
    raise ValueError(f"unsupported reference type {type(ref).__name__}")
