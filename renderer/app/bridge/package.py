"""
Desktop-publishing package handling (IDML).

An IDML package is a zip archive whose first entry is an uncompressed
``mimetype`` file holding the IDML media type, followed by the
``designmap.xml`` manifest and the spread / story XML parts.

The bridge never edits story text locally; field substitution happens in
the remote runtime. Locally the package is only:
- validated (zip, mimetype, manifest)
- scanned for placeholder tokens
- repacked in canonical form (mimetype first and stored, fixed entry
  timestamps) so that one package always uploads as the same bytes
"""

from __future__ import annotations

import io
import re
import zipfile
from dataclasses import dataclass
from typing import List, Tuple

from renderer.app.errors import RemoteSubmitError
from renderer.app.substitution.placeholders import TOKEN_RE

IDML_MIMETYPE = "application/vnd.adobe.indesign-idml-package"
MIMETYPE_ENTRY = "mimetype"
MANIFEST_ENTRY = "designmap.xml"

PACKAGE_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z_][A-Z0-9_]*)\}\}")

_FIXED_TIMESTAMP = (1980, 1, 1, 0, 0, 0)


@dataclass(frozen=True)
class PackageInfo:
    entries: Tuple[str, ...]
    xml_parts: Tuple[str, ...]
    tokens: Tuple[str, ...]


def _invalid(message: str, **details) -> RemoteSubmitError:
    return RemoteSubmitError(f"Invalid IDML package: {message}", details=details)


def _open(package: bytes) -> zipfile.ZipFile:
    if not package:
        raise _invalid("package is empty")
    try:
        return zipfile.ZipFile(io.BytesIO(package))
    except zipfile.BadZipFile as exc:
        raise _invalid("not a zip archive") from exc


def _xml_texts(archive: zipfile.ZipFile):
    for name in archive.namelist():
        if name.endswith(".xml"):
            yield name, archive.read(name).decode("utf-8", errors="replace")


def inspect_package(package: bytes) -> PackageInfo:
    """
    Validate an IDML package and list the placeholder tokens it holds.

    ``tokens`` are raw ``{{...}}`` occurrences, deduplicated in
    first-seen order across the XML parts.

    Raises:
        RemoteSubmitError: when the package is not a usable IDML archive.
    """
    with _open(package) as archive:
        names = archive.namelist()
        if MIMETYPE_ENTRY not in names:
            raise _invalid("missing mimetype entry")
        mimetype = archive.read(MIMETYPE_ENTRY).decode("ascii", errors="replace")
        if mimetype.strip() != IDML_MIMETYPE:
            raise _invalid("unexpected mimetype", mimetype=mimetype.strip())
        if MANIFEST_ENTRY not in names:
            raise _invalid("missing designmap.xml")

        xml_parts: List[str] = []
        tokens: List[str] = []
        for name, text in _xml_texts(archive):
            xml_parts.append(name)
            for match in TOKEN_RE.finditer(text):
                raw = match.group(0)
                if raw not in tokens:
                    tokens.append(raw)

    return PackageInfo(
        entries=tuple(names),
        xml_parts=tuple(xml_parts),
        tokens=tuple(tokens),
    )


def extract_package_placeholders(package: bytes) -> List[str]:
    """Field names used as ``{{NAME}}`` in the package, first-seen order."""
    found: List[str] = []
    with _open(package) as archive:
        for _, text in _xml_texts(archive):
            for match in PACKAGE_PLACEHOLDER_RE.finditer(text):
                if match.group(1) not in found:
                    found.append(match.group(1))
    return found


def repack_package(package: bytes) -> bytes:
    """
    Rewrite the archive canonically: ``mimetype`` first and stored,
    every other entry deflated in original order, fixed timestamps.
    """
    out = io.BytesIO()
    with _open(package) as source, zipfile.ZipFile(out, "w") as target:
        mimetype = zipfile.ZipInfo(MIMETYPE_ENTRY, date_time=_FIXED_TIMESTAMP)
        mimetype.compress_type = zipfile.ZIP_STORED
        target.writestr(mimetype, IDML_MIMETYPE)

        for info in source.infolist():
            if info.filename == MIMETYPE_ENTRY or info.is_dir():
                continue
            entry = zipfile.ZipInfo(info.filename, date_time=_FIXED_TIMESTAMP)
            entry.compress_type = zipfile.ZIP_DEFLATED
            target.writestr(entry, source.read(info.filename))
    return out.getvalue()
