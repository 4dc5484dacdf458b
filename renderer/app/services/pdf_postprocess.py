"""
PDF post-processing.

Every PDF the engine returns passes through ``normalize_pdf``:

- the document must open and contain at least one page
- volatile document-info entries (creation / modification dates) are
  removed
- the producer is set to a fixed value
- the file is rewritten with a document ID derived from its content

The result depends only on the input page content, so identical
renders yield identical bytes whichever painter produced them.

Trust boundary:
- This module does NOT interpret page content.
"""

from __future__ import annotations

import io
import logging

import pikepdf

from renderer.app.errors import LayoutError

logger = logging.getLogger("renderer.pdf")

PRODUCER = "renderer"

_VOLATILE_INFO_KEYS = ("/CreationDate", "/ModDate")


class PdfPostProcessError(LayoutError):
    """Raised when a rendered PDF cannot be opened or normalized."""


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------

def count_pages(pdf_bytes: bytes) -> int:
    try:
        with pikepdf.open(io.BytesIO(pdf_bytes)) as pdf:
            return len(pdf.pages)
    except pikepdf.PdfError as exc:
        raise PdfPostProcessError(f"Failed to read PDF: {exc}") from exc


def normalize_pdf(pdf_bytes: bytes) -> bytes:
    """
    Rewrite a rendered PDF deterministically.

    Args:
        pdf_bytes:
            A structurally correct PDF produced by a painter.

    Raises:
        PdfPostProcessError:
            If the PDF cannot be parsed or has no pages.
    """
    try:
        with pikepdf.open(io.BytesIO(pdf_bytes)) as pdf:
            if len(pdf.pages) == 0:
                raise PdfPostProcessError("Rendered PDF has no pages")

            info = pdf.docinfo
            for key in _VOLATILE_INFO_KEYS:
                if key in info:
                    del info[key]
            info["/Producer"] = PRODUCER
            if "/ID" in pdf.trailer:
                del pdf.trailer["/ID"]

            out = io.BytesIO()
            pdf.save(
                out,
                deterministic_id=True,
                compress_streams=True,
                object_stream_mode=pikepdf.ObjectStreamMode.preserve,
            )
    except pikepdf.PdfError as exc:
        raise PdfPostProcessError(f"Failed to normalize PDF: {exc}") from exc

    logger.debug("pdf_normalized", extra={"size": out.tell()})
    return out.getvalue()
