import io

import pikepdf
import pytest

from renderer.app.errors import LayoutError, RenderError
from renderer.app.services.pdf_postprocess import (
    PRODUCER,
    PdfPostProcessError,
    count_pages,
    normalize_pdf,
)
from renderer.app.utils.hashing import output_digest, sha256_hex


def _pdf(pages=1, trailer_id=None, **info):
    buffer = io.BytesIO()
    with pikepdf.new() as pdf:
        if trailer_id is not None:
            pdf.trailer.ID = pikepdf.Array([pikepdf.String(trailer_id), pikepdf.String(trailer_id)])
        for _ in range(pages):
            pdf.add_blank_page(page_size=(200, 100))
        for key, value in info.items():
            pdf.docinfo[f"/{key}"] = value
        pdf.save(buffer)
    return buffer.getvalue()


def test_normalize_strips_volatile_dates_and_sets_producer():
    raw = _pdf(CreationDate="D:20240101000000Z", ModDate="D:20240102000000Z")

    normalized = normalize_pdf(raw)

    with pikepdf.open(io.BytesIO(normalized)) as pdf:
        assert "/CreationDate" not in pdf.docinfo
        assert "/ModDate" not in pdf.docinfo
        assert str(pdf.docinfo["/Producer"]) == PRODUCER


def test_normalize_is_stable_across_volatile_metadata():
    first = normalize_pdf(_pdf(2, CreationDate="D:20240101000000Z"))
    second = normalize_pdf(_pdf(2, CreationDate="D:20250505000000Z"))

    assert first == second
    assert count_pages(first) == 2


def test_unreadable_pdf_is_rejected():
    with pytest.raises(PdfPostProcessError):
        normalize_pdf(b"%PDF-1.7 truncated")
    with pytest.raises(PdfPostProcessError):
        normalize_pdf(_pdf(0))
    with pytest.raises(PdfPostProcessError):
        count_pages(b"not a pdf")


def test_digests_are_bytes_only():
    assert output_digest(b"abc").startswith("SHA-256:")
    assert sha256_hex(b"abc") == (
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )
    with pytest.raises(TypeError):
        sha256_hex("abc")


def test_normalize_replaces_inherited_document_ids():
    first = normalize_pdf(_pdf(trailer_id=b"0123456789abcdef"))
    second = normalize_pdf(_pdf(trailer_id=b"fedcba9876543210"))

    assert first == second
    with pikepdf.open(io.BytesIO(first)) as pdf:
        assert bytes(pdf.trailer.ID[0]) != b"0123456789abcdef"


def test_normalization_failures_are_layout_errors():
    with pytest.raises(RenderError) as exc:
        normalize_pdf(b"not a pdf")

    assert isinstance(exc.value, LayoutError)
    assert exc.value.kind == "LayoutError"
