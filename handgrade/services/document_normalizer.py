"""
Document Normalizer
===================
Turns one uploaded file into the ordered list of inline payloads a backend
will accept.

Payload size is what breaks the downstream call, so every branch aims for
"small enough to send". Fidelity is kept only where it costs nothing:
small images and small PDFs for backends that read PDFs natively.

Policy (first match wins):
1. PDF    - rasterize pages to JPEG when the backend can't read PDFs or the
            file is over 3 MB; at most 5 pages.
2. Raster - JPEG/PNG/WEBP under 2 MB pass through, larger ones are
            downscaled to 1536 px on the long edge.
3. Other  - HEIC and remaining image types pass through untouched.
"""
import io
import logging
from typing import Iterable, List, Union

import fitz  # PyMuPDF
from PIL import Image, ImageOps

from ..config import (
    GENERIC_MIME_TYPES,
    HEIC_MIME_TYPE,
    JPEG_QUALITY,
    MAX_IMAGE_DIMENSION,
    MAX_PDF_PAGES,
    MAX_UPLOAD_BYTES,
    PDF_MIME_TYPE,
    PDF_RASTERIZE_THRESHOLD_BYTES,
    PDF_RENDER_SCALE,
    RASTER_IMAGE_TYPES,
    SMALL_IMAGE_THRESHOLD_BYTES,
)
from ..errors import ConversionFailure, InvalidRequest, OversizedInput, UnsupportedFormat
from ..models import BACKEND_CONSTRAINTS, BackendConstraints, ImagePart, RawDocument

logger = logging.getLogger(__name__)


def resolve_constraints(backend: Union[str, BackendConstraints]) -> BackendConstraints:
    """Accept either a backend id or an explicit constraints object."""
    if isinstance(backend, BackendConstraints):
        return backend
    try:
        return BACKEND_CONSTRAINTS[backend]
    except KeyError:
        raise InvalidRequest(f"Unknown backend: {backend!r}")


def is_supported(doc: RawDocument) -> bool:
    mime_type = doc.effective_mime_type
    return mime_type.startswith("image/") or mime_type == PDF_MIME_TYPE or doc.is_heic


def check_document(doc: RawDocument, max_bytes: int = MAX_UPLOAD_BYTES):
    """Reject files before any decoding is attempted."""
    if not is_supported(doc):
        raise UnsupportedFormat(
            f"Unsupported file type for {doc.filename or 'upload'}: {doc.mime_type or 'unknown'}",
            user_message=f"'{doc.filename or 'File'}' is not an image, PDF or HEIC photo.",
        )
    if doc.size > max_bytes:
        raise OversizedInput(
            f"{doc.filename} is {doc.size} bytes (limit {max_bytes})",
            user_message=(
                f"'{doc.filename or 'File'}' is {doc.size / (1024 * 1024):.1f} MB; "
                f"the limit is {max_bytes // (1024 * 1024)} MB."
            ),
        )


def normalize(doc: RawDocument, backend: Union[str, BackendConstraints]) -> List[ImagePart]:
    """Convert one document into 1..N image parts for the given backend."""
    constraints = resolve_constraints(backend)
    check_document(doc)
    mime_type = doc.effective_mime_type

    if mime_type == PDF_MIME_TYPE:
        return _normalize_pdf(doc, constraints)

    if mime_type in RASTER_IMAGE_TYPES:
        return [_normalize_raster(doc, mime_type)]

    # HEIC and any other image type: raw bytes with a usable MIME type
    if doc.is_heic and (doc.mime_type or "").lower() in GENERIC_MIME_TYPES:
        mime_type = HEIC_MIME_TYPE
    logger.info(f"Passing {doc.filename} through unchanged as {mime_type}")
    return [ImagePart.from_bytes(doc.data, mime_type)]


def normalize_many(docs: Iterable[RawDocument], backend: Union[str, BackendConstraints]) -> List[ImagePart]:
    """Normalize several files, keeping file order and page order."""
    parts = []
    for doc in docs:
        parts.extend(normalize(doc, backend))
    return parts


# =============================================================================
# PDF
# =============================================================================

def _normalize_pdf(doc: RawDocument, constraints: BackendConstraints) -> List[ImagePart]:
    needs_raster = not constraints.supports_documents or doc.size > PDF_RASTERIZE_THRESHOLD_BYTES
    if not needs_raster:
        return [ImagePart.from_bytes(doc.data, PDF_MIME_TYPE)]

    try:
        return rasterize_pdf(doc.data, filename=doc.filename)
    except Exception as e:
        if constraints.supports_documents and doc.size <= constraints.max_inline_bytes:
            logger.warning(f"Rasterizing {doc.filename} failed ({e}); sending the PDF as-is")
            return [ImagePart.from_bytes(doc.data, PDF_MIME_TYPE)]
        raise ConversionFailure(
            f"Could not rasterize {doc.filename}: {e}",
            user_message=f"Could not convert '{doc.filename or 'PDF'}' into images. Try exporting it as images instead.",
        ) from e


def rasterize_pdf(pdf_bytes: bytes, max_pages: int = MAX_PDF_PAGES, scale: float = PDF_RENDER_SCALE,
                  quality: int = JPEG_QUALITY, filename: str = "") -> List[ImagePart]:
    """Render the first `max_pages` pages as JPEG parts, in page order."""
    pdf = fitz.open(stream=pdf_bytes, filetype="pdf")
    try:
        page_count = pdf.page_count
        if page_count == 0:
            raise ValueError("PDF has no pages")
        if page_count > max_pages:
            # TODO: return the truncation to the caller once the API has a warnings field
            logger.warning(f"{filename or 'PDF'} has {page_count} pages; only the first {max_pages} are sent")

        parts = []
        mat = fitz.Matrix(scale, scale)
        for page_num in range(min(page_count, max_pages)):
            pix = pdf[page_num].get_pixmap(matrix=mat, alpha=False)
            image = Image.frombytes("RGB", (pix.width, pix.height), pix.samples)
            parts.append(ImagePart.from_bytes(_encode_jpeg(image, quality), "image/jpeg"))
    finally:
        pdf.close()

    logger.info(f"Rasterized {len(parts)} page(s) of {filename or 'PDF'}")
    return parts


# =============================================================================
# RASTER IMAGES
# =============================================================================

def _normalize_raster(doc: RawDocument, mime_type: str) -> ImagePart:
    if doc.size < SMALL_IMAGE_THRESHOLD_BYTES:
        return ImagePart.from_bytes(doc.data, mime_type)

    try:
        data = downscale_image(doc.data)
    except Exception as e:
        logger.warning(f"Downscaling {doc.filename} failed ({e}); sending original bytes")
        return ImagePart.from_bytes(doc.data, mime_type)

    logger.info(f"Downscaled {doc.filename}: {doc.size} -> {len(data)} bytes")
    return ImagePart.from_bytes(data, "image/jpeg")


def downscale_image(data: bytes, max_dimension: int = MAX_IMAGE_DIMENSION, quality: int = JPEG_QUALITY) -> bytes:
    """Fit the image inside max_dimension x max_dimension and re-encode as JPEG."""
    with Image.open(io.BytesIO(data)) as source:
        image = ImageOps.exif_transpose(source)
        # thumbnail() keeps aspect ratio and never enlarges
        image.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
        return _encode_jpeg(image, quality)


def _has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA", "PA") or (image.mode == "P" and "transparency" in image.info)


def _encode_jpeg(image: Image.Image, quality: int) -> bytes:
    if _has_alpha(image):
        # Transparent areas become white paper, not black
        rgba = image.convert("RGBA")
        background = Image.new("RGB", image.size, "white")
        background.paste(rgba, mask=rgba.getchannel("A"))
        image = background
    elif image.mode != "RGB":
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()
