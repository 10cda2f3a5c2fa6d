# qr service — connection uri building, qr rendering and qr decoding
# encoding uses qrcode + pillow, decoding uses opencv's qr detectors

import io
import logging
import re
from typing import Iterator, Optional
from urllib.parse import urlparse

import cv2
import numpy as np
import qrcode
from PIL import Image
from qrcode.constants import ERROR_CORRECT_M

from vaxlink.config import settings
from vaxlink.errors import InvalidFormat, Unreadable
from vaxlink.services.code_generator import is_valid_code

logger = logging.getLogger(__name__)

CONNECT_PATH_PATTERN = re.compile(r"/connect/([A-Z0-9-]+)$")

# rendering parameters only affect scanability, not the encoded content
QR_BOX_SIZE = 10
QR_BORDER = 4
QR_MASK_PATTERNS = range(8)

# decode fallbacks
QUIET_ZONE_PX = 40
UPSCALE_MAX_SIDE = 1000
DOWNSCALE_MIN_SIDE = 1600

TOO_LARGE_MESSAGE = "The QR image is too large. Please upload a smaller photo of the QR code."
NOT_AN_IMAGE_MESSAGE = "The uploaded file is not an image. Please upload a photo of the QR code."


def _require_http_uri(uri: str) -> None:
    parsed = urlparse(uri)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidFormat(f"Invalid connection URI: {uri!r}")


def build_connect_uri(code: str, base_url: Optional[str] = None) -> str:
    """<origin>/connect/<code>, the only wire format a connection code travels in"""
    if not is_valid_code(code):
        raise InvalidFormat()
    base_url = (base_url or settings.PUBLIC_BASE_URL).rstrip("/")
    _require_http_uri(base_url)
    return f"{base_url}/connect/{code}"


def extract_code(uri: str) -> str:
    """pull the code token out of a scanned connection uri"""
    match = CONNECT_PATH_PATTERN.search(uri.strip())
    if not match or not is_valid_code(match.group(1)):
        logger.warning(f"Scanned text is not a connection URI: {uri!r}")
        raise InvalidFormat()
    return match.group(1)


def _render(uri: str, mask_pattern: Optional[int] = None) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECT_M,
        box_size=QR_BOX_SIZE,
        border=QR_BORDER,
        mask_pattern=mask_pattern,
    )
    qr.add_data(uri)
    qr.make(fit=True)

    image = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def encode_qr(uri: str) -> bytes:
    """
    render a connection uri as png bytes.

    every rendering is read back with decode_qr before it is handed out. if the
    automatically chosen mask does not decode, the other mask patterns are tried,
    so an exported qr always scans on our own upload path.
    """
    _require_http_uri(uri)

    for mask_pattern in (None, *QR_MASK_PATTERNS):
        png = _render(uri, mask_pattern)
        try:
            decoded = decode_qr(png)
        except Unreadable:
            decoded = None
        if decoded == uri:
            return png
        logger.warning(f"QR rendering of {uri!r} with mask {mask_pattern} did not read back, re-rendering")

    raise RuntimeError(f"Could not render a readable QR code for {uri!r}")


def _image_size(image_bytes: bytes) -> tuple[int, int]:
    """width and height from the image header, without decoding the pixels"""
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            return image.size
    except Image.DecompressionBombError as e:
        logger.warning(f"QR upload rejected by pillow's size guard: {e}")
        raise Unreadable(TOO_LARGE_MESSAGE) from e
    except OSError as e:
        raise Unreadable(NOT_AN_IMAGE_MESSAGE) from e


def _candidates(image: np.ndarray) -> Iterator[np.ndarray]:
    """the image as uploaded, then cleaned up copies for the detectors to retry on"""
    yield image

    gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    padded = cv2.copyMakeBorder(
        gray, QUIET_ZONE_PX, QUIET_ZONE_PX, QUIET_ZONE_PX, QUIET_ZONE_PX,
        cv2.BORDER_CONSTANT, value=255,
    )
    yield padded

    longest_side = max(gray.shape)
    if longest_side <= UPSCALE_MAX_SIDE:
        yield cv2.resize(padded, None, fx=2, fy=2, interpolation=cv2.INTER_NEAREST)

    _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY | cv2.THRESH_OTSU)
    yield binary

    if longest_side >= DOWNSCALE_MIN_SIDE:
        yield cv2.resize(gray, None, fx=0.5, fy=0.5, interpolation=cv2.INTER_AREA)


def decode_qr(image_bytes: bytes) -> str:
    """decode the text of the first qr code in an image, raises Unreadable if there is none"""
    if not image_bytes:
        raise Unreadable()

    width, height = _image_size(image_bytes)
    if width * height > settings.QR_MAX_IMAGE_PIXELS:
        logger.warning(f"QR upload rejected: {width}x{height} exceeds {settings.QR_MAX_IMAGE_PIXELS} pixels")
        raise Unreadable(TOO_LARGE_MESSAGE)

    image = cv2.imdecode(np.frombuffer(image_bytes, dtype=np.uint8), cv2.IMREAD_COLOR)
    if image is None:
        raise Unreadable(NOT_AN_IMAGE_MESSAGE)

    # detectors keep per-call state, one pair per decode
    detectors = (cv2.QRCodeDetector(), cv2.QRCodeDetectorAruco())
    for candidate in _candidates(image):
        for detector in detectors:
            try:
                text, _points, _ = detector.detectAndDecode(candidate)
            except cv2.error as e:
                logger.debug(f"QR detector {type(detector).__name__} failed: {e}")
                continue
            if text:
                return text

    raise Unreadable()
