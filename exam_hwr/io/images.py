"""PNG/base64 conversions between pixel buffers and what the HTTP collaborators exchange."""

import base64
import binascii

import cv2
import numpy as np
import numpy.typing as npt

from exam_hwr.errors import InputValidationError

DATA_URL_PREFIX = "data:image/png;base64,"


def encode_png(pixels: npt.NDArray) -> bytes:
    """Encode an RGB(A) or grayscale uint8 buffer as PNG bytes."""
    pixels = np.asarray(pixels)
    if pixels.size == 0:
        raise InputValidationError("cannot encode an empty image")
    if pixels.dtype != np.uint8:
        pixels = np.clip(pixels, 0, 255).astype(np.uint8)

    # cv2 expects BGR(A) channel order
    if pixels.ndim == 3 and pixels.shape[2] == 3:
        pixels = cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR)
    elif pixels.ndim == 3 and pixels.shape[2] == 4:
        pixels = cv2.cvtColor(pixels, cv2.COLOR_RGBA2BGRA)

    ok, buf = cv2.imencode(".png", pixels)
    if not ok:
        raise InputValidationError(f"PNG encoding failed for image of shape {pixels.shape}")
    return buf.tobytes()


def decode_png(data: bytes) -> npt.NDArray:
    """Decode image bytes to an RGB uint8 array."""
    arr = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if image is None:
        raise InputValidationError("could not decode image bytes")
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def to_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def from_base64(text: str) -> bytes:
    """Decode base64, accepting a data URL."""
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InputValidationError(f"invalid base64 image: {e}") from e


def to_data_url(data: bytes) -> str:
    return DATA_URL_PREFIX + to_base64(data)


def load_image(path: str) -> npt.NDArray:
    """Read an image file from disk as an RGB uint8 array."""
    image = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if image is None:
        raise InputValidationError(f"could not read image: {path}")
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
