"""
Line image preprocessing for the sequence model.

Turns a raw pixel buffer into a normalized, width-padded NHWC float tensor:
grayscale collapse, height normalization keeping the aspect ratio, mean/std
normalization, then constant padding on both sides of the width axis.
"""

import logging
import math
from dataclasses import dataclass

import cv2
import numpy as np
import numpy.typing as npt

from exam_hwr.errors import InputValidationError

logger = logging.getLogger(__name__)

GRAYSCALE_NDIM = 2
RGBA_CHANNELS = 4


@dataclass(frozen=True)
class PreprocessConfig:
    """Preprocessing parameters the line model was trained with."""

    target_channels: int = 1
    pad_value: float = 0.0
    pad_left: int = 64
    pad_right: int = 64
    mean: float = 238.6531 / 255
    std: float = 43.4356 / 255
    target_height: int = 128

    def __post_init__(self):
        if self.target_channels not in (1, 3):
            raise ValueError(f"target_channels must be 1 or 3, got {self.target_channels}")
        if self.target_height < 1:
            raise ValueError(f"target_height must be >= 1, got {self.target_height}")
        if self.pad_left < 0 or self.pad_right < 0:
            raise ValueError(f"padding must be >= 0, got left={self.pad_left} right={self.pad_right}")
        if self.std == 0:
            raise ValueError("std must be non-zero")


@dataclass(frozen=True)
class PreprocessedLine:
    tensor: npt.NDArray  # (1, target_height, scaled_width + pad_left + pad_right, channels) float32
    scaled_width: int    # width of the resized content, before padding

    @property
    def width(self) -> int:
        return int(self.tensor.shape[2])


def scaled_width(height: int, width: int, target_height: int) -> int:
    """Width after rescaling to target_height, rounded half up."""
    if height <= 0 or width <= 0:
        raise InputValidationError(f"image dimensions must be positive, got {width}x{height}")
    return int(math.floor(target_height * width / height + 0.5))


def _to_target_channels(image: npt.NDArray, target_channels: int) -> npt.NDArray:
    """Return an (H, W) array for one target channel, (H, W, 3) for three."""
    if image.ndim == GRAYSCALE_NDIM:
        if target_channels == 1:
            return image.astype(np.float32)
        return np.repeat(image[..., np.newaxis], 3, axis=-1).astype(np.float32)

    channels = image.shape[2]
    if channels == RGBA_CHANNELS:
        # alpha does not carry ink
        image = image[..., :3]
        channels = 3

    if target_channels == 1:
        if channels == 1:
            return image[..., 0].astype(np.float32)
        return image.astype(np.float32).mean(axis=-1)

    if channels == 1:
        return np.repeat(image, 3, axis=-1).astype(np.float32)
    if channels != 3:
        raise InputValidationError(f"cannot convert {channels} channels to {target_channels}")
    return image.astype(np.float32)


def preprocess_line(image: npt.NDArray, config: PreprocessConfig | None = None) -> PreprocessedLine:
    """
    Prepare one line image for inference.

    Args:
        image: (H, W) or (H, W, C) pixel buffer with values in [0, 255]
        config: preprocessing parameters (defaults to the deployed model's)

    Returns:
        PreprocessedLine with a (1, target_height, width, channels) float32 tensor

    Raises:
        InputValidationError: empty image, zero dimension or unsupported layout
    """
    if config is None:
        config = PreprocessConfig()

    image = np.asarray(image)
    if image.ndim not in (2, 3):
        raise InputValidationError(f"image must be 2-D or 3-D, got shape {image.shape}")
    h, w = image.shape[:2]
    if h == 0 or w == 0 or (image.ndim == 3 and image.shape[2] == 0):
        raise InputValidationError(f"image has a zero dimension: shape {image.shape}")

    new_w = scaled_width(h, w, config.target_height)
    if new_w < 1:
        raise InputValidationError(
            f"image {w}x{h} is too narrow to rescale to height {config.target_height}"
        )

    pixels = _to_target_channels(image, config.target_channels)

    # cv2 takes (width, height)
    resized = cv2.resize(pixels, (new_w, config.target_height), interpolation=cv2.INTER_LINEAR)

    normalized = (resized / 255.0 - config.mean) / config.std

    pad = [(0, 0), (config.pad_left, config.pad_right)]
    if normalized.ndim == 3:
        pad.append((0, 0))
    padded = np.pad(normalized, pad, mode="constant", constant_values=config.pad_value)

    tensor = padded[np.newaxis, ...]
    if tensor.ndim == 3:
        tensor = tensor[..., np.newaxis]

    return PreprocessedLine(tensor=tensor.astype(np.float32), scaled_width=new_w)
