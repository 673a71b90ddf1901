"""
Pixel-level technical metrics for generated images.

All metrics work on a float RGB array of shape (height, width, 3) with
values in 0..255 and return a score in [0, 1].
"""

from __future__ import annotations
import base64
import binascii
from dataclasses import dataclass
from io import BytesIO
from typing import Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from models.quality import TechnicalQuality
from utils.errors import ComputationFailure

IDEAL_BRIGHTNESS = 0.55
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])


@dataclass
class DecodedImage:
    pixels: np.ndarray
    width: int
    height: int


def _to_bytes(image_data: Union[bytes, str]) -> bytes:
    if isinstance(image_data, bytes):
        return image_data
    text = image_data.strip()
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ComputationFailure(f"invalid base64 image data: {e}") from e


def decode_image(image_data: Union[bytes, str], max_side: int = 512) -> DecodedImage:
    """
    Decode raw or base64 image data with Pillow.

    Images larger than ``max_side`` on their longest side are downsampled for
    analysis; the returned width and height are the original ones.
    """
    raw = _to_bytes(image_data)
    if not raw:
        raise ComputationFailure("empty image data")

    try:
        image = Image.open(BytesIO(raw))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ComputationFailure(f"undecodable image: {e}") from e

    width, height = image.size
    if image.mode != "RGB":
        image = image.convert("RGB")
    if max(width, height) > max_side:
        image.thumbnail((max_side, max_side))

    return DecodedImage(pixels=np.asarray(image, dtype=np.float64), width=width, height=height)


def grayscale(pixels: np.ndarray) -> np.ndarray:
    return pixels[..., :3] @ LUMA_WEIGHTS


def calculate_sharpness(gray: np.ndarray) -> float:
    """Mean absolute difference to the right and lower neighbours over interior pixels."""
    if gray.shape[0] < 3 or gray.shape[1] < 3:
        return 0.0
    center = gray[1:-1, 1:-1]
    right = gray[1:-1, 2:]
    down = gray[2:, 1:-1]
    variation = (np.abs(center - right).sum() + np.abs(center - down).sum()) / (2 * center.size)
    return float(min(variation / 50.0, 1.0))


def calculate_contrast(gray: np.ndarray) -> float:
    return float((gray.max() - gray.min()) / 255.0)


def calculate_brightness(gray: np.ndarray) -> float:
    average = gray.mean() / 255.0
    return float(max(0.0, 1.0 - abs(average - IDEAL_BRIGHTNESS) * 2))


def calculate_color_balance(pixels: np.ndarray) -> float:
    r, g, b = (pixels[..., channel].mean() for channel in range(3))
    variance = ((r - g) ** 2 + (g - b) ** 2 + (r - b) ** 2) / 3.0
    return float(max(0.0, 1.0 - variance / 10000.0))


def calculate_noise_level(gray: np.ndarray) -> float:
    """Mean absolute response of the 4-neighbour Laplacian; higher means noisier."""
    if gray.shape[0] < 3 or gray.shape[1] < 3:
        return 0.0
    laplacian = (
        4 * gray[1:-1, 1:-1]
        - gray[:-2, 1:-1]
        - gray[2:, 1:-1]
        - gray[1:-1, :-2]
        - gray[1:-1, 2:]
    )
    return float(min(np.abs(laplacian).mean() / 100.0, 1.0))


def evaluate_resolution(width: int, height: int) -> float:
    total = width * height
    if total >= 1920 * 1080:
        return 1.0
    if total >= 1280 * 720:
        return 0.8
    if total >= 640 * 480:
        return 0.6
    if total >= 320 * 240:
        return 0.4
    return 0.2


def analyze_technical_quality(image: DecodedImage) -> TechnicalQuality:
    gray = grayscale(image.pixels)
    return TechnicalQuality(
        sharpness=calculate_sharpness(gray),
        contrast=calculate_contrast(gray),
        brightness=calculate_brightness(gray),
        color_balance=calculate_color_balance(image.pixels),
        noise_level=calculate_noise_level(gray),
        resolution=evaluate_resolution(image.width, image.height),
    )
