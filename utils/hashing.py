import asyncio
import io
import logging
import math
from dataclasses import dataclass

import imagehash
import numpy as np
from PIL import Image, UnidentifiedImageError
from scipy.fft import dct

import exception

LOGGER = logging.getLogger(__name__)

GRID_SIZE = 32
BLOCK_SIZE = 8
HASH_BITS = BLOCK_SIZE * BLOCK_SIZE
HEX_LENGTH = HASH_BITS // 4


@dataclass(frozen=True)
class HashResult:
    fingerprint: imagehash.ImageHash
    pixel_digest: bytes | None = None

    @property
    def hex(self) -> str:
        return str(self.fingerprint)


def grayscale_grid(data: bytes, size: int = GRID_SIZE) -> np.ndarray:
    """
    Decode image bytes into a size x size luma matrix.

    The image is converted to "L" first and then resized with LANCZOS, so the
    same bytes always land on the same grid.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            if getattr(img, "is_animated", False):
                raise exception.FormatRejected("animated images are not hashed")
            gray = img.convert("L").resize((size, size), Image.LANCZOS)
    except exception.FormatRejected:
        raise
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise exception.DecodeError(f"could not decode image: {exc}") from exc
    return np.asarray(gray, dtype=np.uint8)


def haar_2d(matrix: np.ndarray) -> np.ndarray:
    """Single level haar transform, rows first then columns."""
    def _haar(values: np.ndarray) -> np.ndarray:
        even = values[:, 0::2]
        odd = values[:, 1::2]
        return np.concatenate(((even + odd) / 2, (even - odd) / 2), axis=1)

    rows = _haar(matrix.astype(np.float64))
    return _haar(rows.T).T


def dct_2d(matrix: np.ndarray) -> np.ndarray:
    return dct(dct(matrix.astype(np.float64), axis=0, norm="ortho"), axis=1, norm="ortho")


def low_frequency_coefficients(grid: np.ndarray, method: str = "dct") -> np.ndarray:
    if method == "wavelet":
        return haar_2d(grid).flatten()[:HASH_BITS]
    return dct_2d(grid)[:BLOCK_SIZE, :BLOCK_SIZE].flatten()


def fingerprint_from_coefficients(coeffs: np.ndarray) -> imagehash.ImageHash:
    """
    Threshold the 63 non-DC coefficients against their mean.

    Bit i of the hash is coefficient i + 1, the last bit is always 0 so the
    hash stays a square 8x8 ImageHash.
    """
    ac = np.asarray(coeffs[1:HASH_BITS], dtype=np.float64)
    bits = np.zeros(HASH_BITS, dtype=bool)
    bits[:HASH_BITS - 1] = ac > ac.mean()
    return imagehash.ImageHash(bits.reshape(BLOCK_SIZE, BLOCK_SIZE))


def compute_hash(data: bytes, method: str = "dct", keep_pixels: bool = False) -> HashResult:
    grid = grayscale_grid(data)
    fingerprint = fingerprint_from_coefficients(low_frequency_coefficients(grid, method))
    return HashResult(fingerprint=fingerprint, pixel_digest=grid.tobytes() if keep_pixels else None)


def normalize_hex(value: str, width: int = HEX_LENGTH) -> str:
    return value.lower().zfill(width)


def _square_width(length: int) -> int:
    # hex_to_hash needs a hex length whose bit count is an even perfect square
    side = math.ceil(math.sqrt(length * 4))
    if side % 2:
        side += 1
    return side * side // 4


def hamming_distance(h1: str, h2: str) -> int:
    """Count differing bits between two hex hashes, zero-extending the shorter one."""
    width = _square_width(max(len(h1), len(h2), HEX_LENGTH))
    return imagehash.hex_to_hash(normalize_hex(h1, width)) - imagehash.hex_to_hash(normalize_hex(h2, width))


def pixel_difference(d1: bytes | None, d2: bytes | None) -> float:
    """Mean absolute difference between two luma grids, inf when they can't be compared."""
    if d1 is None or d2 is None or len(d1) != len(d2) or not d1:
        return float("inf")
    a = np.frombuffer(d1, dtype=np.uint8).astype(np.int16)
    b = np.frombuffer(d2, dtype=np.uint8).astype(np.int16)
    return float(np.abs(a - b).mean())


class PerceptualHasher:
    def __init__(self, fetcher, method: str = "dct", keep_pixels: bool = False):
        self.fetcher = fetcher
        self.method = method
        self.keep_pixels = keep_pixels

    def hash_bytes(self, data: bytes) -> HashResult:
        return compute_hash(data, self.method, self.keep_pixels)

    async def hash_url(self, url: str) -> HashResult:
        data = await self.fetcher.fetch(url)
        result = await asyncio.to_thread(self.hash_bytes, data)
        LOGGER.debug(f"Hashed {url}: {result.hex}")
        return result
