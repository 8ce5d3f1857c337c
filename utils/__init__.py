from .fetch import ImageFetcher
from .formats import check_attachment, extension_from_url, mime_from_url
from .hashing import PerceptualHasher, compute_hash, hamming_distance, pixel_difference
from .memory import MemoryMonitor
from .progress import ScanProgress, format_elapsed, format_status, progress_bar

import imagehash as imagehash

__all__ = [
    "ImageFetcher",
    "check_attachment",
    "extension_from_url",
    "mime_from_url",
    "PerceptualHasher",
    "compute_hash",
    "hamming_distance",
    "pixel_difference",
    "MemoryMonitor",
    "ScanProgress",
    "format_elapsed",
    "format_status",
    "progress_bar",
    "imagehash",
]
