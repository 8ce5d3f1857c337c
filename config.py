import json
import os

from pathlib import Path

DEFAULTS = {
    "operator": "unknown",
    "version": "2.0.0",
    # "dct" or "wavelet"
    "hash_method": "dct",
    # "exact" looks up identical fingerprints, "strict" does hamming + pixel confirmation
    "match_mode": "exact",
    "hamming_threshold": 2,
    "pixel_threshold": 15.0,
    # "arrival" or "timestamp", only affects how reports pick the original of a group
    "original_policy": "arrival",
    "batch_size": 100,
    "min_batch_size": 10,
    "memory_limit_mb": 800,
    "memory_threshold": 0.8,
    # "shrink" or "pause"
    "memory_policy": "shrink",
    "progress_interval": 2.0,
    "max_attachment_bytes": 20 * 1024 * 1024,
    "fetch_timeout": 30.0,
    "scan_timeout": None,
    "allowed_mime_types": ["image/jpeg", "image/png", "image/webp", "image/bmp", "image/tiff"],
    "output_dir": "duplicates",
    "table_dir": "hashtables",
}


class Config:
    def __init__(self, path: str | Path):
        self.base_path = Path(path)
        settings = dict(DEFAULTS)
        settings.update(self.load_dict((self.base_path / "scanner.json")))

        self.operator = os.getenv("OPERATOR") or settings["operator"]
        self.version = str(settings["version"])
        self.hash_method = settings["hash_method"] if settings["hash_method"] in ("dct", "wavelet") else "dct"
        self.match_mode = settings["match_mode"] if settings["match_mode"] in ("exact", "strict") else "exact"
        self.hamming_threshold = int(settings["hamming_threshold"])
        self.pixel_threshold = float(settings["pixel_threshold"])
        self.original_policy = settings["original_policy"] if settings["original_policy"] in ("arrival", "timestamp") else "arrival"
        self.batch_size = max(1, int(settings["batch_size"]))
        self.min_batch_size = max(1, min(int(settings["min_batch_size"]), self.batch_size))
        self.memory_limit_mb = settings["memory_limit_mb"]
        self.memory_threshold = float(settings["memory_threshold"])
        self.memory_policy = settings["memory_policy"] if settings["memory_policy"] in ("shrink", "pause") else "shrink"
        self.progress_interval = float(settings["progress_interval"])
        self.max_attachment_bytes = int(settings["max_attachment_bytes"])
        self.fetch_timeout = float(settings["fetch_timeout"])
        self.scan_timeout = float(settings["scan_timeout"]) if settings["scan_timeout"] else None
        self.allowed_mime_types = set(settings["allowed_mime_types"])
        self.output_dir = Path(settings["output_dir"])
        self.table_dir = Path(settings["table_dir"])
        self.save_artifacts = os.getenv("SAVEDUPE", "").lower() == "true"
        self.tracked_channels = self.load_ids(os.getenv("TRACKED_CHANNELS", ""))

    @property
    def keep_pixels(self) -> bool:
        return self.match_mode == "strict"

    def load_json(self, path: Path):
        if path.is_file():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except Exception:

                return {}
        else:
            return {}

    def load_dict(self, path: Path) -> dict:
        data = self.load_json(path)
        return data if isinstance(data, dict) else {}

    @staticmethod
    def load_ids(raw: str) -> set[int]:
        return {int(part.strip()) for part in raw.split(",") if part.strip().isdigit()}
