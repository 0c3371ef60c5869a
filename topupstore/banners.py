from __future__ import annotations
import re
from pathlib import Path
from typing import List

from .errors import NotFound, ValidationFailure
from .helpers import now_ms

ALLOWED_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp")
MAX_BANNER_BYTES = 5 * 1024 * 1024


class BannerStore:
    """Banner images in a local directory, served under /static/banners."""

    def __init__(self, directory: Path, url_prefix: str = "/static/banners"):
        self.directory = Path(directory)
        self.url_prefix = url_prefix.rstrip("/")
        self.directory.mkdir(parents=True, exist_ok=True)

    def list(self) -> List[str]:
        return sorted(
            p.name for p in self.directory.iterdir()
            if p.is_file() and p.suffix.lower() in ALLOWED_EXTENSIONS
        )

    def url(self, name: str) -> str:
        return f"{self.url_prefix}/{name}"

    def save(self, filename: str, data: bytes) -> str:
        stem = Path(filename or "").stem
        suffix = Path(filename or "").suffix.lower()
        if suffix not in ALLOWED_EXTENSIONS:
            raise ValidationFailure("Format gambar tidak didukung")
        if not data:
            raise ValidationFailure("File kosong")
        if len(data) > MAX_BANNER_BYTES:
            raise ValidationFailure("File terlalu besar")
        safe = re.sub(r"[^A-Za-z0-9_-]+", "-", stem).strip("-") or "banner"
        name = f"{now_ms()}-{safe}{suffix}"
        (self.directory / name).write_bytes(data)
        return name

    def _resolve(self, name: str) -> Path:
        path = (self.directory / name).resolve()
        if path.parent != self.directory.resolve():
            raise ValidationFailure("Invalid banner name")
        return path

    def delete(self, name: str) -> None:
        path = self._resolve(name)
        if not path.is_file():
            raise NotFound("Banner tidak ditemukan")
        path.unlink()
