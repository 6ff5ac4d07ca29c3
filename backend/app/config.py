# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
PieceCutter — Application Configuration
All settings are loaded from environment variables with defaults that
match the puzzle editor's behaviour. Override via backend/.env or environment.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ─── Asset Storage ───────────────────────────────────────────────────────
    asset_backend: Literal["local", "memory"] = "local"
    storage_root: Path = Path("./storage")
    asset_bucket: str = "puzzle-images"
    # Prefix used when building durable URLs for locally stored assets
    public_base_url: str = "http://localhost:8000"
    upload_max_mb: int = 20

    # ─── Piece Generation ────────────────────────────────────────────────────
    # Padding (px) added on every side of a piece's bounding box
    bbox_padding_px: int = 2
    # Worker threads used for concurrent piece extraction
    extraction_max_workers: int = 4

    # ─── Source Image Optimisation ───────────────────────────────────────────
    optimize_source_image: bool = True
    source_max_edge_px: int = 1920
    source_webp_quality: int = 85

    # ─── Network ─────────────────────────────────────────────────────────────
    http_timeout_seconds: float = 30.0

    # ─── Logging ─────────────────────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ─── Server ──────────────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8000
    # Editor front-ends allowed to call the API (JSON list in env)
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://localhost:80",
    ]

    # ─── Derived helpers ─────────────────────────────────────────────────────
    @property
    def upload_max_bytes(self) -> int:
        return self.upload_max_mb * 1024 * 1024

    @property
    def bucket_dir(self) -> Path:
        return self.storage_root / self.asset_bucket

    @property
    def assets_base_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/assets/{self.asset_bucket}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached singleton Settings instance."""
    return Settings()
