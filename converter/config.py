"""
Converter configuration
"""

import os
from dataclasses import dataclass


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Download settings
DOWNLOAD_CONCURRENCY = int(os.getenv("NDJSON_DOWNLOAD_CONCURRENCY", "100"))
DOWNLOAD_TIMEOUT = float(os.getenv("NDJSON_DOWNLOAD_TIMEOUT", "30"))
MAX_DOWNLOAD_BYTES = int(os.getenv("NDJSON_MAX_DOWNLOAD_BYTES", str(50 * 1024 * 1024)))
BLOCK_PRIVATE_HOSTS = _env_bool("NDJSON_BLOCK_PRIVATE_HOSTS", "true")


@dataclass
class ConverterSettings:
    """Tunables for a single conversion job."""
    download_concurrency: int = DOWNLOAD_CONCURRENCY
    download_timeout: float = DOWNLOAD_TIMEOUT
    max_download_bytes: int = MAX_DOWNLOAD_BYTES
    block_private_hosts: bool = BLOCK_PRIVATE_HOSTS

    def __post_init__(self):
        if self.download_concurrency < 1:
            raise ValueError(
                f"download_concurrency must be at least 1, got {self.download_concurrency}"
            )
