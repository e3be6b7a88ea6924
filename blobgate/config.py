from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from pathlib import Path

ENV_FILE = Path(".env")
ENV_PREFIX = "BLOBGATE_"

STORES = ("memory", "s3")


def _read_env_file() -> dict[str, str]:
    """Return the blobgate settings found in `.env`, ignoring everything else."""
    if not ENV_FILE.is_file():
        return {}
    settings = {}
    for line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        key, sep, value = line.strip().partition("=")
        key = key.removeprefix("export ").strip()
        if sep and key.startswith(ENV_PREFIX):
            settings[key] = value.strip().strip("\"'")
    return settings


def _load_env_file() -> None:
    # the process environment wins over the file
    for key, value in _read_env_file().items():
        os.environ.setdefault(key, value)


def _env(name: str) -> str | None:
    return os.environ.get(f"{ENV_PREFIX}{name}")


@dataclass
class Config:
    token: str
    token_hash: str = "sha1"
    host: str = "127.0.0.1"
    port: int = 8000
    store: str = "memory"
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    s3_region: str = "us-east-1"
    s3_bucket: str | None = None
    s3_endpoint: str | None = None
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.token:
            raise ValueError(f"{ENV_PREFIX}TOKEN must be set to the shared secret.")
        if self.token_hash not in hashlib.algorithms_available:
            raise ValueError(f"Unknown token hash algorithm {self.token_hash!r}.")
        if self.store not in STORES:
            raise ValueError(f"{ENV_PREFIX}STORE must be one of {', '.join(STORES)}, not {self.store!r}.")
        if self.store == "s3":
            missing = [
                name
                for name, value in (
                    ("S3_ACCESS_KEY_ID", self.s3_access_key_id),
                    ("S3_SECRET_ACCESS_KEY", self.s3_secret_access_key),
                    ("S3_BUCKET", self.s3_bucket),
                )
                if not value
            ]
            if missing:
                raise ValueError(
                    "The s3 store requires " + ", ".join(f"{ENV_PREFIX}{name}" for name in missing) + "."
                )

    @classmethod
    def from_environment(cls) -> Config:
        _load_env_file()
        return cls(
            token=_env("TOKEN") or "",
            token_hash=_env("TOKEN_HASH") or cls.token_hash,
            host=_env("HOST") or cls.host,
            port=int(_env("PORT") or cls.port),
            store=(_env("STORE") or cls.store).lower(),
            s3_access_key_id=_env("S3_ACCESS_KEY_ID"),
            s3_secret_access_key=_env("S3_SECRET_ACCESS_KEY"),
            s3_region=_env("S3_REGION") or cls.s3_region,
            s3_bucket=_env("S3_BUCKET"),
            s3_endpoint=_env("S3_ENDPOINT"),
            log_level=(_env("LOG_LEVEL") or cls.log_level).upper(),
        )
