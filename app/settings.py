"""Environment-driven configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]

_TRUTHY = ("1", "true", "yes")


def load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _flag(name: str) -> bool:
    return _env(name).lower() in _TRUTHY


@dataclass
class Settings:
    use_db: bool = False
    database_url: str | None = None
    db_pool_min: int = 1
    db_pool_max: int = 10
    models_dir: Path = ROOT / "models"
    jwt_secret: str | None = None
    jwks_url: str | None = None
    jwt_audience: str | None = None
    jwt_issuer: str | None = None
    disable_auth: bool = False
    cors_origins: set[str] = field(default_factory=set)
    req_slow_ms: float = 250.0

    @classmethod
    def from_env(cls) -> "Settings":
        load_env_file(ROOT / "app" / ".env")
        return cls(
            use_db=_env("USE_DB") == "1",
            database_url=_env("DATABASE_URL") or None,
            db_pool_min=int(_env("MODELKIT_DB_POOL_MIN", "1")),
            db_pool_max=int(_env("MODELKIT_DB_POOL_MAX", "10")),
            models_dir=Path(_env("MODELKIT_MODELS_DIR") or ROOT / "models"),
            jwt_secret=_env("MODELKIT_JWT_SECRET") or None,
            jwks_url=_env("MODELKIT_JWKS_URL") or None,
            jwt_audience=_env("MODELKIT_JWT_AUD") or None,
            jwt_issuer=_env("MODELKIT_JWT_ISSUER") or None,
            disable_auth=_flag("MODELKIT_DISABLE_AUTH"),
            cors_origins={o.strip().rstrip("/") for o in _env("MODELKIT_CORS_ORIGINS").split(",") if o.strip()},
            req_slow_ms=float(_env("MODELKIT_REQ_SLOW_MS", "250")),
        )
