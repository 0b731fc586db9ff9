from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]  # корень репозитория
load_dotenv(dotenv_path=ROOT_DIR / ".env")


def _get_env(*keys: str, default: str | None = None) -> str | None:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_int(*keys: str, default: int | None = None) -> int | None:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return int(v)


def _get_float(*keys: str, default: float) -> float:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return float(v)


def _get_bool(*keys: str) -> bool | None:
    # три состояния: true / false / не задано
    v = _get_env(*keys, default=None)
    if v is None:
        return None
    return v.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    base_url: str
    use_mocks_env: bool | None
    app_env: str
    db_path: str
    export_dir: str
    http_timeout: float
    currency: str
    log_level: str
    bot_token: str
    admin_id: int

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() in ("prod", "production")

    @property
    def use_mocks(self) -> bool:
        # не задано -> моки включены везде, кроме production
        if self.use_mocks_env is None:
            return not self.is_production
        return self.use_mocks_env


def load_settings() -> Settings:
    base_url = _get_env("TABLECRM_BASE_URL", default="https://app.tablecrm.com") or ""
    return Settings(
        base_url=base_url.rstrip("/") or "https://app.tablecrm.com",
        use_mocks_env=_get_bool("TABLECRM_USE_MOCKS", "USE_MOCKS"),
        app_env=_get_env("APP_ENV", "ENV", default="development") or "development",
        db_path=_get_env("DB_PATH", "DATABASE_PATH", default=str(ROOT_DIR / "data" / "pos.db")) or "",
        export_dir=_get_env("EXPORT_DIR", default=str(ROOT_DIR / "exports")) or "",
        http_timeout=_get_float("HTTP_TIMEOUT", default=15.0),
        currency=_get_env("CURRENCY", default="RUB") or "RUB",
        log_level=(_get_env("LOG_LEVEL", default="INFO") or "INFO").upper(),
        bot_token=_get_env("BOT_TOKEN", "TELEGRAM_BOT_TOKEN", default="") or "",
        admin_id=_get_int("ADMIN_ID", "ADMIN_TG_ID", default=0) or 0,
    )


settings = load_settings()
