# api/config.py
import os
from typing import List

import pytz
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

load_dotenv()

AFAD_URL = "https://deprem.afad.gov.tr/apiv2/event/filter"


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    upstream_url: str = AFAD_URL
    upstream_method: str = "GET"
    upstream_timeout: float = Field(10.0, gt=0)
    # "local" keeps the legacy server-offset conversion
    upstream_timezone: str = "Europe/Istanbul"
    upstream_max_limit: int = Field(2500, ge=1)
    safe_limit: int = Field(1000, ge=1)
    default_days: int = Field(7, ge=1, le=365)
    cache_ttl_seconds: float = Field(120.0, gt=0)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    user_agent: str = "seismic-proxy/0.1"
    log_level: str = "INFO"

    @model_validator(mode="before")
    @classmethod
    def _cap_safe_limit(cls, data):
        if isinstance(data, dict):
            upstream = int(data.get("upstream_max_limit", 2500))
            safe = int(data.get("safe_limit", 1000))
            if safe > upstream:
                data = {**data, "safe_limit": upstream}
        return data

    @model_validator(mode="after")
    def _check_upstream(self):
        if self.upstream_method not in ("GET", "POST"):
            raise ValueError("UPSTREAM_METHOD must be GET or POST")
        if self.upstream_timezone.lower() != "local" and self.upstream_timezone not in pytz.all_timezones_set:
            raise ValueError(f"Unknown UPSTREAM_TIMEZONE: {self.upstream_timezone}")
        return self

    @classmethod
    def from_env(cls) -> "Settings":
        env = {
            "upstream_url": os.getenv("UPSTREAM_URL"),
            "upstream_method": (os.getenv("UPSTREAM_METHOD") or "").upper() or None,
            "upstream_timeout": os.getenv("UPSTREAM_TIMEOUT"),
            "upstream_timezone": os.getenv("UPSTREAM_TIMEZONE"),
            "upstream_max_limit": os.getenv("UPSTREAM_MAX_LIMIT"),
            "safe_limit": os.getenv("SAFE_LIMIT"),
            "default_days": os.getenv("DEFAULT_DAYS"),
            "cache_ttl_seconds": os.getenv("CACHE_TTL_SECONDS"),
            "user_agent": os.getenv("USER_AGENT"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        origins = os.getenv("CORS_ORIGINS")
        if origins:
            env["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]
        return cls(**{k: v for k, v in env.items() if v is not None})
