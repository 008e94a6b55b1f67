# src/infrastructure/config.py

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

load_dotenv()


# -----------------------------
# Gateway Settings
# -----------------------------
class GatewaySettings(BaseModel):
    success_rate: float = Field(default=0.8, ge=0.0, le=1.0)
    min_latency_ms: int = Field(default=100, ge=0)
    max_latency_ms: int = Field(default=300, ge=0)
    timeout_seconds: float = Field(default=5.0, gt=0)
    rng_seed: Optional[int] = None

    @model_validator(mode="after")
    def _check_latency_bounds(self) -> "GatewaySettings":
        if self.max_latency_ms < self.min_latency_ms:
            raise ValueError("max_latency_ms must be >= min_latency_ms")
        return self


def _optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return int(raw)


def load_gateway_settings() -> GatewaySettings:
    return GatewaySettings(
        success_rate=float(os.getenv("PAYMENT_SUCCESS_RATE", "0.8")),
        min_latency_ms=int(os.getenv("PAYMENT_MIN_LATENCY_MS", "100")),
        max_latency_ms=int(os.getenv("PAYMENT_MAX_LATENCY_MS", "300")),
        timeout_seconds=float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "5.0")),
        rng_seed=_optional_int("PAYMENT_RNG_SEED"),
    )


# -----------------------------
# Logging
# -----------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
