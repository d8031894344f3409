"""
Configuration

Client-side tunables are plain dataclasses passed to constructors.
Server settings are read from environment variables once, at import time,
and can be overridden by command-line flags in main.py.

The normalization ranges and heuristic thresholds are empirically chosen;
treat them as tuning knobs rather than fixed biometric constants.
"""

import os
from dataclasses import dataclass, field
from typing import Tuple


@dataclass
class NormalizationRanges:
    """[min, max] range that each raw statistic is mapped from onto [0, 1]."""
    mean_velocity: Tuple[float, float] = (0.0, 1500.0)        # units/s
    velocity_variance: Tuple[float, float] = (0.0, 50000.0)   # (units/s)^2
    mean_acceleration: Tuple[float, float] = (-300.0, 300.0)  # units/s^2
    jitter_ratio: Tuple[float, float] = (1.0, 1.5)            # humans ~1.01–1.2
    fitts_ratio: Tuple[float, float] = (0.0, 1.5)
    direction_change_freq: Tuple[float, float] = (0.0, 0.5)
    pause_entropy: Tuple[float, float] = (0.0, 0.5)


@dataclass
class HeuristicRules:
    """
    Thresholds and weights for the heuristic scoring strategy.
    All thresholds apply to normalized feature values.
    """
    base_score: float = 0.4

    variance_high: float = 0.015
    variance_low: float = 0.002
    variance_bonus: float = 0.25
    variance_penalty: float = 0.5

    jitter_high: float = 0.005
    jitter_low: float = 0.0001
    jitter_bonus: float = 0.2
    jitter_penalty: float = 0.5

    fitts_decel: float = 0.75
    fitts_constant: float = 0.95
    fitts_bonus: float = 0.15
    fitts_penalty: float = 0.2

    direction_band: Tuple[float, float] = (0.05, 0.4)
    direction_bonus: float = 0.1

    pause_min: float = 0.05
    pause_bonus: float = 0.1


@dataclass
class CaptureConfig:
    """Settings for a single capture session."""
    sample_interval_ms: float = 10.0      # Minimum gap between accepted samples
    max_points: int = 300                 # Sample buffer capacity
    capture_duration_ms: float = 2000.0   # Minimum capture time before finalizing
    min_observations: int = 10            # Buffer size before live feature updates
    min_finalize_samples: int = 50        # Buffer size required to finalize
    threshold: float = 0.65               # Accept if score > threshold
    direction_change_rad: float = 0.5
    pause_velocity: float = 20.0          # units/s below which a sample is a pause
    model_path: str = "models/echocheck_model.json"
    verify_endpoint: str = "http://127.0.0.1:8000/api/verify"
    request_timeout: float = 5.0          # seconds
    ranges: NormalizationRanges = field(default_factory=NormalizationRanges)
    rules: HeuristicRules = field(default_factory=HeuristicRules)


DEFAULT_SECRET = "default-secret-key"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    """Configuration settings for the verification server."""

    # Server settings
    SERVER_HOST = os.getenv("ECHOCHECK_HOST", "127.0.0.1")
    SERVER_PORT = int(os.getenv("ECHOCHECK_PORT", "8000"))
    SERVER_URL = f"http://{SERVER_HOST}:{SERVER_PORT}"

    # Token signing
    SECRET = os.getenv("ECHOCHECK_SECRET", DEFAULT_SECRET)
    TOKEN_TTL = int(os.getenv("ECHOCHECK_TOKEN_TTL", "600"))   # 10 minutes

    # Decision
    THRESHOLD = float(os.getenv("ECHOCHECK_THRESHOLD", "0.65"))

    # Nonce ledger: auto|sql|memory
    LEDGER_BACKEND = os.getenv("ECHOCHECK_LEDGER", "auto")
    NONCE_TTL = int(os.getenv("ECHOCHECK_NONCE_TTL", "600"))   # 10 minutes
    MEMORY_LEDGER_CAPACITY = int(os.getenv("ECHOCHECK_MEMORY_LEDGER_CAPACITY", "100000"))
    MEMORY_AUDIT_CAPACITY = int(os.getenv("ECHOCHECK_MEMORY_AUDIT_CAPACITY", "1000"))  # per identity

    # Persistence
    DATABASE_URL = os.getenv("ECHOCHECK_DATABASE_URL", "")  # empty -> sqlite file in project root
    SQL_ECHO = _env_bool("ECHOCHECK_SQL_ECHO", "false")

    # CORS – embedding pages allowed to call the API
    ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.getenv("ECHOCHECK_ALLOWED_ORIGINS", "*").split(",")
        if origin.strip()
    ]
