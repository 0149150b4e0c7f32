import os
from dataclasses import dataclass
from typing import Optional, Tuple

from .evaluator import HIGH_RISK_PREFIXES

BASE_DIR = os.path.dirname(os.path.dirname(__file__))


def _prefixes(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return HIGH_RISK_PREFIXES
    return tuple(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class Settings:
    api_base: Optional[str] = None
    api_token: Optional[str] = None
    remote_timeout: float = 5.0
    short_circuit_score: int = 80
    high_risk_prefixes: Tuple[str, ...] = HIGH_RISK_PREFIXES
    store_dir: str = os.path.join(BASE_DIR, ".fraudsignal")
    patterns_path: Optional[str] = os.path.join(BASE_DIR, "rules", "patterns.yaml")
    reputation_path: Optional[str] = os.path.join(BASE_DIR, "rules", "reputation.yaml")
    log_capacity: int = 100
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            api_base=os.getenv("FRAUD_API_BASE") or None,
            api_token=os.getenv("FRAUD_API_TOKEN") or None,
            remote_timeout=float(os.getenv("REMOTE_TIMEOUT", "5.0")),
            short_circuit_score=int(os.getenv("SHORT_CIRCUIT_SCORE", "80")),
            high_risk_prefixes=_prefixes(os.getenv("HIGH_RISK_PREFIXES")),
            store_dir=os.getenv("STORE_DIR", defaults.store_dir),
            patterns_path=os.getenv("PATTERNS_PATH", defaults.patterns_path),
            reputation_path=os.getenv("REPUTATION_PATH", defaults.reputation_path),
            log_capacity=int(os.getenv("LOG_CAPACITY", "100")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
