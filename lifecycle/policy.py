"""
Purpose: Central configuration for the errand lifecycle and live tracking.
What it does:

Stores all tunable intervals/caps:

ACTIVE_INTERVAL_MS = 10000 (runner position while an errand is active)
AMBIENT_INTERVAL_MS = 30000 (background checks)
AVG_SPEED_KMH = 20

Values can be overridden from the environment (.env supported):
ERRAND_ACTIVE_INTERVAL_MS, ERRAND_AMBIENT_INTERVAL_MS, ERRAND_STATUS_REFRESH_MS,
ERRAND_AVG_SPEED_KMH, ERRAND_CALL_TIMEOUT_S, ERRAND_NEARBY_RADIUS_KM,
ERRAND_AUTO_COMPLETE

Rule: No logic here - just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class LifecyclePolicy:
    """
    Central configuration for the lifecycle coordinator, tracker and estimator.
    """

    # --- Tracking cadence ---
    # Runner position is sampled at this interval while the errand is in its active window.
    active_interval_ms: int = 10_000
    # Ambient / background checks (nearby errands, idle runner position).
    ambient_interval_ms: int = 30_000
    # How often an open errand session re-reads the authoritative status.
    status_refresh_interval_ms: int = 30_000

    # --- ETA heuristic ---
    avg_speed_kmh: float = 20.0

    # --- Transaction codes ---
    code_length: int = 6
    max_code_attempts: int = 10

    # --- Collaborator calls ---
    # Upper bound for any single repository call made by the coordinator.
    call_timeout_seconds: float = 10.0

    # --- Runner discovery ---
    nearby_radius_km: float = 10.0

    # Complete the errand on the requester's behalf as soon as it is delivered.
    auto_complete_on_delivery: bool = False

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if self.active_interval_ms <= 0 or self.ambient_interval_ms <= 0:
            raise ValueError("tracking intervals must be > 0")

        if self.status_refresh_interval_ms <= 0:
            raise ValueError("status_refresh_interval_ms must be > 0")

        if self.avg_speed_kmh <= 0:
            raise ValueError("avg_speed_kmh must be > 0")

        if self.code_length < 4:
            raise ValueError("code_length must be at least 4 characters")

        if self.max_code_attempts < 1:
            raise ValueError("max_code_attempts must be >= 1")

        if self.call_timeout_seconds <= 0:
            raise ValueError("call_timeout_seconds must be > 0")

        if self.nearby_radius_km <= 0:
            raise ValueError("nearby_radius_km must be > 0")

    @classmethod
    def from_env(cls) -> LifecyclePolicy:
        """
        Build a policy from ERRAND_* environment variables, falling back to defaults.
        """
        load_dotenv()
        defaults = cls()
        policy = cls(
            active_interval_ms=int(os.getenv("ERRAND_ACTIVE_INTERVAL_MS", defaults.active_interval_ms)),
            ambient_interval_ms=int(os.getenv("ERRAND_AMBIENT_INTERVAL_MS", defaults.ambient_interval_ms)),
            status_refresh_interval_ms=int(
                os.getenv("ERRAND_STATUS_REFRESH_MS", defaults.status_refresh_interval_ms)
            ),
            avg_speed_kmh=float(os.getenv("ERRAND_AVG_SPEED_KMH", defaults.avg_speed_kmh)),
            call_timeout_seconds=float(os.getenv("ERRAND_CALL_TIMEOUT_S", defaults.call_timeout_seconds)),
            nearby_radius_km=float(os.getenv("ERRAND_NEARBY_RADIUS_KM", defaults.nearby_radius_km)),
            auto_complete_on_delivery=os.getenv("ERRAND_AUTO_COMPLETE", "false").lower() in ("1", "true", "yes"),
        )
        policy.validate()
        return policy


def default_lifecycle_policy() -> LifecyclePolicy:
    """
    Convenience factory for the default policy.
    """
    p = LifecyclePolicy()
    p.validate()
    return p
