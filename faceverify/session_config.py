"""
Capture session configuration.

SessionConfig collects the knobs of one capture session. Build it directly,
from a plain dict (for example the "capture" section of config.yaml) or
with from_config(), which reads config.yaml.

Usage:
    from faceverify.session_config import SessionConfig

    config = SessionConfig.from_config()
    config = SessionConfig(strategy="model", auto_capture=False)
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from faceverify.strategy import Strategy

# Sampling period per strategy when none is configured (ms)
DEFAULT_SAMPLING_PERIOD_MS = {
    Strategy.HEURISTIC: 200,
    Strategy.MODEL: 500,
}


@dataclass
class SessionConfig:
    """
    Configuration of one capture session.

    Attributes:
        strategy: Detection/fingerprint strategy.
        auto_capture: Start a countdown automatically on good quality.
        quality_good_threshold: Quality at or above which the countdown starts.
        quality_abort_threshold: Quality below which a running countdown is cleared.
        quality_fair_threshold: Quality at or above which the status is "good".
        countdown_seconds: Countdown length in ticks.
        countdown_interval_s: Seconds between countdown ticks.
        sampling_period_ms: Sampling period; None uses the strategy default.
        lighting_feedback_interval_s: Minimum seconds between lighting notices.
        frame_timeout_s: Time limit for grabbing and detecting one frame.
    """

    strategy: Strategy = Strategy.HEURISTIC
    auto_capture: bool = True
    quality_good_threshold: int = 10
    quality_abort_threshold: int = 5
    quality_fair_threshold: int = 15
    countdown_seconds: int = 3
    countdown_interval_s: float = 1.0
    sampling_period_ms: Optional[int] = None
    lighting_feedback_interval_s: float = 3.0
    frame_timeout_s: float = 2.0

    def __post_init__(self):
        self.strategy = Strategy.parse(self.strategy)

    @property
    def sampling_period_s(self) -> float:
        """Effective sampling period in seconds."""
        period_ms = self.sampling_period_ms
        if period_ms is None:
            period_ms = DEFAULT_SAMPLING_PERIOD_MS[self.strategy]
        return period_ms / 1000.0

    def validate(self) -> "SessionConfig":
        """
        Check the configuration for consistency.

        Returns:
            self, so the call can be chained.

        Raises:
            ValueError: If a value is out of range.
        """
        if self.quality_abort_threshold > self.quality_good_threshold:
            raise ValueError(
                f"quality_abort_threshold ({self.quality_abort_threshold}) must not exceed "
                f"quality_good_threshold ({self.quality_good_threshold})"
            )
        if not 0 <= self.quality_good_threshold <= 100:
            raise ValueError(f"quality_good_threshold must be in [0, 100], got {self.quality_good_threshold}")
        if self.countdown_seconds < 1:
            raise ValueError(f"countdown_seconds must be >= 1, got {self.countdown_seconds}")
        if self.countdown_interval_s <= 0:
            raise ValueError(f"countdown_interval_s must be > 0, got {self.countdown_interval_s}")
        if self.sampling_period_ms is not None and self.sampling_period_ms <= 0:
            raise ValueError(f"sampling_period_ms must be > 0, got {self.sampling_period_ms}")
        if self.lighting_feedback_interval_s < 0:
            raise ValueError(
                f"lighting_feedback_interval_s must be >= 0, got {self.lighting_feedback_interval_s}"
            )
        if self.frame_timeout_s <= 0:
            raise ValueError(f"frame_timeout_s must be > 0, got {self.frame_timeout_s}")
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionConfig":
        """Build from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    @classmethod
    def from_config(cls, **overrides) -> "SessionConfig":
        """Build from the "capture" section of config.yaml, then apply overrides."""
        from faceverify.config import get_optional_section

        data = dict(get_optional_section("capture"))
        data.update(overrides)
        return cls.from_dict(data)
