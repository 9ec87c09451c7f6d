"""Defaults and the persisted per-dial settings."""

import logging
import math
from typing import Any, Optional

# Sonos speakers expose their UPnP services on port 1400
DEFAULT_PORT = 1400

DEFAULT_VOLUME = 50
DEFAULT_VOLUME_STEP = 5
MIN_VOLUME = 0
MAX_VOLUME = 100

POLLING_INTERVAL = 3.0  # Seconds between the end of one poll and the start of the next
VOLUME_CHANGE_DEBOUNCE = 0.5  # Wait 500ms after the last rotation before sending
TOPOLOGY_CACHE_TTL = 30.0  # Seconds a fetched zone group state stays valid

_LOGGER = logging.getLogger(__name__)


def clamp_volume(value: int) -> int:
    """Clamp a volume to 0-100."""
    return max(MIN_VOLUME, min(MAX_VOLUME, int(value)))


def _as_int(raw: Any, default: Optional[int]) -> Optional[int]:
    if isinstance(raw, bool):
        return default
    if isinstance(raw, str):
        try:
            raw = float(raw.strip())
        except ValueError:
            return default
    if isinstance(raw, (int, float)):
        # nan and inf have no integer value
        if isinstance(raw, float) and not math.isfinite(raw):
            return default
        return int(raw)
    return default


class DialSettings:
    """Immutable snapshot of one dial's persisted settings.

    The persisted form is ``{speakerHost?, volumeStep, value, singleSpeakerMode}``.
    """

    def __init__(
        self,
        speaker_host: Optional[str] = None,
        volume_step: int = DEFAULT_VOLUME_STEP,
        value: int = DEFAULT_VOLUME,
        single_speaker_mode: bool = False,
    ):
        self._speaker_host = speaker_host or None
        self._volume_step = volume_step
        self._value = clamp_volume(value)
        self._single_speaker_mode = single_speaker_mode

    @property
    def speaker_host(self) -> Optional[str]:
        """Speaker host name or IP, None when not configured."""
        return self._speaker_host

    @property
    def volume_step(self) -> int:
        """Volume change per dial tick."""
        return self._volume_step

    @property
    def value(self) -> int:
        """Last volume shown on the dial."""
        return self._value

    @property
    def single_speaker_mode(self) -> bool:
        """Whether commands target only the configured speaker instead of its whole group."""
        return self._single_speaker_mode

    @property
    def connection_key(self) -> tuple[Optional[str], bool]:
        """The fields that require a new speaker session when they change."""
        return self._speaker_host, self._single_speaker_mode

    @classmethod
    def from_dict(cls, raw: Optional[dict[str, Any]], default_value: int = DEFAULT_VOLUME) -> "DialSettings":
        """Parse persisted settings, falling back to defaults for missing or invalid fields."""
        raw = raw or {}

        speaker_host = raw.get("speakerHost")
        if not isinstance(speaker_host, str) or not speaker_host.strip():
            speaker_host = None
        else:
            speaker_host = speaker_host.strip()

        volume_step = _as_int(raw.get("volumeStep"), DEFAULT_VOLUME_STEP)
        if volume_step < 1:
            _LOGGER.warning(f"Invalid volumeStep {raw.get('volumeStep')!r}, using {DEFAULT_VOLUME_STEP}")
            volume_step = DEFAULT_VOLUME_STEP

        value = _as_int(raw.get("value"), default_value)

        single_speaker_mode = raw.get("singleSpeakerMode", False)
        if not isinstance(single_speaker_mode, bool):
            single_speaker_mode = False

        return cls(speaker_host, volume_step, value, single_speaker_mode)

    def to_dict(self) -> dict[str, Any]:
        """Persisted form of these settings."""
        data: dict[str, Any] = {
            "volumeStep": self._volume_step,
            "value": self._value,
            "singleSpeakerMode": self._single_speaker_mode,
        }
        if self._speaker_host:
            data["speakerHost"] = self._speaker_host
        return data

    def with_value(self, value: int) -> "DialSettings":
        """Copy of these settings with a new (clamped) volume value."""
        return DialSettings(self._speaker_host, self._volume_step, value, self._single_speaker_mode)

    def __eq__(self, other):
        if not isinstance(other, DialSettings):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"DialSettings({self.to_dict()!r})"
