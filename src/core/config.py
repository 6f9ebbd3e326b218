"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.models import DeltaMode

REPORT_LAST = "last"
REPORT_DIGEST = "digest"


@dataclass(frozen=True)
class ScanConfig:
    """Pagination settings for timeline scans."""

    page_size: int = 100
    unread_scan_cap: int = 1000
    timezone: str = "UTC"


@dataclass(frozen=True)
class FeatureConfig:
    """Threshold and debounce settings for one notification feature.

    A feature fires when the unread delta between two observations reaches
    ``min_delta`` and at least ``min_interval_seconds`` passed since it last
    fired for the same user.
    """

    name: str
    min_delta: int
    min_interval_seconds: float
    report: str = REPORT_LAST
    enabled: bool = True
    delta_mode: DeltaMode = DeltaMode.CONSECUTIVE


@dataclass(frozen=True)
class NotificationConfig:
    """Notification formatting settings consumed by notifier adapters."""

    snippet_chars: int


DEFAULT_FEATURES = (
    FeatureConfig(name="auto_last", min_delta=2, min_interval_seconds=60, report=REPORT_LAST),
    FeatureConfig(name="auto_digest", min_delta=100, min_interval_seconds=6 * 3600, report=REPORT_DIGEST),
)


def build_features(features_config: dict) -> list[FeatureConfig]:
    """Build feature configs from the ``features`` block, falling back to defaults."""

    if not features_config:
        return list(DEFAULT_FEATURES)

    features: list[FeatureConfig] = []
    for name, raw in features_config.items():
        report = raw.get("report", REPORT_LAST)
        if report not in {REPORT_LAST, REPORT_DIGEST}:
            raise ValueError(f"Unsupported report type for feature {name}: {report}")
        min_delta = int(raw.get("min_delta", 1))
        if min_delta < 1:
            raise ValueError(f"min_delta must be at least 1 for feature {name}")
        features.append(
            FeatureConfig(
                name=name,
                min_delta=min_delta,
                min_interval_seconds=float(raw.get("min_interval_seconds", 0)),
                report=report,
                enabled=bool(raw.get("enabled", True)),
                delta_mode=DeltaMode(raw.get("delta_mode", DeltaMode.CONSECUTIVE.value)),
            )
        )
    return features
