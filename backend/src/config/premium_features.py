"""
Premium feature catalogue loader.

Loads the set of premium-only feature identifiers from
config/premium_features.yml. Which features are premium is configuration;
the access rule itself lives in src.services.feature_gate.

Usage:
    from src.config.premium_features import PremiumFeaturesLoader

    catalogue = PremiumFeaturesLoader().load()
    catalogue.is_premium("offline_mode")  # True
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Optional

import yaml

logger = logging.getLogger(__name__)

# Fallback when the YAML file is missing or unreadable
DEFAULT_PREMIUM_FEATURES: Dict[str, str] = {
    "grammar_full": "Complete grammar lessons",
    "sentence_construction": "Sentence construction exercises",
    "sentence_gap": "Fill-the-gap sentence exercises",
    "exercise_unlimited": "Unlimited daily exercises",
    "offline_mode": "Offline mode",
    "google_drive_sync": "Cloud sync to Google Drive",
    "advanced_stats": "Advanced learning statistics",
    "custom_audio_upload": "Custom audio uploads",
    "priority_support": "Priority support",
}


@dataclass(frozen=True)
class PremiumFeatureCatalogue:
    """Immutable set of premium-only features with display names."""
    features: Dict[str, str]

    @property
    def feature_ids(self) -> FrozenSet[str]:
        return frozenset(self.features)

    def is_premium(self, feature_id: str) -> bool:
        return feature_id in self.features

    def display_name(self, feature_id: str) -> str:
        return self.features.get(feature_id, feature_id)


class PremiumFeaturesLoader:
    """Reads config/premium_features.yml."""

    def __init__(self, config_path: Optional[str] = None):
        self._config_path = config_path

    def _resolve_path(self) -> Path:
        if self._config_path:
            return Path(self._config_path)

        candidates = [
            Path(__file__).parent.parent.parent.parent / "config" / "premium_features.yml",
            Path(os.getcwd()) / "config" / "premium_features.yml",
            Path(os.getcwd()) / ".." / "config" / "premium_features.yml",
        ]

        for p in candidates:
            resolved = p.resolve()
            if resolved.exists():
                return resolved

        raise FileNotFoundError(
            f"premium_features.yml not found in: {[str(p) for p in candidates]}"
        )

    def load(self) -> PremiumFeatureCatalogue:
        try:
            path = self._resolve_path()
            logger.info("Loading premium features from %s", path)

            with open(path, "r") as f:
                raw = yaml.safe_load(f) or {}
        except (FileNotFoundError, yaml.YAMLError) as e:
            logger.warning(
                "premium_features.yml unavailable, using built-in defaults",
                extra={"error": str(e)}
            )
            return PremiumFeatureCatalogue(features=dict(DEFAULT_PREMIUM_FEATURES))

        features = raw.get("premium_features")
        if isinstance(features, list):
            features = {feature_id: feature_id for feature_id in features}
        if not isinstance(features, dict) or not features:
            logger.warning("premium_features.yml has no premium_features, using built-in defaults")
            features = dict(DEFAULT_PREMIUM_FEATURES)

        logger.info("Loaded %d premium features", len(features))
        return PremiumFeatureCatalogue(features={str(k): str(v) for k, v in features.items()})
