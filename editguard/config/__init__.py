from editguard.config.scoring import DEFAULT_SCORING, ScoringConfig
from editguard.config.settings import Settings, StageTimeouts

__all__ = ["DEFAULT_SCORING", "ScoringConfig", "Settings", "StageTimeouts"]
