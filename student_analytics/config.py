"""Environment-driven application settings."""

import os
from typing import Dict, List

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables
load_dotenv()

DEFAULT_RISK_THRESHOLDS = {'low': 0.2, 'medium': 0.4, 'high': 0.7}


def parse_thresholds(value: str) -> Dict[str, float]:
    """
    Parse a threshold string like 'low:0.2,medium:0.4,high:0.7'.

    Missing levels fall back to the defaults.

    Raises:
        ValueError: If an entry is not a 'name:number' pair
    """
    thresholds = dict(DEFAULT_RISK_THRESHOLDS)
    for item in value.split(','):
        if not item.strip():
            continue
        try:
            key, number = item.split(':')
            thresholds[key.strip().lower()] = float(number.strip())
        except ValueError as exc:
            raise ValueError(f"Invalid risk threshold entry: '{item}'") from exc
    return thresholds


class Settings(BaseModel):
    risk_thresholds: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_RISK_THRESHOLDS))
    pass_mark: float = 50.0
    top_performers_limit: int = 10
    forecast_periods: int = 3
    max_upload_size_mb: int = 10
    allow_origins: List[str] = Field(default_factory=lambda: ['*'])
    log_level: str = 'INFO'
    debug: bool = False

    @property
    def max_upload_size(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings(
        risk_thresholds=parse_thresholds(os.getenv('RISK_THRESHOLDS', 'low:0.2,medium:0.4,high:0.7')),
        pass_mark=float(os.getenv('PASS_MARK', '50')),
        top_performers_limit=int(os.getenv('TOP_PERFORMERS_LIMIT', '10')),
        forecast_periods=int(os.getenv('FORECAST_PERIODS', '3')),
        max_upload_size_mb=int(os.getenv('MAX_UPLOAD_SIZE_MB', '10')),
        allow_origins=[origin.strip() for origin in os.getenv('ALLOW_ORIGINS', '*').split(',')],
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        debug=os.getenv('DEBUG', 'False').lower() == 'true',
    )
