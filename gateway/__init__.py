"""Shared building blocks for the Hunt gateway"""
from .config import HuntConfig, LocationPolicy, ClaimPolicy, SpawnPolicy
from .api_config import CompetitionSettings, SecuritySettings
from .dedup import RunIdCache
from .geo import haversine_meters

__all__ = [
    'HuntConfig', 'LocationPolicy', 'ClaimPolicy', 'SpawnPolicy',
    'CompetitionSettings', 'SecuritySettings', 'RunIdCache', 'haversine_meters',
]
