"""
Repository Layer - Data Access Abstraction
Implements the Repository Pattern for database isolation
"""

from .base_repository import BaseRepository
from .campaign_repository import CampaignRepository

__all__ = [
    'BaseRepository',
    'CampaignRepository'
]
