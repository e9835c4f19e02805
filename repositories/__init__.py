"""
Repository Layer - Data Access Abstraction
Implements the Repository Pattern for database isolation
"""

from .base_repository import BaseRepository
from .deal_repository import DealRepository
from .browsing_session_repository import BrowsingSessionRepository
from .interaction_event_repository import InteractionEventRepository
from .task_repository import TaskRepository
from .milestone_repository import DealMilestoneRepository

__all__ = [
    'BaseRepository',
    'DealRepository',
    'BrowsingSessionRepository',
    'InteractionEventRepository',
    'TaskRepository',
    'DealMilestoneRepository',
]
