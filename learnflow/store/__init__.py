"""
Local learning document: models, persistence ports and the cascade-consistent store.
"""

from .models import Topic, KnowledgePoint, Practice, LearningData
from .persistence import PersistencePort, InMemoryPersistence, JsonFilePersistence, RedisPersistence, get_persistence
from .store import LearningStore, DATA_KEY

__all__ = [
	'Topic', 'KnowledgePoint', 'Practice', 'LearningData',
	'PersistencePort', 'InMemoryPersistence', 'JsonFilePersistence', 'RedisPersistence', 'get_persistence',
	'LearningStore', 'DATA_KEY',
]
