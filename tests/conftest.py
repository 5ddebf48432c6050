import os
import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from dotenv import load_dotenv

# load test env first
env_path = Path(__file__).resolve().parents[1] / '.env.test'
if env_path.exists():
    load_dotenv(env_path)

os.environ.setdefault('TESTING', '1')
# console logging only, no rotating files under the repo
os.environ.setdefault('LOG_FILE_PATH', '')
os.environ.setdefault('LEARNFLOW_STORAGE', 'memory')
os.environ.setdefault('TABLE_SYNC_MODE', 'direct')

from learnflow.ai import AICallLog, AIClient, AIConfig, AIConfigStore, AnswerGrader, KnowledgeExtractor
from learnflow.service import StudyService
from learnflow.store import InMemoryPersistence, LearningStore
from tests.fixtures.mock_openai import FakeOpenAIFactory


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: float = 0, hours: float = 0):
        self.now = self.now + timedelta(days=days, hours=hours)
        return self.now


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 10, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def memory_persistence():
    return InMemoryPersistence()


@pytest.fixture
def store(memory_persistence, clock):
    return LearningStore(memory_persistence, clock=clock)


@pytest.fixture
def ai_config_store(memory_persistence):
    return AIConfigStore(memory_persistence)


@pytest.fixture
def call_log(memory_persistence):
    return AICallLog(memory_persistence)


@pytest.fixture
def configured_ai(ai_config_store):
    return ai_config_store.save(AIConfig(provider='openai', api_key='sk-test-key'))


@pytest.fixture
def fake_openai():
    return FakeOpenAIFactory()


@pytest.fixture
def ai_client(ai_config_store, call_log, fake_openai):
    return AIClient(ai_config_store, call_log, openai_factory=fake_openai)


@pytest.fixture
def study_service(store, ai_client):
    import random
    return StudyService(store, KnowledgeExtractor(ai_client), AnswerGrader(ai_client), rng=random.Random(7))


@pytest.fixture
def sample_material():
    return (
        '# Photosynthesis\n'
        'Plants convert light energy into chemical energy stored in glucose.\n'
        '- Takes place in the chloroplasts of leaf cells\n'
        '# Cellular respiration\n'
        'Cells break glucose down to release usable energy as ATP.\n'
        '- Happens mostly in the mitochondria\n'
    )
