import pytest

import learnflow.store.persistence as persistence_mod
from learnflow.store import InMemoryPersistence, JsonFilePersistence, LearningStore, RedisPersistence, get_persistence
from tests.fixtures.mock_redis import MockRedisClient

pytestmark = pytest.mark.unit


def test_in_memory_round_trip_and_prefix_keys():
    p = InMemoryPersistence()
    assert p.read('missing') is None
    p.write('feishu_user_token', 'tok')
    p.write('feishu_refresh_token', 'ref')
    p.write('learnflow_data', '{}')
    assert sorted(p.keys('feishu_')) == ['feishu_refresh_token', 'feishu_user_token']
    p.delete('feishu_user_token')
    p.delete('never-written')
    assert p.read('feishu_user_token') is None


def test_json_file_persistence(tmp_path):
    p = JsonFilePersistence(str(tmp_path / 'data'))
    p.write('learnflow_data', '{"topics": []}')
    assert (tmp_path / 'data' / 'learnflow_data.json').read_text(encoding='utf-8') == '{"topics": []}'
    assert p.read('learnflow_data') == '{"topics": []}'
    assert p.keys('learnflow') == ['learnflow_data']
    # no temp files left behind
    assert [f.name for f in (tmp_path / 'data').iterdir()] == ['learnflow_data.json']
    p.delete('learnflow_data')
    assert p.read('learnflow_data') is None


def test_store_survives_reopen_from_files(tmp_path, clock):
    first = LearningStore(JsonFilePersistence(str(tmp_path)), clock=clock)
    topic = first.add_topic('Persisted')
    reopened = LearningStore(JsonFilePersistence(str(tmp_path)), clock=clock)
    assert reopened.get_all().find_topic(topic.id).title == 'Persisted'


def test_redis_persistence_uses_prefix():
    client = MockRedisClient()
    p = RedisPersistence(client=client, prefix='lf:')
    p.write('feishu_user_token', 'tok')
    assert client.store == {'lf:feishu_user_token': 'tok'}
    assert p.read('feishu_user_token') == 'tok'
    assert p.keys('feishu_') == ['feishu_user_token']
    assert p.ping() is True
    p.delete('feishu_user_token')
    assert client.store == {}


def test_get_persistence_falls_back_to_memory_without_redis(monkeypatch):
    monkeypatch.setattr(persistence_mod, 'redis', None)
    assert isinstance(get_persistence('redis'), InMemoryPersistence)
    assert isinstance(get_persistence('memory'), InMemoryPersistence)


def test_get_persistence_files(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    p = get_persistence('file')
    assert isinstance(p, JsonFilePersistence)
    assert p.directory == tmp_path / persistence_mod.LEARNFLOW_DATA_DIR
