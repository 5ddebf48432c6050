import json
import pytest

from learnflow.errors import RemoteAPIError, ValidationError
from learnflow.sync import TABLE_DEFS, TableProxyClient, TableSync
from tests.fixtures.mock_feishu import FakeResponse, FakeTableApi

pytestmark = pytest.mark.unit


class RecordingDebouncer:
    def __init__(self):
        self.scheduled = 0

    def schedule(self):
        self.scheduled += 1


@pytest.fixture
def table_api():
    return FakeTableApi(existing_tables=[{'table_id': 'tblOld', 'name': 'LearnFlow_Topics'}])


@pytest.fixture
def sync(store, memory_persistence, table_api):
    s = TableSync(store, memory_persistence, table_api, debouncer=RecordingDebouncer())
    s.update_config(' cli_a ', 'secret', 'bascn', auto_sync=True)
    return s


def _seed(store):
    topic = store.add_topic('Physics', 'Newtonian mechanics')
    kp = store.add_knowledge_point(topic.id, 'Inertia', 'Objects keep moving')
    store.add_practice(kp.id, 'What is inertia?', 'It resists change', 72, {'score': 72, 'feedback': ['ok']})
    return topic, kp


def test_config_is_trimmed_and_scoped_per_user(sync, memory_persistence, store, table_api):
    assert sync.get_config()['appId'] == 'cli_a'
    assert sync.is_configured()
    other = TableSync(store, memory_persistence, table_api, user_id='ou_42')
    assert other.config_key.endswith('_ou_42')
    assert not other.is_configured()


def test_init_tables_reuses_existing_and_creates_missing(sync, table_api):
    ids = sync.init_tables()
    assert set(ids) == set(TABLE_DEFS)
    assert ids['topics'] == 'tblOld'
    created = [p['data']['name'] for a, p in table_api.calls if a == 'createTable']
    assert created == ['LearnFlow_KnowledgePoints', 'LearnFlow_Practices', 'LearnFlow_UserState']
    assert sync.get_config()['tableIds'] == ids
    assert all(p['appToken'] == 'bascn' for _, p in table_api.calls)


def test_upload_requires_initialized_tables(sync):
    with pytest.raises(ValidationError):
        sync.upload_data()
    assert sync.upload_data(silent=True) is None


def test_upload_replaces_remote_records(sync, store, table_api):
    topic, kp = _seed(store)
    ids = sync.init_tables()
    table_api.tables[ids['topics']]['records'].append({'record_id': 'stale', 'fields': {'id': 'gone'}})

    counts = sync.upload_data()
    assert counts == {'topics': 1, 'knowledgePoints': 1, 'practices': 1}

    topics = [r['fields'] for r in table_api.tables[ids['topics']]['records']]
    assert [t['id'] for t in topics] == [topic.id]
    practice = table_api.tables[ids['practices']]['records'][0]['fields']
    assert practice['kpId'] == kp.id
    assert practice['topicId'] == topic.id
    assert json.loads(practice['feedback']) == {'score': 72, 'feedback': ['ok']}
    state = {r['fields']['key']: r['fields']['value'] for r in table_api.tables[ids['userState']]['records']}
    assert state['streak'] == '1'


def test_download_replaces_local_document(sync, store, table_api):
    topic, kp = _seed(store)
    sync.init_tables()
    sync.upload_data()
    store.replace_all({})
    assert store.get_all().topics == []

    data = sync.download_data()
    assert [t.id for t in data.topics] == [topic.id]
    assert data.topics[0].knowledge_point_ids == [kp.id]
    restored = data.find_knowledge_point(kp.id)
    assert restored.mastery == 72 and restored.review_count == 1
    assert restored.next_review is not None
    assert data.practices[0].feedback == {'score': 72, 'feedback': ['ok']}
    assert data.streak == 1
    assert store.get_all().find_topic(topic.id).title == 'Physics'


def test_download_skips_incomplete_records(sync, store, table_api):
    ids = sync.init_tables()
    table_api.tables[ids['topics']]['records'] = [
        {'fields': {'id': 't1', 'title': 'Kept'}},
        {'fields': {'title': 'No id'}},
    ]
    table_api.tables[ids['practices']]['records'] = [{'fields': {'id': 'p1', 'score': '250', 'feedback': 'plain text'}}]
    data = sync.download_data()
    assert [t.id for t in data.topics] == ['t1']
    assert data.practices == []


def test_download_tolerates_unparseable_dates(sync, store, table_api):
    ids = sync.init_tables()
    table_api.tables[ids['topics']]['records'] = [{'fields': {'id': 't1', 'title': 'Kept', 'createdAt': 'yesterday'}}]
    table_api.tables[ids['knowledgePoints']]['records'] = [{'fields': {'id': 'k1', 'topicId': 't1', 'title': 'Point', 'nextReview': 'not a date', 'reviewCount': '2'}}]
    table_api.tables[ids['userState']]['records'] = [{'fields': {'key': 'lastStudyDate', 'value': 'sometime'}}]
    data = sync.download_data()
    kp = data.find_knowledge_point('k1')
    assert kp.next_review is None and kp.review_count == 2
    assert data.topics[0].knowledge_point_ids == ['k1']
    assert data.last_study_date is None
    assert store.get_all().find_knowledge_point('k1') is not None


def test_silent_upload_swallows_remote_failures(sync, store, table_api):
    _seed(store)
    sync.init_tables()
    table_api.fail_actions.add('batchCreate')
    assert sync.upload_data(silent=True) is None
    with pytest.raises(RemoteAPIError):
        sync.upload_data()


def test_auto_sync_only_when_enabled_and_initialized(sync, store):
    assert sync.schedule_auto_sync() is False
    sync.init_tables()
    assert sync.schedule_auto_sync() is True
    assert sync.debouncer.scheduled == 1
    sync.update_config(auto_sync=False)
    assert sync.schedule_auto_sync() is False


def test_store_saves_trigger_auto_sync(sync, store):
    sync.init_tables()
    store.on_save = lambda data: sync.schedule_auto_sync()
    _seed(store)
    assert sync.debouncer.scheduled == 3


def test_proxy_client_posts_action_and_raises_on_error():
    sent = {}

    def http_post(url, json=None, timeout=None):
        sent.update(url=url, body=json)
        return FakeResponse({'success': True, 'tableCount': 2})

    client = TableProxyClient('http://proxy/table-proxy', http_post=http_post)
    assert client('testConnection', {'appId': 'a'})['tableCount'] == 2
    assert sent['body'] == {'appId': 'a', 'action': 'testConnection'}

    failing = TableProxyClient('http://proxy/table-proxy', http_post=lambda *a, **k: FakeResponse({'error': 'Missing tableId'}, status_code=400))
    with pytest.raises(RemoteAPIError) as exc:
        failing('listRecords', {})
    assert exc.value.status_code == 400
