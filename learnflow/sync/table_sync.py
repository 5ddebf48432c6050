"""Mirror the learning document into Feishu bitable tables through the table-proxy actions.

Upload replaces the remote tables wholesale; download replaces the local document. The
record mappings here are kept separate from the store's own rules.
"""
from __future__ import annotations

import os
import json
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from learnflow.errors import RemoteAPIError, ValidationError
from learnflow.store import LearningData, LearningStore
from learnflow.store.persistence import PersistencePort
from learnflow.utils import get_logger, log_sync_run
from .debounce import DebouncedTask, AUTO_SYNC_DELAY_SECONDS
from .feishu import dispatch_table_action

LOG = get_logger()

SYNC_CONFIG_KEY = 'learnflow_feishu_config'
TABLE_PROXY_URL = os.getenv('TABLE_PROXY_URL', 'http://localhost:8000/table-proxy')
TABLE_PROXY_TIMEOUT = float(os.getenv('TABLE_PROXY_TIMEOUT', '60'))

TEXT_FIELD = 1
NUMBER_FIELD = 2

TABLE_DEFS: Dict[str, Dict[str, Any]] = {
    'topics': {
        'name': 'LearnFlow_Topics',
        'fields': [
            {'name': 'id', 'type': TEXT_FIELD},
            {'name': 'title', 'type': TEXT_FIELD},
            {'name': 'content', 'type': TEXT_FIELD},
            {'name': 'createdAt', 'type': TEXT_FIELD},
        ],
    },
    'knowledgePoints': {
        'name': 'LearnFlow_KnowledgePoints',
        'fields': [
            {'name': 'id', 'type': TEXT_FIELD},
            {'name': 'topicId', 'type': TEXT_FIELD},
            {'name': 'title', 'type': TEXT_FIELD},
            {'name': 'description', 'type': TEXT_FIELD},
            {'name': 'mastery', 'type': NUMBER_FIELD},
            {'name': 'nextReview', 'type': TEXT_FIELD},
            {'name': 'reviewCount', 'type': NUMBER_FIELD},
            {'name': 'lastReview', 'type': TEXT_FIELD},
            {'name': 'createdAt', 'type': TEXT_FIELD},
        ],
    },
    'practices': {
        'name': 'LearnFlow_Practices',
        'fields': [
            {'name': 'id', 'type': TEXT_FIELD},
            {'name': 'kpId', 'type': TEXT_FIELD},
            {'name': 'topicId', 'type': TEXT_FIELD},
            {'name': 'question', 'type': TEXT_FIELD},
            {'name': 'answer', 'type': TEXT_FIELD},
            {'name': 'score', 'type': NUMBER_FIELD},
            {'name': 'feedback', 'type': TEXT_FIELD},
            {'name': 'createdAt', 'type': TEXT_FIELD},
        ],
    },
    'userState': {
        'name': 'LearnFlow_UserState',
        'fields': [
            {'name': 'key', 'type': TEXT_FIELD},
            {'name': 'value', 'type': TEXT_FIELD},
        ],
    },
}

TableApi = Callable[[str, Dict[str, Any]], Dict[str, Any]]


class TableProxyClient:
    """Calls a remote ``/table-proxy`` endpoint."""

    def __init__(self, proxy_url: str = TABLE_PROXY_URL, http_post: Callable[..., Any] = None):
        self.proxy_url = proxy_url
        self._http_post = http_post or requests.post

    def __call__(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = dict(payload)
        body['action'] = action
        try:
            resp = self._http_post(self.proxy_url, json=body, timeout=TABLE_PROXY_TIMEOUT)
            result = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise RemoteAPIError(f'Table proxy call failed: {e}') from e
        if not resp.ok or result.get('error'):
            raise RemoteAPIError(result.get('error') or f'HTTP {resp.status_code}', status_code=resp.status_code)
        return result


def direct_table_api(action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """In-process equivalent of TableProxyClient, for when this service is the proxy."""
    body = dict(payload)
    body['action'] = action
    return dispatch_table_action(body)


def _int(value: Any) -> int:
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0


class TableSync:
    def __init__(self, store: LearningStore, persistence: PersistencePort, table_api: TableApi, user_id: Optional[str] = None, delay: float = AUTO_SYNC_DELAY_SECONDS, debouncer: Optional[DebouncedTask] = None):
        self.store = store
        self._persistence = persistence
        self.table_api = table_api
        self.user_id = user_id
        self.debouncer = debouncer or DebouncedTask(lambda: self.upload_data(silent=True), delay=delay)

    # ----- configuration -----

    @property
    def config_key(self) -> str:
        return f'{SYNC_CONFIG_KEY}_{self.user_id}' if self.user_id else SYNC_CONFIG_KEY

    def get_config(self) -> Dict[str, Any]:
        raw = self._persistence.read(self.config_key)
        if not raw:
            return {}
        try:
            config = json.loads(raw)
        except ValueError:
            return {}
        return config if isinstance(config, dict) else {}

    def save_config(self, config: Dict[str, Any]) -> Dict[str, Any]:
        self._persistence.write(self.config_key, json.dumps(config, ensure_ascii=False))
        return config

    def update_config(self, app_id: str = None, app_secret: str = None, app_token: str = None, auto_sync: bool = None) -> Dict[str, Any]:
        config = self.get_config()
        for key, value in (('appId', app_id), ('appSecret', app_secret), ('appToken', app_token)):
            if value is not None:
                config[key] = value.strip()
        if auto_sync is not None:
            config['autoSync'] = bool(auto_sync)
        return self.save_config(config)

    def is_configured(self) -> bool:
        c = self.get_config()
        return bool(c.get('appId') and c.get('appSecret') and c.get('appToken'))

    def _call(self, action: str, **extra) -> Dict[str, Any]:
        c = self.get_config()
        payload = {'appId': c.get('appId'), 'appSecret': c.get('appSecret'), 'appToken': c.get('appToken')}
        payload.update(extra)
        return self.table_api(action, payload)

    # ----- operations -----

    def test_connection(self) -> int:
        return self._call('testConnection').get('tableCount', 0)

    def init_tables(self) -> Dict[str, str]:
        existing = self._call('listTables').get('tables') or []
        by_name = {t.get('name'): t.get('table_id') for t in existing}
        config = self.get_config()
        table_ids = config.get('tableIds') or {}
        for key, definition in TABLE_DEFS.items():
            if definition['name'] in by_name:
                table_ids[key] = by_name[definition['name']]
                LOG.info('sync_table_exists', extra={'table_name': definition['name'], 'table_id': table_ids[key]})
                continue
            result = self._call('createTable', data={'name': definition['name'], 'fields': definition['fields']})
            table_ids[key] = result.get('tableId')
        config['tableIds'] = table_ids
        self.save_config(config)
        return table_ids

    def schedule_auto_sync(self) -> bool:
        config = self.get_config()
        if not config.get('autoSync') or not config.get('tableIds'):
            return False
        self.debouncer.schedule()
        return True

    def _records(self, data: LearningData) -> Dict[str, List[Dict[str, Any]]]:
        kp_topics = {k.id: k.topic_id for k in data.knowledge_points}
        topics = [{'id': t.id, 'title': t.title, 'content': t.content, 'createdAt': t.created_at.isoformat()} for t in data.topics]
        points = [{
            'id': k.id, 'topicId': k.topic_id, 'title': k.title, 'description': k.description,
            'mastery': k.mastery or 0,
            'nextReview': k.next_review.isoformat() if k.next_review else '',
            'reviewCount': k.review_count or 0,
            'lastReview': k.last_review.isoformat() if k.last_review else '',
            'createdAt': k.created_at.isoformat(),
        } for k in data.knowledge_points]
        practices = [{
            'id': p.id, 'kpId': p.knowledge_point_id, 'topicId': kp_topics.get(p.knowledge_point_id, ''),
            'question': p.question, 'answer': p.answer or '', 'score': p.score or 0,
            'feedback': p.feedback if isinstance(p.feedback, str) else ('' if p.feedback is None else json.dumps(p.feedback, ensure_ascii=False)),
            'createdAt': p.created_at.isoformat(),
        } for p in data.practices]
        state = [
            {'key': 'streak', 'value': str(data.streak or 0)},
            {'key': 'lastStudyDate', 'value': data.last_study_date.isoformat() if data.last_study_date else ''},
            {'key': 'dailyLog', 'value': json.dumps(data.daily_log or {})},
        ]
        return {'topics': topics, 'knowledgePoints': points, 'practices': practices, 'userState': state}

    def upload_data(self, silent: bool = False) -> Optional[Dict[str, int]]:
        table_ids = self.get_config().get('tableIds')
        if not table_ids:
            if silent:
                return None
            raise ValidationError('Tables are not initialized')
        start = time.time()
        try:
            data = self.store.get_all()
            for table_id in table_ids.values():
                self._call('deleteAllRecords', tableId=table_id)
            for key, records in self._records(data).items():
                if records and table_ids.get(key):
                    self._call('batchCreate', tableId=table_ids[key], data={'records': records})
        except (RemoteAPIError, ValidationError):
            if not silent:
                raise
            LOG.exception('auto_sync_failed', exc_info=True)
            return None
        counts = {'topics': len(data.topics), 'knowledgePoints': len(data.knowledge_points), 'practices': len(data.practices)}
        log_sync_run('upload', counts['topics'], counts['knowledgePoints'], counts['practices'], int((time.time() - start) * 1000), silent=silent)
        return counts

    def download_data(self) -> LearningData:
        table_ids = self.get_config().get('tableIds')
        if not table_ids:
            raise ValidationError('Tables are not initialized')
        start = time.time()
        now = self.store.now().isoformat()

        def fields_of(key: str) -> List[Dict[str, Any]]:
            if not table_ids.get(key):
                return []
            records = self._call('listRecords', tableId=table_ids[key]).get('records') or []
            return [r.get('fields') or {} for r in records]

        topics = [{
            'id': f['id'], 'title': f['title'], 'content': f.get('content') or '',
            'createdAt': f.get('createdAt') or now,
        } for f in fields_of('topics') if f.get('id') and f.get('title')]

        points = [{
            'id': f['id'], 'topicId': f.get('topicId') or '', 'title': f['title'],
            'description': f.get('description') or '',
            'mastery': min(100, max(0, _int(f.get('mastery')))),
            'nextReview': f.get('nextReview') or None,
            'reviewCount': max(0, _int(f.get('reviewCount'))),
            'lastReview': f.get('lastReview') or None,
            'createdAt': f.get('createdAt') or now,
        } for f in fields_of('knowledgePoints') if f.get('id') and f.get('title')]
        for t in topics:
            t['knowledgePointIds'] = [p['id'] for p in points if p['topicId'] == t['id']]

        practices = []
        for f in fields_of('practices'):
            if not f.get('id') or not f.get('kpId'):
                continue
            feedback = f.get('feedback') or ''
            try:
                feedback = json.loads(feedback)
            except (TypeError, ValueError):
                pass
            practices.append({
                'id': f['id'], 'knowledgePointId': f['kpId'], 'question': f.get('question') or '',
                'answer': f.get('answer') or '', 'score': min(100, max(0, _int(f.get('score')))),
                'feedback': feedback, 'createdAt': f.get('createdAt') or now,
            })

        doc: Dict[str, Any] = {'topics': topics, 'knowledgePoints': points, 'practices': practices}
        for f in fields_of('userState'):
            key, value = f.get('key'), f.get('value')
            if key == 'streak':
                doc['streak'] = _int(value)
            elif key == 'lastStudyDate':
                doc['lastStudyDate'] = value or None
            elif key == 'dailyLog':
                try:
                    doc['dailyLog'] = json.loads(value or '{}')
                except ValueError:
                    doc['dailyLog'] = {}

        saved = self.store.replace_all(doc)
        log_sync_run('download', len(saved.topics), len(saved.knowledge_points), len(saved.practices), int((time.time() - start) * 1000))
        return saved
