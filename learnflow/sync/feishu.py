"""Server-side clients for the Feishu open platform: OAuth token exchange and bitable tables.

Every Feishu response carries ``code``; anything other than 0 is raised as RemoteAPIError.
"""
from __future__ import annotations

import os
import json
from typing import Any, Dict, List, Optional

import requests

from learnflow.errors import ConfigurationMissing, RemoteAPIError, ValidationError
from learnflow.utils import get_logger

LOG = get_logger()

FEISHU_BASE_URL = os.getenv('FEISHU_BASE_URL', 'https://open.feishu.cn/open-apis').rstrip('/')
FEISHU_TIMEOUT = float(os.getenv('FEISHU_TIMEOUT', '30'))
PAGE_SIZE = 500
BATCH_SIZE = 500
DEFAULT_VIEW_NAME = 'Default view'


class _FeishuHTTP:
    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        headers = kwargs.pop('headers', {})
        if token:
            headers['Authorization'] = f'Bearer {token}'
        if 'json' in kwargs:
            headers.setdefault('Content-Type', 'application/json; charset=utf-8')
        try:
            resp = self.session.request(method, f'{FEISHU_BASE_URL}{path}', headers=headers, timeout=FEISHU_TIMEOUT, **kwargs)
        except requests.RequestException as e:
            raise RemoteAPIError(f'Feishu request failed: {e}') from e
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteAPIError(f'Feishu returned non-JSON response ({resp.status_code})', status_code=resp.status_code) from e

    @staticmethod
    def _check(result: Dict[str, Any], context: str) -> Dict[str, Any]:
        if result.get('code') != 0:
            raise RemoteAPIError(f'{context}: {result.get("msg")}')
        return result


class FeishuAuthClient(_FeishuHTTP):
    """Exchanges OAuth codes and refresh tokens for user access tokens."""

    def __init__(self, app_id: Optional[str] = None, app_secret: Optional[str] = None, session: Optional[requests.Session] = None):
        super().__init__(session)
        self.app_id = app_id if app_id is not None else os.getenv('FEISHU_APP_ID')
        self.app_secret = app_secret if app_secret is not None else os.getenv('FEISHU_APP_SECRET')

    def app_access_token(self) -> str:
        if not self.app_id or not self.app_secret:
            raise ConfigurationMissing('Server misconfiguration: missing Feishu App ID or Secret')
        result = self._request('POST', '/auth/v3/app_access_token/internal', json={'app_id': self.app_id, 'app_secret': self.app_secret})
        return self._check(result, 'Get app token failed')['app_access_token']

    def exchange_code(self, code: str) -> Dict[str, Any]:
        token = self.app_access_token()
        result = self._request('POST', '/authen/v1/access_token', token=token, json={'grant_type': 'authorization_code', 'code': code})
        LOG.info('feishu_code_exchanged', extra={'code_present': bool(code)})
        return self._check(result, 'Feishu API error')['data']

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        token = self.app_access_token()
        result = self._request('POST', '/authen/v1/refresh_access_token', token=token, json={'grant_type': 'refresh_token', 'refresh_token': refresh_token})
        LOG.info('feishu_token_refreshed')
        return self._check(result, 'Feishu API error')['data']


class FeishuTableClient(_FeishuHTTP):
    """Bitable operations for one app token, authenticated with a tenant access token."""

    def __init__(self, app_id: str, app_secret: str, app_token: Optional[str] = None, session: Optional[requests.Session] = None):
        super().__init__(session)
        self.app_id = app_id
        self.app_secret = app_secret
        self.app_token = app_token
        self._token: Optional[str] = None

    def tenant_token(self) -> str:
        if self._token is None:
            result = self._request('POST', '/auth/v3/tenant_access_token/internal', json={'app_id': self.app_id, 'app_secret': self.app_secret})
            self._token = self._check(result, 'Get token failed')['tenant_access_token']
        return self._token

    def _tables_path(self) -> str:
        return f'/bitable/v1/apps/{self.app_token}/tables'

    def test_connection(self) -> int:
        result = self._request('GET', self._tables_path(), token=self.tenant_token(), params={'page_size': 1})
        self._check(result, 'Connecting to bitable failed (check the app token and that the app can access it)')
        return (result.get('data') or {}).get('total') or 0

    def list_tables(self) -> List[Dict[str, Any]]:
        result = self._request('GET', self._tables_path(), token=self.tenant_token(), params={'page_size': 100})
        self._check(result, 'Listing tables failed')
        return (result.get('data') or {}).get('items') or []

    def create_table(self, name: str, fields: List[Dict[str, Any]]) -> Optional[str]:
        body = {
            'table': {
                'name': name,
                'default_view_name': DEFAULT_VIEW_NAME,
                'fields': [{'field_name': f['name'], 'type': f['type']} for f in fields],
            }
        }
        result = self._request('POST', self._tables_path(), token=self.tenant_token(), json=body)
        self._check(result, f'Creating table "{name}" failed')
        table_id = (result.get('data') or {}).get('table_id')
        LOG.info('feishu_table_created', extra={'table_name': name, 'table_id': table_id})
        return table_id

    def _iter_record_pages(self, table_id: str, page_token: Optional[str] = None, params: Optional[Dict[str, Any]] = None):
        while True:
            query = {'page_size': PAGE_SIZE}
            query.update(params or {})
            if page_token:
                query['page_token'] = page_token
            result = self._request('GET', f'{self._tables_path()}/{table_id}/records', token=self.tenant_token(), params=query)
            yield result
            data = result.get('data') or {}
            page_token = data.get('page_token') if data.get('has_more') else None
            if result.get('code') != 0 or not page_token:
                return

    def list_records(self, table_id: str, page_token: Optional[str] = None) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        for page in self._iter_record_pages(table_id, page_token):
            self._check(page, 'Listing records failed')
            records.extend((page.get('data') or {}).get('items') or [])
        return records

    def batch_create(self, table_id: str, records: List[Dict[str, Any]]) -> int:
        created = 0
        for i in range(0, len(records), BATCH_SIZE):
            batch = records[i:i + BATCH_SIZE]
            result = self._request('POST', f'{self._tables_path()}/{table_id}/records/batch_create', token=self.tenant_token(), json={'records': [{'fields': r} for r in batch]})
            self._check(result, 'Batch creating records failed')
            created += len((result.get('data') or {}).get('records') or [])
        return created

    def delete_all_records(self, table_id: str) -> int:
        ids: List[str] = []
        for page in self._iter_record_pages(table_id, params={'field_names': json.dumps(['_'])}):
            if page.get('code') != 0:
                # an empty or unreadable table counts as already cleared
                return 0
            ids.extend(item['record_id'] for item in (page.get('data') or {}).get('items') or [])
        deleted = 0
        for i in range(0, len(ids), BATCH_SIZE):
            batch = ids[i:i + BATCH_SIZE]
            result = self._request('POST', f'{self._tables_path()}/{table_id}/records/batch_delete', token=self.tenant_token(), json={'records': batch})
            self._check(result, 'Deleting records failed')
            deleted += len(batch)
        return deleted


TABLE_ACTIONS = ('getToken', 'testConnection', 'listTables', 'createTable', 'listRecords', 'batchCreate', 'deleteAllRecords')


def dispatch_table_action(body: Dict[str, Any], session: Optional[requests.Session] = None) -> Dict[str, Any]:
    """Run one table-proxy action and return its JSON result.

    Missing or unknown parameters raise ValidationError; Feishu failures raise RemoteAPIError.
    """
    action = body.get('action')
    if not action:
        raise ValidationError('Missing action parameter')
    if action not in TABLE_ACTIONS:
        raise ValidationError(f'Unknown action: {action}')

    app_id, app_secret, app_token = body.get('appId'), body.get('appSecret'), body.get('appToken')
    table_id, data = body.get('tableId'), body.get('data') or {}
    if not app_id or not app_secret:
        raise ValidationError('Missing appId or appSecret')
    if action != 'getToken' and not app_token:
        raise ValidationError('Missing appId, appSecret or appToken')
    if action in ('listRecords', 'batchCreate', 'deleteAllRecords') and not table_id:
        raise ValidationError('Missing tableId')

    client = FeishuTableClient(app_id, app_secret, app_token, session=session)
    LOG.info('table_proxy_action', extra={'action': action, 'table_id': table_id})

    if action == 'getToken':
        return {'success': True, 'token': client.tenant_token()}
    if action == 'testConnection':
        return {'success': True, 'tableCount': client.test_connection()}
    if action == 'listTables':
        return {'success': True, 'tables': client.list_tables()}
    if action == 'createTable':
        if not data.get('name') or not isinstance(data.get('fields'), list):
            raise ValidationError('createTable requires data.name and data.fields')
        return {'success': True, 'tableId': client.create_table(data['name'], data['fields'])}
    if action == 'listRecords':
        records = client.list_records(table_id, data.get('pageToken'))
        return {'success': True, 'records': records, 'total': len(records)}
    if action == 'batchCreate':
        records = data.get('records')
        if not records or not isinstance(records, list):
            return {'success': True, 'created': 0}
        return {'success': True, 'created': client.batch_create(table_id, records)}
    return {'success': True, 'deleted': client.delete_all_records(table_id)}
