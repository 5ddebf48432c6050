"""Feishu user session: bearer token, expiry and refresh token kept under ``feishu_*`` keys."""
from __future__ import annotations

import os
import json
import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import requests

from learnflow.errors import RemoteAPIError
from learnflow.store.persistence import PersistencePort
from learnflow.utils import get_logger

LOG = get_logger()

TOKEN_KEY = 'feishu_user_token'
USER_INFO_KEY = 'feishu_user_info'
EXPIRE_KEY = 'feishu_token_expire'
REFRESH_TOKEN_KEY = 'feishu_refresh_token'
SESSION_KEY_PREFIX = 'feishu_'

AUTH_EXCHANGE_URL = os.getenv('AUTH_EXCHANGE_URL', 'http://localhost:8000/auth/exchange')
FEISHU_AUTHORIZE_URL = os.getenv('FEISHU_AUTHORIZE_URL', 'https://open.feishu.cn/open-apis/authen/v1/index')
# refresh this long before the token actually expires
REFRESH_MARGIN_MS = 5 * 60 * 1000
LOGIN_STATE = 'LOGIN'


def _now_ms() -> int:
    return int(time.time() * 1000)


class UserSession:
    def __init__(self, persistence: PersistencePort, exchange_url: str = AUTH_EXCHANGE_URL, http_post: Callable[..., Any] = None, clock_ms: Callable[[], int] = None):
        self._persistence = persistence
        self.exchange_url = exchange_url
        self._http_post = http_post or requests.post
        self._clock_ms = clock_ms or _now_ms

    @staticmethod
    def login_url(app_id: str, redirect_uri: str) -> str:
        return f'{FEISHU_AUTHORIZE_URL}?{urlencode({"app_id": app_id, "redirect_uri": redirect_uri, "state": LOGIN_STATE})}'

    def _exchange(self, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = self._http_post(self.exchange_url, json=body, timeout=30)
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise RemoteAPIError(f'Auth exchange failed: {e}') from e
        if data.get('error'):
            raise RemoteAPIError(data['error'], status_code=getattr(resp, 'status_code', None))
        return data

    def complete_login(self, code: str, state: Optional[str] = LOGIN_STATE) -> Dict[str, Any]:
        if state != LOGIN_STATE:
            raise RemoteAPIError(f'Unexpected OAuth state: {state}')
        data = self._exchange({'code': code})
        self.set_token(data['access_token'], data.get('expires_in'), data.get('refresh_token'))
        user = {'id': data.get('open_id'), 'name': data.get('name') or 'Feishu user', 'avatar': data.get('avatar_url') or ''}
        self.set_user_info(user)
        LOG.info('feishu_login_completed', extra={'open_id': user['id']})
        return user

    def set_token(self, token: str, expires_in: Optional[int] = None, refresh_token: Optional[str] = None) -> None:
        self._persistence.write(TOKEN_KEY, token)
        if expires_in:
            self._persistence.write(EXPIRE_KEY, str(self._clock_ms() + int(expires_in) * 1000))
        if refresh_token:
            self._persistence.write(REFRESH_TOKEN_KEY, refresh_token)

    def set_user_info(self, user: Dict[str, Any]) -> None:
        self._persistence.write(USER_INFO_KEY, json.dumps(user, ensure_ascii=False))

    def get_user(self) -> Optional[Dict[str, Any]]:
        raw = self._persistence.read(USER_INFO_KEY)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return None

    def is_logged_in(self) -> bool:
        return bool(self._persistence.read(TOKEN_KEY))

    def _expire_time(self) -> int:
        try:
            return int(self._persistence.read(EXPIRE_KEY) or '0')
        except ValueError:
            return 0

    def get_token(self) -> Optional[str]:
        token = self._persistence.read(TOKEN_KEY)
        if not token:
            return None
        expire_time = self._expire_time()
        if expire_time > 0 and self._clock_ms() > expire_time - REFRESH_MARGIN_MS:
            LOG.info('feishu_token_expiring_refresh')
            return self.refresh_token()
        return token

    def refresh_token(self) -> Optional[str]:
        refresh = self._persistence.read(REFRESH_TOKEN_KEY)
        if not refresh:
            return None
        try:
            data = self._exchange({'grant_type': 'refresh_token', 'refresh_token': refresh})
            if data.get('access_token'):
                self.set_token(data['access_token'], data.get('expires_in'), data.get('refresh_token'))
                return data['access_token']
        except RemoteAPIError as e:
            LOG.warning('feishu_token_refresh_failed', extra={'error': str(e)})
            if self._clock_ms() > self._expire_time():
                self.logout()
                return None
        # old token is still usable until it actually expires
        return self._persistence.read(TOKEN_KEY)

    def logout(self) -> None:
        for key in self._persistence.keys(SESSION_KEY_PREFIX):
            self._persistence.delete(key)
        LOG.info('feishu_logout')
