import pytest

from learnflow.errors import RemoteAPIError
from learnflow.store import InMemoryPersistence
from learnflow.sync import UserSession
from tests.fixtures.mock_feishu import FakeResponse

pytestmark = pytest.mark.unit

NOW_MS = 1_700_000_000_000


class Clock:
    def __init__(self, ms=NOW_MS):
        self.ms = ms

    def __call__(self):
        return self.ms


class ExchangeEndpoint:
    def __init__(self, *replies):
        self.replies = list(replies)
        self.bodies = []

    def __call__(self, url, json=None, timeout=None):
        self.bodies.append(json)
        reply = self.replies.pop(0)
        return FakeResponse(reply, status_code=500 if 'error' in reply else 200)


def _session(endpoint, clock=None, persistence=None):
    return UserSession(persistence or InMemoryPersistence(), exchange_url='http://svc/auth/exchange', http_post=endpoint, clock_ms=clock or Clock())


def test_login_url_carries_state():
    url = UserSession.login_url('cli_a', 'http://localhost:3000/callback')
    assert 'app_id=cli_a' in url
    assert 'state=LOGIN' in url
    assert 'redirect_uri=http%3A%2F%2Flocalhost%3A3000%2Fcallback' in url


def test_complete_login_stores_token_and_user():
    endpoint = ExchangeEndpoint({'access_token': 'u-1', 'refresh_token': 'r-1', 'expires_in': 7200, 'open_id': 'ou_1', 'name': 'Lin'})
    session = _session(endpoint)
    user = session.complete_login('code-1', 'LOGIN')
    assert user == {'id': 'ou_1', 'name': 'Lin', 'avatar': ''}
    assert endpoint.bodies == [{'code': 'code-1'}]
    assert session.is_logged_in()
    assert session.get_user()['name'] == 'Lin'
    assert session.get_token() == 'u-1'


def test_complete_login_rejects_foreign_state():
    session = _session(ExchangeEndpoint())
    with pytest.raises(RemoteAPIError):
        session.complete_login('code-1', 'EVIL')


def test_token_refreshes_inside_five_minute_window():
    clock = Clock()
    endpoint = ExchangeEndpoint({'access_token': 'u-2', 'refresh_token': 'r-2', 'expires_in': 7200})
    session = _session(endpoint, clock)
    session.set_token('u-1', expires_in=600, refresh_token='r-1')

    clock.ms += 4 * 60 * 1000
    assert session.get_token() == 'u-1'
    assert endpoint.bodies == []

    clock.ms += 2 * 60 * 1000
    assert session.get_token() == 'u-2'
    assert endpoint.bodies == [{'grant_type': 'refresh_token', 'refresh_token': 'r-1'}]


def test_failed_refresh_keeps_token_until_expiry():
    clock = Clock()
    session = _session(ExchangeEndpoint({'error': 'refresh failed'}), clock)
    session.set_token('u-1', expires_in=600, refresh_token='r-1')
    clock.ms += 8 * 60 * 1000
    assert session.get_token() == 'u-1'
    assert session.is_logged_in()


def test_failed_refresh_after_expiry_logs_out():
    clock = Clock()
    persistence = InMemoryPersistence()
    persistence.write('learnflow_data', '{}')
    session = _session(ExchangeEndpoint({'error': 'refresh failed'}), clock, persistence)
    session.set_token('u-1', expires_in=600, refresh_token='r-1')
    session.set_user_info({'id': 'ou_1', 'name': 'Lin', 'avatar': ''})
    clock.ms += 11 * 60 * 1000
    assert session.get_token() is None
    assert not session.is_logged_in()
    assert persistence.keys('feishu_') == []
    assert persistence.read('learnflow_data') == '{}'


def test_logout_clears_session_keys():
    session = _session(ExchangeEndpoint())
    session.set_token('u-1', expires_in=7200, refresh_token='r-1')
    session.logout()
    assert session.get_token() is None
    assert session.get_user() is None
