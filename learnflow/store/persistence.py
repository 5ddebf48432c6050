import os
import tempfile
import pathlib
from typing import Dict, Optional

try:
    import redis
except Exception:
    redis = None

from learnflow.utils import get_logger

LOG = get_logger()

LEARNFLOW_STORAGE = os.getenv('LEARNFLOW_STORAGE', 'file')
LEARNFLOW_DATA_DIR = os.getenv('LEARNFLOW_DATA_DIR', 'data')
REDIS_URL = os.getenv('REDIS_URL', None)
REDIS_KEY_PREFIX = os.getenv('REDIS_KEY_PREFIX', 'learnflow:')


class PersistencePort:
    """Key-value port the store and config objects persist through.

    Values are serialized strings; a missing key reads as None.
    """

    def read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def write(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = '') -> list:
        raise NotImplementedError


class InMemoryPersistence(PersistencePort):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    def read(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def write(self, key: str, value: str) -> None:
        self._items[key] = value

    def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self, prefix: str = '') -> list:
        return [k for k in self._items if k.startswith(prefix)]


class JsonFilePersistence(PersistencePort):
    """One ``<key>.json`` file per key under ``directory``."""

    def __init__(self, directory: str = LEARNFLOW_DATA_DIR):
        path = pathlib.Path(directory)
        if not path.is_absolute():
            path = pathlib.Path(os.getcwd()) / path
        path.mkdir(parents=True, exist_ok=True)
        self.directory = path

    def _path(self, key: str) -> pathlib.Path:
        return self.directory / f'{key}.json'

    def read(self, key: str) -> Optional[str]:
        p = self._path(key)
        if not p.exists():
            return None
        return p.read_text(encoding='utf-8')

    def write(self, key: str, value: str) -> None:
        # single rename so readers never see a half-written blob
        fd, tmp = tempfile.mkstemp(dir=str(self.directory), prefix=f'.{key}.', suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as fh:
                fh.write(value)
            os.replace(tmp, self._path(key))
        except Exception:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def delete(self, key: str) -> None:
        p = self._path(key)
        if p.exists():
            p.unlink()

    def keys(self, prefix: str = '') -> list:
        return [p.stem for p in self.directory.glob('*.json') if p.stem.startswith(prefix)]


class RedisPersistence(PersistencePort):
    def __init__(self, client=None, prefix: str = REDIS_KEY_PREFIX):
        if client is None:
            if redis is None:
                raise RuntimeError('redis library not available')
            if REDIS_URL:
                client = redis.from_url(REDIS_URL, decode_responses=True)
            else:
                client = redis.Redis(host=os.getenv('REDIS_HOST', 'redis'), port=int(os.getenv('REDIS_PORT', '6379')), password=os.getenv('REDIS_PASSWORD') or None, decode_responses=True)
        self._client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f'{self.prefix}{key}'

    def ping(self) -> bool:
        return bool(self._client.ping())

    def read(self, key: str) -> Optional[str]:
        return self._client.get(self._key(key))

    def write(self, key: str, value: str) -> None:
        self._client.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self._client.delete(self._key(key))

    def keys(self, prefix: str = '') -> list:
        found = self._client.keys(self._key(prefix) + '*')
        return [k[len(self.prefix):] for k in found]


def get_persistence(kind: Optional[str] = None) -> PersistencePort:
    kind = (kind or LEARNFLOW_STORAGE).lower()
    if kind == 'memory':
        return InMemoryPersistence()
    if kind == 'redis':
        try:
            port = RedisPersistence()
            port.ping()
            LOG.info('persistence_using_redis', extra={'redis_url': REDIS_URL})
            return port
        except Exception as e:
            LOG.warning('Redis not available for persistence, using in-memory store', extra={'error': str(e)})
            return InMemoryPersistence()
    LOG.info('persistence_using_files', extra={'directory': LEARNFLOW_DATA_DIR})
    return JsonFilePersistence()
