import fnmatch


class MockRedisClient:
    def __init__(self):
        self.store = {}
        self.expirations = {}

    def get(self, k):
        return self.store.get(k)

    def set(self, k, v, ex=None):
        self.store[k] = v
        if ex:
            self.expirations[k] = ex

    def delete(self, k):
        self.store.pop(k, None)
        self.expirations.pop(k, None)

    def keys(self, pattern='*'):
        return [k for k in self.store if fnmatch.fnmatchcase(k, pattern)]

    def ping(self):
        return True

    def flushall(self):
        self.store.clear()
        self.expirations.clear()
