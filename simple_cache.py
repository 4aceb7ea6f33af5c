import functools
import threading
import time

from logger import get_logger

logger = get_logger(__name__)


class SimpleCache:
    """In-memory key/value cache where every entry expires after a fixed TTL."""

    def __init__(self, ttl_minutes=60, clock=time.time):
        self.ttl = ttl_minutes * 60
        self._clock = clock
        self._entries = {}
        self._lock = threading.Lock()

    def set(self, key, data):
        with self._lock:
            self._entries[key] = (data, self._clock())

    def get(self, key):
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            data, timestamp = entry
            if self._clock() - timestamp > self.ttl:
                del self._entries[key]
                return None
            return data

    def delete(self, key):
        with self._lock:
            self._entries.pop(key, None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def cleanup(self):
        """Drops every expired entry."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, ts) in self._entries.items() if now - ts > self.ttl]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def stats(self):
        with self._lock:
            return {"size": len(self._entries), "keys": list(self._entries.keys())}


# --- Shared instances ---
api_cache = SimpleCache(60)
metadata_cache = SimpleCache(120)
query_cache = SimpleCache(30)
store_cache = SimpleCache(60)
coupon_cache = SimpleCache(15)
# webhook job status
task_cache = SimpleCache(60)

ALL_CACHES = {
    "api": api_cache,
    "metadata": metadata_cache,
    "query": query_cache,
    "store": store_cache,
    "coupon": coupon_cache,
    "task": task_cache,
}


def cached(cache, key_func):
    """
    Memoizes a function through `cache`. `key_func` receives the same
    arguments as the wrapped function. Empty results are not stored.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            key = key_func(*args, **kwargs)
            hit = cache.get(key)
            if hit is not None:
                return hit
            result = func(*args, **kwargs)
            if result:
                cache.set(key, result)
            return result
        return wrapper
    return decorator


def cleanup_all():
    sizes = {}
    for name, cache in ALL_CACHES.items():
        cache.cleanup()
        sizes[name] = cache.stats()["size"]
    logger.info("Cache cleanup completed: %s", sizes)
    return sizes


def start_cleanup_thread(interval_seconds=30 * 60):
    """Starts a daemon thread that purges expired entries every `interval_seconds`."""
    def loop():
        while True:
            time.sleep(interval_seconds)
            cleanup_all()

    thread = threading.Thread(target=loop, name="cache-cleanup", daemon=True)
    thread.start()
    return thread
