"""
In-memory stand-in for the few redis.asyncio calls the exporter makes:
SCAN, LLEN, ZCARD, ZCOUNT, PING, MULTI/EXEC pipelines and aclose().
"""
import re
from typing import Dict, List, Optional

from redis.exceptions import ConnectionError, ResponseError

from bullmq_exporter.config import Database, RedisSettings
from bullmq_exporter.redis_queue.redis_client import RedisConnector

WRONGTYPE = "WRONGTYPE Operation against a key holding the wrong kind of value"


def glob_to_regex(pattern: str) -> "re.Pattern":
    """Redis glob-style MATCH: * ? [abc] [^a] [a-z] and backslash escapes."""
    out = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            i += 1
            out.append(re.escape(pattern[i]))
        elif ch == "*":
            out.append(".*")
        elif ch == "?":
            out.append(".")
        elif ch == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(ch))
            else:
                body = pattern[i + 1:end]
                negate = body.startswith("^")
                if negate:
                    body = body[1:]
                body = body.replace("\\", "\\\\")
                out.append(("[^" if negate else "[") + body + "]")
                i = end
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("".join(out), re.DOTALL)


class FakeRedis:
    def __init__(self, *, page_size: int = 2):
        self.lists: Dict[str, List[str]] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.page_size = page_size

        # Failure switches
        self.down = False
        self.fail_scan = False
        self.fail_exec = False
        # Keys returned once more on the last SCAN page
        self.rescan_keys: List[str] = []

        self.scan_calls = 0
        self.exec_calls = 0
        self.closed = False

    # -- fixtures -----------------------------------------------------------
    def add_queue(self, name: str, prefix: str = "bull", **counts: int) -> None:
        """add_queue("orders", active=2, delayed=1) fills the structures of one queue."""
        self.hashes[f"{prefix}:{name}:meta"] = {"opts.maxLenEvents": "10000"}
        for state in ("active", "wait"):
            n = counts.get(state, 0)
            if n:
                self.lists[f"{prefix}:{name}:{state}"] = [f"job-{i}" for i in range(n)]
        for state in ("waiting_children", "prioritized", "delayed", "failed", "completed"):
            n = counts.get(state, 0)
            if n:
                key = f"{prefix}:{name}:{state.replace('_', '-')}"
                self.zsets[key] = {f"job-{i}": float(i) for i in range(n)}

    def keys(self) -> List[str]:
        return sorted(set(self.lists) | set(self.zsets) | set(self.hashes))

    # -- commands -----------------------------------------------------------
    def _check_up(self) -> None:
        if self.down:
            raise ConnectionError("Connection refused")

    async def ping(self) -> bool:
        self._check_up()
        return True

    async def scan(self, cursor: int = 0, match: Optional[str] = None, count: Optional[int] = None, **kwargs):
        self._check_up()
        if self.fail_scan:
            raise ConnectionError("Connection reset by peer")
        self.scan_calls += 1

        keys = self.keys()
        page = keys[cursor:cursor + self.page_size]
        next_cursor = cursor + self.page_size
        if next_cursor >= len(keys):
            next_cursor = 0
            page = page + self.rescan_keys
        if match is not None:
            pattern = glob_to_regex(match)
            page = [k for k in page if pattern.fullmatch(k)]
        return next_cursor, page

    def _llen(self, key: str) -> int:
        if key in self.zsets or key in self.hashes:
            raise ResponseError(WRONGTYPE)
        return len(self.lists.get(key, []))

    def _zcard(self, key: str) -> int:
        if key in self.lists or key in self.hashes:
            raise ResponseError(WRONGTYPE)
        return len(self.zsets.get(key, {}))

    def _zcount(self, key: str, min_score, max_score) -> int:
        if key in self.lists or key in self.hashes:
            raise ResponseError(WRONGTYPE)
        low, high = float(min_score), float(max_score)
        return sum(1 for score in self.zsets.get(key, {}).values() if low <= score <= high)

    async def llen(self, key: str) -> int:
        self._check_up()
        return self._llen(key)

    async def zcard(self, key: str) -> int:
        self._check_up()
        return self._zcard(key)

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)

    async def aclose(self, close_connection_pool: Optional[bool] = None) -> None:
        self.closed = True


class FakePipeline:
    def __init__(self, redis: FakeRedis):
        self.redis = redis
        self.commands = []

    def llen(self, key):
        self.commands.append((self.redis._llen, (key,)))
        return self

    def zcard(self, key):
        self.commands.append((self.redis._zcard, (key,)))
        return self

    def zcount(self, key, min_score, max_score):
        self.commands.append((self.redis._zcount, (key, min_score, max_score)))
        return self

    async def execute(self, raise_on_error: bool = True):
        self.redis._check_up()
        if self.redis.fail_exec:
            raise ConnectionError("Connection reset by peer")
        self.redis.exec_calls += 1

        results = []
        for fn, args in self.commands:
            try:
                results.append(fn(*args))
            except ResponseError as e:
                if raise_on_error:
                    raise
                results.append(e)
        self.commands = []
        return results


class FakeConnector(RedisConnector):
    """RedisConnector serving FakeRedis stores keyed by database index."""

    def __init__(self, stores: Dict[int, FakeRedis], databases: List[Database]):
        super().__init__(RedisSettings(), databases)
        self.stores = stores

    def _create_client(self, index: int) -> FakeRedis:
        return self.stores[index]
