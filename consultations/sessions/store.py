"""
短生命周期的 session 存储。

基于 Django cache（生产是 Redis，测试是 LocMemCache），只做四件事：
  put / get / delete / compare_and_swap

值一律序列化成 JSON 字符串再写入 cache，读回时 json.loads，
保证 round-trip 前后内容完全一致。

compare_and_swap 用一个短 TTL 的锁 key 实现互斥：cache.add 在 Redis 上就是 SET NX。
拿不到锁就在有限时间内轮询，超时直接返回 False，由调用方按"输了竞争"处理。
"""

import json
import logging
import time
import uuid
from contextlib import contextmanager

from django.conf import settings
from django.core.cache import caches
from django.core.serializers.json import DjangoJSONEncoder

from ..exceptions import SessionNotFound

logger = logging.getLogger(__name__)

SESSION_PREFIX = 'consultation_session'
CLINICAL_INDEX_PREFIX = 'clinical_session'


def session_key(session_id: str) -> str:
    return f'{SESSION_PREFIX}:{session_id}'


def clinical_session_key(clinical_session_id: str) -> str:
    return f'{CLINICAL_INDEX_PREFIX}:{clinical_session_id}'


class SessionStore:

    LOCK_TTL_SECONDS = 5
    LOCK_WAIT_SECONDS = 2.0
    LOCK_POLL_SECONDS = 0.02

    def __init__(self, cache_alias: str = 'default'):
        self._cache = caches[cache_alias]

    # ── 基本读写 ──────────────────────────────────────────────────────────

    def put(self, key: str, value, ttl: int) -> None:
        if ttl <= 0:
            # 已经过期的值不写入，读的时候等同于不存在
            self._cache.delete(key)
            return
        self._cache.set(key, json.dumps(value, cls=DjangoJSONEncoder), timeout=ttl)

    def get(self, key: str):
        """
        Raises:
            SessionNotFound: key 不存在或 TTL 已到期
        """
        raw = self._cache.get(key)
        if raw is None:
            raise SessionNotFound(detail={'key': key})
        return json.loads(raw)

    def delete(self, key: str) -> None:
        self._cache.delete(key)

    # ── CAS ───────────────────────────────────────────────────────────────

    def compare_and_swap(self, key: str, expected_phase: str, new_value: dict, ttl: int,
                         expected_fields: dict | None = None) -> bool:
        """
        当前值的 phase == expected_phase（且 expected_fields 里的字段都相等）时
        写入 new_value，返回 True；否则（不符 / key 不存在 / 拿锁超时）返回 False，
        不修改任何东西。
        """
        with self._lock(key) as acquired:
            if not acquired:
                logger.warning("CAS lock timeout on %s", key)
                return False

            raw = self._cache.get(key)
            if raw is None:
                return False

            current = json.loads(raw)
            if current.get('phase') != expected_phase:
                logger.info(
                    "CAS rejected on %s: expected phase %s, found %s",
                    key, expected_phase, current.get('phase'),
                )
                return False

            mismatched = [k for k, v in (expected_fields or {}).items() if current.get(k) != v]
            if mismatched:
                logger.info("CAS rejected on %s: fields %s changed", key, mismatched)
                return False

            self.put(key, new_value, ttl)
            return True

    @contextmanager
    def _lock(self, key: str):
        lock_key = f'lock:{key}'
        token = uuid.uuid4().hex
        deadline = time.monotonic() + self.LOCK_WAIT_SECONDS

        acquired = self._cache.add(lock_key, token, timeout=self.LOCK_TTL_SECONDS)
        while not acquired and time.monotonic() < deadline:
            time.sleep(self.LOCK_POLL_SECONDS)
            acquired = self._cache.add(lock_key, token, timeout=self.LOCK_TTL_SECONDS)

        try:
            yield acquired
        finally:
            # 只释放自己持有的锁；锁已过期被别人拿走时不能删
            if acquired and self._cache.get(lock_key) == token:
                self._cache.delete(lock_key)


def get_session_store() -> SessionStore:
    return SessionStore(getattr(settings, 'SESSION_STORE_CACHE_ALIAS', 'default'))
