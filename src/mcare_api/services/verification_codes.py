"""短信验证码存储。

职责:
1. 生成 6 位验证码并按 (区号, 手机号) 保存，5 分钟内有效。
2. 同一手机号 60 秒内只允许发送一次。
3. 单个验证码最多校验 3 次，成功后立即作废。
4. 定期清理过期验证码与频控标记，控制内存占用。

所有读-判断-写操作按 key 原子执行：内存实现使用分片锁，Redis 实现使用 Lua 脚本。
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
import secrets
from threading import Event, Lock, Thread

from redis import Redis
from redis.exceptions import RedisError

from mcare_api.core.config import Settings
from mcare_api.core.log import mask_phone

logger = logging.getLogger(__name__)

CODE_LENGTH = 6


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_code() -> str:
    """生成 100000-999999 范围内均匀分布的验证码。"""
    return str(100000 + secrets.randbelow(900000))


def _store_key(region: str, phone: str) -> str:
    return f"{region}:{phone}"


class VerificationCodeStore(ABC):
    """验证码存储接口。"""

    @abstractmethod
    def is_rate_limited(self, region: str, phone: str) -> bool:
        """判断该手机号是否仍处于发送冷却期，无副作用。"""

    @abstractmethod
    def send(self, region: str, phone: str) -> str:
        """无条件生成并保存新验证码，覆盖旧验证码并刷新频控标记。"""

    @abstractmethod
    def try_send(self, region: str, phone: str) -> str | None:
        """频控检查与发送作为一个原子操作；冷却期内返回 None。"""

    @abstractmethod
    def verify(self, region: str, phone: str, candidate: str) -> bool:
        """校验验证码，成功后作废。"""

    @abstractmethod
    def sweep(self) -> int:
        """清理过期数据，返回移除的记录数。"""

    @abstractmethod
    def ping(self) -> bool:
        """检测存储后端是否可用，供就绪探针使用。"""


@dataclass
class _CodeEntry:
    code: str
    expires_at: datetime
    attempts: int = 0


@dataclass
class _Shard:
    lock: Lock = field(default_factory=Lock)
    codes: dict[str, _CodeEntry] = field(default_factory=dict)
    markers: dict[str, datetime] = field(default_factory=dict)


class InMemoryVerificationCodeStore(VerificationCodeStore):
    """进程内验证码存储。

    key 按哈希分布到固定数量的分片，每个分片一把锁；同一 key 的所有操作串行执行，
    不同分片之间互不阻塞。
    """

    def __init__(
        self,
        *,
        code_ttl_seconds: int = 300,
        rate_limit_seconds: int = 60,
        max_attempts: int = 3,
        marker_retention_seconds: int = 86400,
        shards: int = 16,
        clock: Callable[[], datetime] = _utc_now,
        code_factory: Callable[[], str] = generate_code,
    ) -> None:
        self.code_ttl = timedelta(seconds=code_ttl_seconds)
        self.rate_limit = timedelta(seconds=rate_limit_seconds)
        self.max_attempts = max_attempts
        self.marker_retention = timedelta(seconds=marker_retention_seconds)
        self._shards = [_Shard() for _ in range(max(1, shards))]
        self._clock = clock
        self._code_factory = code_factory

    @classmethod
    def from_settings(cls, settings: Settings) -> "InMemoryVerificationCodeStore":
        return cls(
            code_ttl_seconds=settings.verification_code_ttl_seconds,
            rate_limit_seconds=settings.verification_rate_limit_seconds,
            max_attempts=settings.verification_max_attempts,
            marker_retention_seconds=settings.verification_marker_retention_seconds,
            shards=settings.verification_store_shards,
        )

    def _shard(self, key: str) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def _limited(self, shard: _Shard, key: str, now: datetime) -> bool:
        last_sent_at = shard.markers.get(key)
        return last_sent_at is not None and now - last_sent_at < self.rate_limit

    def _store_new_code(self, shard: _Shard, key: str, now: datetime) -> str:
        code = self._code_factory()
        shard.codes[key] = _CodeEntry(code=code, expires_at=now + self.code_ttl)
        shard.markers[key] = now
        return code

    def is_rate_limited(self, region: str, phone: str) -> bool:
        key = _store_key(region, phone)
        shard = self._shard(key)
        with shard.lock:
            return self._limited(shard, key, self._clock())

    def send(self, region: str, phone: str) -> str:
        key = _store_key(region, phone)
        shard = self._shard(key)
        with shard.lock:
            code = self._store_new_code(shard, key, self._clock())
        logger.info("verification code generated phone=%s", mask_phone(region, phone))
        return code

    def try_send(self, region: str, phone: str) -> str | None:
        key = _store_key(region, phone)
        shard = self._shard(key)
        with shard.lock:
            now = self._clock()
            if self._limited(shard, key, now):
                logger.info("verification code send throttled phone=%s", mask_phone(region, phone))
                return None
            code = self._store_new_code(shard, key, now)
        logger.info("verification code generated phone=%s", mask_phone(region, phone))
        return code

    def verify(self, region: str, phone: str, candidate: str) -> bool:
        key = _store_key(region, phone)
        masked = mask_phone(region, phone)
        shard = self._shard(key)
        with shard.lock:
            entry = shard.codes.get(key)
            if entry is None:
                logger.warning("no verification code found phone=%s", masked)
                return False

            if self._clock() >= entry.expires_at:
                shard.codes.pop(key, None)
                logger.warning("verification code expired phone=%s", masked)
                return False

            # 先判断次数再自增，第 4 次起即使验证码正确也拒绝。
            if entry.attempts >= self.max_attempts:
                shard.codes.pop(key, None)
                logger.warning("too many verification attempts phone=%s", masked)
                return False

            entry.attempts += 1
            if entry.code != candidate:
                logger.warning("invalid verification code phone=%s attempt=%s", masked, entry.attempts)
                return False

            shard.codes.pop(key, None)
        logger.info("verification code verified phone=%s", masked)
        return True

    def sweep(self) -> int:
        removed = 0
        for shard in self._shards:
            with shard.lock:
                now = self._clock()
                stale_codes = [
                    key
                    for key, entry in shard.codes.items()
                    if now >= entry.expires_at or entry.attempts >= self.max_attempts
                ]
                for key in stale_codes:
                    shard.codes.pop(key, None)
                stale_markers = [key for key, sent_at in shard.markers.items() if now - sent_at > self.marker_retention]
                for key in stale_markers:
                    shard.markers.pop(key, None)
                removed += len(stale_codes) + len(stale_markers)
        return removed

    def ping(self) -> bool:
        return True


# KEYS: code_key, marker_key
# ARGV: now_ms, code, expires_at_ms, code_ttl_ms, window_ms, marker_retention_s, force
_SEND_LUA = """
local now = tonumber(ARGV[1])
if ARGV[7] ~= '1' then
    local last = redis.call('GET', KEYS[2])
    if last and (now - tonumber(last)) < tonumber(ARGV[5]) then
        return 0
    end
end
redis.call('DEL', KEYS[1])
redis.call('HSET', KEYS[1], 'code', ARGV[2], 'expires_at', ARGV[3], 'attempts', 0)
redis.call('PEXPIRE', KEYS[1], ARGV[4])
redis.call('SET', KEYS[2], ARGV[1], 'EX', ARGV[6])
return 1
"""

# KEYS: code_key
# ARGV: now_ms, candidate, max_attempts
# 返回: 1 成功；0 不存在；-1 已过期；-2 次数耗尽；-3 验证码错误
_VERIFY_LUA = """
local data = redis.call('HMGET', KEYS[1], 'code', 'expires_at', 'attempts')
if not data[1] then
    return 0
end
if tonumber(ARGV[1]) >= tonumber(data[2]) then
    redis.call('DEL', KEYS[1])
    return -1
end
if tonumber(data[3]) >= tonumber(ARGV[3]) then
    redis.call('DEL', KEYS[1])
    return -2
end
redis.call('HINCRBY', KEYS[1], 'attempts', 1)
if data[1] ~= ARGV[2] then
    return -3
end
redis.call('DEL', KEYS[1])
return 1
"""

_VERIFY_FAILURES = {
    0: "no verification code found",
    -1: "verification code expired",
    -2: "too many verification attempts",
    -3: "invalid verification code",
}


class RedisVerificationCodeStore(VerificationCodeStore):
    """基于 Redis 的共享验证码存储，适用于多进程/多实例部署。

    过期由键 TTL 兜底，校验时仍按注入时钟比较 expires_at，语义与内存实现一致。
    """

    def __init__(
        self,
        client: Redis,
        *,
        prefix: str = "mcare:verify:",
        code_ttl_seconds: int = 300,
        rate_limit_seconds: int = 60,
        max_attempts: int = 3,
        marker_retention_seconds: int = 86400,
        clock: Callable[[], datetime] = _utc_now,
        code_factory: Callable[[], str] = generate_code,
    ) -> None:
        self._client = client
        self._prefix = prefix
        self.code_ttl_ms = code_ttl_seconds * 1000
        self.rate_limit_ms = rate_limit_seconds * 1000
        self.max_attempts = max_attempts
        self.marker_retention_seconds = marker_retention_seconds
        self._clock = clock
        self._code_factory = code_factory
        self._send_script = client.register_script(_SEND_LUA)
        self._verify_script = client.register_script(_VERIFY_LUA)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisVerificationCodeStore":
        client = Redis.from_url(settings.redis_url, decode_responses=True)
        return cls(
            client,
            prefix=settings.verification_redis_prefix,
            code_ttl_seconds=settings.verification_code_ttl_seconds,
            rate_limit_seconds=settings.verification_rate_limit_seconds,
            max_attempts=settings.verification_max_attempts,
            marker_retention_seconds=settings.verification_marker_retention_seconds,
        )

    def _code_key(self, region: str, phone: str) -> str:
        return f"{self._prefix}code:{_store_key(region, phone)}"

    def _marker_key(self, region: str, phone: str) -> str:
        return f"{self._prefix}rate:{_store_key(region, phone)}"

    def _now_ms(self) -> int:
        return int(self._clock().timestamp() * 1000)

    def _run_send(self, region: str, phone: str, *, force: bool) -> str | None:
        now_ms = self._now_ms()
        code = self._code_factory()
        stored = self._send_script(
            keys=[self._code_key(region, phone), self._marker_key(region, phone)],
            args=[
                now_ms,
                code,
                now_ms + self.code_ttl_ms,
                self.code_ttl_ms,
                self.rate_limit_ms,
                self.marker_retention_seconds,
                "1" if force else "0",
            ],
        )
        if int(stored) != 1:
            logger.info("verification code send throttled phone=%s", mask_phone(region, phone))
            return None
        logger.info("verification code generated phone=%s", mask_phone(region, phone))
        return code

    def is_rate_limited(self, region: str, phone: str) -> bool:
        last_sent_ms = self._client.get(self._marker_key(region, phone))
        if last_sent_ms is None:
            return False
        return self._now_ms() - int(last_sent_ms) < self.rate_limit_ms

    def send(self, region: str, phone: str) -> str:
        code = self._run_send(region, phone, force=True)
        if code is None:
            raise RedisError("verification code was not stored")
        return code

    def try_send(self, region: str, phone: str) -> str | None:
        return self._run_send(region, phone, force=False)

    def verify(self, region: str, phone: str, candidate: str) -> bool:
        masked = mask_phone(region, phone)
        outcome = int(
            self._verify_script(
                keys=[self._code_key(region, phone)],
                args=[self._now_ms(), candidate, self.max_attempts],
            )
        )
        if outcome == 1:
            logger.info("verification code verified phone=%s", masked)
            return True
        logger.warning("%s phone=%s", _VERIFY_FAILURES.get(outcome, "verification failed"), masked)
        return False

    def sweep(self) -> int:
        # 键 TTL 已负责回收。
        return 0

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except RedisError:
            logger.exception("verification code store ping failed")
            return False


def build_code_store(settings: Settings) -> VerificationCodeStore:
    """按配置选择验证码存储实现。"""
    if settings.redis_url:
        return RedisVerificationCodeStore.from_settings(settings)
    return InMemoryVerificationCodeStore.from_settings(settings)


class CodeSweeper:
    """后台定期清理验证码存储的守护线程。"""

    def __init__(self, store: VerificationCodeStore, *, interval_seconds: float) -> None:
        self._store = store
        self._interval = interval_seconds
        self._stop = Event()
        self._thread: Thread | None = None

    def start(self) -> None:
        if self._interval <= 0 or self._thread is not None:
            return
        self._thread = Thread(target=self._run, name="verification-code-sweeper", daemon=True)
        self._thread.start()
        logger.info("verification code sweeper started interval=%ss", self._interval)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self._interval + 1)
            self._thread = None
        logger.info("verification code sweeper stopped")

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                removed = self._store.sweep()
            except (RedisError, RuntimeError):
                # 单轮清理失败不影响下一轮。
                logger.exception("verification code sweep failed")
                continue
            if removed:
                logger.info("verification code sweep removed=%s", removed)
