"""
Redis 连接模块

只用于定时任务的分布式锁：多个实例同时运行调度器时，
保证同一任务在同一周期只被一个实例执行。
"""
from __future__ import annotations

from functools import lru_cache

import redis

from entitlements.core.config import settings


@lru_cache(maxsize=1)
def get_redis() -> redis.Redis:
    """获取 Redis 客户端实例（单例，连接在首次命令时建立）"""
    return redis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD,
        decode_responses=True,
    )


def acquire_lock(client: redis.Redis, key: str, value: str, *, expire_seconds: int) -> bool:
    """SET NX EX 获取锁，成功返回 True"""
    return bool(client.set(key, value, nx=True, ex=expire_seconds))


_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def release_lock(client: redis.Redis, key: str, value: str) -> bool:
    """只释放自己持有的锁（值不匹配说明锁已过期并被他人获取）"""
    # Lua 脚本保证比较和删除的原子性
    return client.eval(_RELEASE_SCRIPT, 1, key, value) == 1
