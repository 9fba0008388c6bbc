"""
Redis客户端实现 - 去重与限流所需的原子原语

与通用缓存不同，这里的每个操作都有整体超时，失败时抛出
CacheUnavailableError，由调用方决定降级策略，而不是静默返回默认值。
"""
from __future__ import annotations

import asyncio
import socket
import time
from typing import Any, Awaitable, Callable, Optional, Tuple

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from application.ports.view_cache import CacheUnavailableError
from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)


class CacheMetrics:
    """缓存指标统计"""

    def __init__(self):
        self.total_ops = 0
        self.errors = 0
        self.timeouts = 0
        self.operation_times = []

    @property
    def avg_operation_time(self) -> float:
        if not self.operation_times:
            return 0.0
        return sum(self.operation_times) / len(self.operation_times)

    def record(self, duration: float, *, error: bool = False, timeout: bool = False) -> None:
        self.total_ops += 1
        if error:
            self.errors += 1
        if timeout:
            self.timeouts += 1
        self.operation_times.append(duration)
        # 只保留最近1000次操作的时间
        if len(self.operation_times) > 1000:
            self.operation_times.pop(0)


class RedisClient:
    """
    Redis客户端封装

    特性:
    - 命名空间隔离
    - 单次操作整体超时（超时等同于不可用）
    - 指标统计
    """

    def __init__(
        self,
        client: aioredis.Redis,
        namespace: str = "",
        operation_timeout: Optional[float] = None,
        enable_metrics: bool = True,
    ):
        self._client = client
        self._namespace = namespace.strip(":")
        self._timeout = operation_timeout if operation_timeout is not None else settings.redis.operation_timeout
        self._metrics = CacheMetrics() if enable_metrics else None

    # ============= 工具方法 =============

    def _format_key(self, key: str) -> str:
        """格式化键名，添加命名空间前缀"""
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    async def _execute(self, name: str, operation: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """带超时与指标统计的操作执行；任何运行期失败都转换为 CacheUnavailableError"""
        start_time = time.monotonic()
        try:
            result = await asyncio.wait_for(operation(*args, **kwargs), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            self._record(start_time, error=True, timeout=True)
            logger.warning("redis_operation_timeout", operation=name, timeout=self._timeout)
            raise CacheUnavailableError(f"redis {name} timed out after {self._timeout}s") from exc
        except (RedisError, OSError) as exc:
            self._record(start_time, error=True)
            logger.warning("redis_operation_failed", operation=name, error=str(exc))
            raise CacheUnavailableError(f"redis {name} failed: {exc}") from exc
        self._record(start_time)
        return result

    def _record(self, start_time: float, **flags) -> None:
        if self._metrics is not None:
            self._metrics.record(time.monotonic() - start_time, **flags)

    # ============= 原子原语 =============

    async def set_if_absent(self, key: str, value: Any, ttl: int) -> bool:
        """SET key value NX EX ttl；返回是否写入（键原本不存在）"""
        if ttl <= 0:
            raise ValueError("ttl 必须为正数")
        result = await self._execute(
            "set_nx", self._client.set, self._format_key(key), str(value), ex=ttl, nx=True
        )
        return bool(result)

    async def replace_keep_ttl(self, key: str, value: Any) -> bool:
        """SET key value XX KEEPTTL；只覆盖已存在的键并保留原过期时间（Redis 6.0+）"""
        result = await self._execute(
            "set_xx", self._client.set, self._format_key(key), str(value), xx=True, keepttl=True
        )
        return bool(result)

    async def incr_window(self, key: str, window_seconds: int) -> Tuple[int, int]:
        """
        固定窗口计数：窗口键不存在时以 0 创建并设过期，再 INCR（INCR 保留 TTL）

        Returns:
            (当前计数, 剩余秒数)
        """
        formatted_key = self._format_key(key)

        async def _run():
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.set(formatted_key, 0, ex=window_seconds, nx=True)
                pipe.incr(formatted_key)
                pipe.ttl(formatted_key)
                return await pipe.execute()

        _, count, ttl = await self._execute("incr_window", _run)
        return int(count), int(ttl) if ttl and ttl > 0 else window_seconds

    async def get(self, key: str) -> Optional[str]:
        return await self._execute("get", self._client.get, self._format_key(key))

    async def delete(self, *keys: str) -> int:
        """删除键"""
        formatted_keys = [self._format_key(k) for k in keys]
        return await self._execute("delete", self._client.delete, *formatted_keys)

    async def ttl(self, key: str) -> int:
        """获取剩余生存时间（秒）"""
        return await self._execute("ttl", self._client.ttl, self._format_key(key))

    async def health_check(self) -> bool:
        """健康检查"""
        try:
            return bool(await self._execute("ping", self._client.ping))
        except CacheUnavailableError:
            return False

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def metrics(self) -> Optional[CacheMetrics]:
        """获取指标统计"""
        return self._metrics

    @property
    def namespace(self) -> str:
        return self._namespace


def _keepalive_options() -> dict:
    # 构建跨平台 keepalive 选项（若可用）
    if hasattr(socket, "TCP_KEEPIDLE") and hasattr(socket, "TCP_KEEPINTVL") and hasattr(socket, "TCP_KEEPCNT"):
        return {
            socket.TCP_KEEPIDLE: 1,
            socket.TCP_KEEPINTVL: 1,
            socket.TCP_KEEPCNT: 3,
        }
    return {}


async def create_redis_client(
    url: Optional[str] = None,
    *,
    namespace: Optional[str] = None,
    ping: bool = True,
    **kwargs,
) -> RedisClient:
    """
    创建Redis客户端实例（由应用生命周期持有，不使用模块级单例）

    Args:
        url: Redis 连接串，缺省读取 settings.redis.url
        namespace: 命名空间
        ping: 是否立即探活
        **kwargs: 其他Redis连接参数
    """
    redis_url = url or settings.redis.url
    if not redis_url:
        raise RuntimeError("REDIS__URL 未配置，无法初始化Redis客户端")

    client = aioredis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
        socket_connect_timeout=settings.redis.socket_timeout,
        socket_keepalive=True,
        socket_keepalive_options=_keepalive_options(),
        **kwargs
    )
    wrapper = RedisClient(client=client, namespace=namespace or settings.redis.namespace)
    if ping and not await wrapper.health_check():
        await wrapper.close()
        raise CacheUnavailableError("Redis 不可达")

    logger.info("redis_client_initialized", namespace=wrapper.namespace)
    return wrapper


__all__ = [
    "RedisClient",
    "CacheMetrics",
    "create_redis_client",
]
