"""SSH连接池管理模块

按连接标识共享远程客户端，并限制每个标识的并发会话数：
- 首次获取时惰性创建客户端，计数归零时立即关闭并移除
- 计数达到上限的获取方在条件变量上等待，释放时被唤醒
- 同一标识的并发首次获取只建立一次连接（连接请求合并），
  建连在锁外进行，不阻塞其他标识
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

from loguru import logger

from ssh_remote_file.constants import DEFAULT_MAX_SESSIONS
from ssh_remote_file.exceptions import RemoteFileError, SessionError, SSHConnectionError


class ClosableClient(Protocol):
    async def close(self) -> None: ...


ClientT = TypeVar("ClientT", bound=ClosableClient)


@dataclass
class _PoolEntry(Generic[ClientT]):
    """池化连接条目。

    Attributes:
        client: 共享的远程客户端
        active: 当前活跃会话数
    """

    client: ClientT
    active: int = 0


class ConnectionPool(Generic[ClientT]):
    """按连接标识共享客户端的连接池与准入控制器。

    Attributes:
        max_sessions: 每个连接标识的最大并发会话数
    """

    def __init__(self, *, max_sessions: int = DEFAULT_MAX_SESSIONS) -> None:
        if max_sessions < 1:
            raise ValueError("max_sessions必须>=1")
        self.max_sessions = max_sessions
        self._cond = asyncio.Condition()
        self._entries: dict[str, _PoolEntry[ClientT]] = {}
        # 正在建立连接的标识，防止同一标识并发重复建连
        self._pending: set[str] = set()

    def active_sessions(self, identity: str) -> int:
        entry = self._entries.get(identity)
        return entry.active if entry is not None else 0

    def __contains__(self, identity: str) -> bool:
        return identity in self._entries

    async def acquire(
        self,
        identity: str,
        connect: Callable[[], Awaitable[ClientT]],
    ) -> ClientT:
        """获取一个会话槽位并返回共享客户端。

        Args:
            identity: 连接标识
            connect: 标识无条目时用于建立客户端的协程函数

        Returns:
            该标识对应的共享客户端

        Raises:
            SSHConnectionError: 建连失败（此时不会留下池条目）
        """
        async with self._cond:
            while True:
                entry = self._entries.get(identity)
                if entry is not None:
                    if entry.active < self.max_sessions:
                        entry.active += 1
                        logger.debug(
                            "复用连接 {} 活跃会话 {}/{}",
                            identity[:12],
                            entry.active,
                            self.max_sessions,
                        )
                        return entry.client
                elif identity not in self._pending:
                    self._pending.add(identity)
                    break
                await self._cond.wait()

        try:
            client = await connect()
        except BaseException as exc:
            async with self._cond:
                self._pending.discard(identity)
                self._cond.notify_all()
            if isinstance(exc, RemoteFileError) or not isinstance(exc, Exception):
                raise
            raise SSHConnectionError(f"建立连接失败: {exc}") from exc

        async with self._cond:
            self._pending.discard(identity)
            self._entries[identity] = _PoolEntry(client=client, active=1)
            self._cond.notify_all()
        logger.info("新建池化连接 {}", identity[:12])
        return client

    async def release(self, identity: str) -> None:
        """释放一个会话槽位；计数归零时关闭并移除客户端。

        Raises:
            SessionError: 该标识没有被获取的会话（重复释放或未获取即释放）
            Exception: 关闭客户端失败（条目仍会被移除）
        """
        async with self._cond:
            entry = self._entries.get(identity)
            if entry is None or entry.active <= 0:
                raise SessionError("释放了未获取的连接", identity=identity)
            entry.active -= 1
            if entry.active > 0:
                self._cond.notify_all()
                return
            del self._entries[identity]
            self._cond.notify_all()

        logger.info("关闭池化连接 {}", identity[:12])
        try:
            await entry.client.close()
        except Exception as exc:
            logger.warning("关闭连接失败 {}: {}", identity[:12], exc)
            raise

    @asynccontextmanager
    async def session(
        self,
        identity: str,
        connect: Callable[[], Awaitable[ClientT]],
    ) -> AsyncIterator[ClientT]:
        """获取会话（上下文管理器模式），无论操作是否失败都会释放。"""
        client = await self.acquire(identity, connect)
        try:
            yield client
        finally:
            await self.release(identity)

    async def close_all(self) -> None:
        """关闭所有池化连接，忽略关闭异常。用于进程退出。"""
        async with self._cond:
            entries = list(self._entries.values())
            self._entries.clear()
            self._cond.notify_all()

        results = await asyncio.gather(
            *[entry.client.close() for entry in entries],
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                logger.warning("关闭连接失败: {}", result)
