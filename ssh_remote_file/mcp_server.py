"""SSH Remote File MCP Server 模块

本模块通过 MCP (Model Context Protocol) 暴露远程文件管理工具：
- remote_file_apply：写入文件内容、权限与属主，返回远端实际状态
- remote_file_read：读取远端文件状态
- remote_file_delete：删除远端文件
- remote_file_exists：判断远端文件是否存在

所有工具共享同一个连接池，每个连接标识的并发会话数受 max_sessions 限制。

使用方式：
    通过 stdio 启动 MCP 服务器，供 MCP 客户端调用。
"""
from __future__ import annotations

import sys
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from io import TextIOWrapper
from pathlib import Path
from tempfile import gettempdir
from typing import Any, Literal, cast

import anyio
from mcp.server.fastmcp import FastMCP
from mcp.server.stdio import stdio_server

from ssh_remote_file.connection import ConnectionOptions
from ssh_remote_file.connection_pool import ConnectionPool
from ssh_remote_file.constants import DEFAULT_PERMISSIONS
from ssh_remote_file.remote_client import RemoteClient
from ssh_remote_file.remote_file import RemoteFileManager, load_target
from ssh_remote_file.settings import RemoteFileSettings

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def run_stdio_server(server: FastMCP) -> None:
    async def _run() -> None:
        stdin = anyio.wrap_file(
            TextIOWrapper(sys.stdin.buffer, encoding="utf-8", errors="replace")
        )
        stdout = anyio.wrap_file(
            TextIOWrapper(sys.stdout.buffer, encoding="utf-8", errors="replace")
        )
        async with stdio_server(stdin=stdin, stdout=stdout) as (read_stream, write_stream):
            lowlevel = cast(Any, server)._mcp_server
            await lowlevel.run(
                read_stream,
                write_stream,
                lowlevel.create_initialization_options(),
            )

    try:
        anyio.run(_run)
    except BaseException:
        error_path = Path(gettempdir()) / "ssh-remote-file-startup-error.log"
        with error_path.open("a", encoding="utf-8") as f:
            f.write("\n" + "=" * 80 + "\n")
            f.write(traceback.format_exc())
        raise


def create_mcp_server(*, settings: RemoteFileSettings) -> FastMCP:
    pool: ConnectionPool[RemoteClient] = ConnectionPool(max_sessions=settings.max_sessions)
    files = RemoteFileManager(settings=settings, pool=pool)

    @asynccontextmanager
    async def lifespan(_app: FastMCP) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await pool.close_all()

    mcp = FastMCP(
        name="ssh-remote-file",
        instructions="通过SSH管理远程主机上的文件（内容、权限、属主）",
        log_level=cast(LogLevel, settings.log_level),
        lifespan=lifespan,
    )

    @mcp.tool()
    async def remote_file_apply(
        *,
        path: str,
        content: str = "",
        permissions: str = DEFAULT_PERMISSIONS,
        owner: str | None = None,
        group: str | None = None,
        owner_name: str | None = None,
        group_name: str | None = None,
        conn: ConnectionOptions | None = None,
    ) -> dict[str, Any]:
        """写入远程文件。

        写入内容后设置权限与属主，并返回远端文件的实际状态。
        owner/owner_name、group/group_name 分别互斥。

        Args:
            path: 远程文件路径
            content: 文件内容
            permissions: 八进制权限字符串，如 0644
            owner: 数字属主ID
            group: 数字属组ID
            owner_name: 属主用户名
            group_name: 属组名
            conn: 连接参数（可选，未提供时使用默认连接）

        Returns:
            dict: 包含id、content、permissions、owner、group等字段
        """
        target = load_target(
            {
                "path": path,
                "content": content,
                "permissions": permissions,
                "owner": owner,
                "group": group,
                "owner_name": owner_name,
                "group_name": group_name,
            }
        )
        state = await files.apply(target, conn)
        return dict(state.to_dict())

    @mcp.tool()
    async def remote_file_read(
        *,
        path: str,
        conn: ConnectionOptions | None = None,
    ) -> dict[str, Any] | None:
        """读取远程文件状态。

        Args:
            path: 远程文件路径
            conn: 连接参数（可选）

        Returns:
            dict | None: 文件状态，文件不存在时为 None
        """
        state = await files.read(path, conn)
        return dict(state.to_dict()) if state is not None else None

    @mcp.tool()
    async def remote_file_delete(
        *,
        path: str,
        conn: ConnectionOptions | None = None,
    ) -> dict[str, Any]:
        """删除远程文件，文件不存在时不报错。

        Args:
            path: 远程文件路径
            conn: 连接参数（可选）
        """
        deleted = await files.delete(path, conn)
        return {"id": files.resource_id(path, conn), "deleted": deleted}

    @mcp.tool()
    async def remote_file_exists(
        *,
        path: str,
        conn: ConnectionOptions | None = None,
    ) -> dict[str, Any]:
        """判断远程普通文件是否存在。"""
        exists = await files.exists(path, conn)
        return {"id": files.resource_id(path, conn), "exists": exists}

    return mcp
