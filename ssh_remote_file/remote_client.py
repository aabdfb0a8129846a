"""SSH传输客户端模块

封装一条 asyncssh 连接（可选经由另一条独立认证的代理连接建立），提供：
- run_command：每次调用使用一个新通道执行一条命令
- open_bulk_copy_session：SCP sink 协议，一次性写入内容并设置权限
- open_file_transfer_session：SFTP 客户端
"""
from __future__ import annotations

import asyncio
import posixpath
import shlex
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import asyncssh
from loguru import logger

from ssh_remote_file.connection import (
    ConnectionDescriptor,
    ConnectionOptions,
    build_connection,
    build_proxy_connection,
)
from ssh_remote_file.constants import DEFAULT_COMMAND_TIMEOUT_SECONDS
from ssh_remote_file.exceptions import (
    CommandError,
    ConnectionStage,
    FileTransferError,
    SSHConnectionError,
)


def _to_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value


@dataclass(frozen=True)
class CommandResult:
    command: str
    exit_status: int
    stdout: str
    stderr: str


class ScpSession:
    """SCP sink 协议会话。

    每次 copy_file 在新通道上启动 `scp -qt <目录>`，按协议发送
    `C<权限> <长度> <文件名>` 头、文件内容和结束字节，并逐步校验应答。
    """

    def __init__(self, conn: asyncssh.SSHClientConnection) -> None:
        self._conn = conn

    async def copy_file(self, content: bytes, path: str, permissions: str) -> None:
        directory, name = posixpath.split(path)
        if not name:
            raise FileTransferError(f"SCP目标不是文件: {path}", remote_path=path, protocol="scp")
        command = f"scp -qt {shlex.quote(directory or '.')}"

        try:
            async with self._conn.create_process(command, encoding=None) as process:
                await self._read_ack(process, path)
                process.stdin.write(f"C{permissions} {len(content)} {name}\n".encode())
                await self._read_ack(process, path)
                process.stdin.write(content)
                process.stdin.write(b"\x00")
                await self._read_ack(process, path)
                process.stdin.write_eof()
                completed = await process.wait()
        except (asyncssh.Error, OSError) as exc:
            raise FileTransferError(
                f"SCP传输失败: {path} - {exc}", remote_path=path, protocol="scp"
            ) from exc

        if completed.exit_status is None or completed.exit_status != 0:
            raise FileTransferError(
                f"SCP退出状态异常: {path} ({completed.exit_status})",
                remote_path=path,
                protocol="scp",
                details={"stderr": _to_text(completed.stderr)},
            )

    @staticmethod
    async def _read_ack(process: asyncssh.SSHClientProcess, path: str) -> None:
        code = await process.stdout.read(1)
        if code == b"\x00":
            return
        if not code:
            raise FileTransferError(
                f"SCP应答意外结束: {path}", remote_path=path, protocol="scp"
            )
        message = _to_text(await process.stdout.readline()).strip()
        raise FileTransferError(
            f"SCP远端拒绝: {path} - {message}",
            remote_path=path,
            protocol="scp",
            details={"ack": code[0], "remote_message": message},
        )


class RemoteClient:
    """一条已建立的远程连接。

    由连接池独占持有，close() 仅由连接池调用一次。
    """

    def __init__(
        self,
        conn: asyncssh.SSHClientConnection,
        *,
        proxy: asyncssh.SSHClientConnection | None = None,
        command_timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        self._conn = conn
        self._proxy = proxy
        self._command_timeout = command_timeout_seconds

    @property
    def connection(self) -> asyncssh.SSHClientConnection:
        return self._conn

    @classmethod
    async def connect(
        cls,
        address: str,
        descriptor: ConnectionDescriptor,
        *,
        command_timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ) -> RemoteClient:
        """直接连接目标主机。

        Raises:
            SSHConnectionError: 主机不可达、认证全部被拒绝或超时
        """
        conn = await _dial(address, descriptor, stage="target")
        return cls(conn, command_timeout_seconds=command_timeout_seconds)

    @classmethod
    async def connect_via_proxy(
        cls,
        address: str,
        descriptor: ConnectionDescriptor,
        proxy_address: str,
        proxy_descriptor: ConnectionDescriptor,
        *,
        command_timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ) -> RemoteClient:
        """先连接代理，再经代理隧道与目标主机握手。

        任一阶段失败都会关闭已建立的代理连接并抛出 SSHConnectionError，
        stage 标明失败发生在代理阶段还是目标阶段。
        """
        proxy = await _dial(proxy_address, proxy_descriptor, stage="proxy")
        try:
            conn = await _dial(address, descriptor, stage="target", tunnel=proxy)
        except BaseException:
            proxy.close()
            await proxy.wait_closed()
            raise
        return cls(conn, proxy=proxy, command_timeout_seconds=command_timeout_seconds)

    async def run_command(
        self,
        command: str,
        *,
        input: str | None = None,
        check: bool = True,
    ) -> CommandResult:
        """在新通道上执行一条命令。

        Args:
            command: 远程命令
            input: 写入命令标准输入的内容
            check: 非零退出时是否抛出 CommandError

        Raises:
            CommandError: 传输失败（exit_status=None）或 check=True 时非零退出
        """
        try:
            completed: asyncssh.SSHCompletedProcess = await self._conn.run(
                command,
                input=input,
                check=False,
                timeout=float(self._command_timeout),
            )
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as exc:
            raise CommandError(
                f"命令无法执行: `{command}` - {exc}",
                command=command,
                cause=str(exc),
            ) from exc

        if completed.exit_status is None:
            # 通道在上报退出状态前关闭，输出可能不完整
            raise CommandError(
                f"命令未返回退出状态: `{command}`",
                command=command,
                stderr=_to_text(completed.stderr),
                cause="no exit status",
            )

        result = CommandResult(
            command=command,
            exit_status=int(completed.exit_status),
            stdout=_to_text(completed.stdout),
            stderr=_to_text(completed.stderr),
        )
        if check and result.exit_status != 0:
            stderr = result.stderr.rstrip("\n")
            raise CommandError(
                f"命令执行失败: `{command}` (exit {result.exit_status}) {stderr}",
                command=command,
                exit_status=result.exit_status,
                stderr=result.stderr,
                cause=f"exit status {result.exit_status}",
            )
        return result

    @asynccontextmanager
    async def open_bulk_copy_session(self) -> AsyncIterator[ScpSession]:
        yield ScpSession(self._conn)

    @asynccontextmanager
    async def open_file_transfer_session(self) -> AsyncIterator[asyncssh.SFTPClient]:
        try:
            sftp = await self._conn.start_sftp_client()
        except (asyncssh.Error, OSError) as exc:
            raise FileTransferError(f"无法启动SFTP会话: {exc}", protocol="sftp") from exc
        try:
            yield sftp
        finally:
            sftp.exit()
            await sftp.wait_closed()

    async def close(self) -> None:
        """关闭目标连接及其代理连接。"""
        try:
            self._conn.close()
            await self._conn.wait_closed()
        finally:
            if self._proxy is not None:
                self._proxy.close()
                await self._proxy.wait_closed()


async def _dial(
    address: str,
    descriptor: ConnectionDescriptor,
    *,
    stage: ConnectionStage,
    tunnel: asyncssh.SSHClientConnection | None = None,
) -> asyncssh.SSHClientConnection:
    options = descriptor.connect_kwargs()
    if tunnel is not None:
        options["tunnel"] = tunnel

    label = "代理" if stage == "proxy" else "目标"
    logger.debug("SSH连接{} {}@{}", label, descriptor.user, address)
    try:
        connect_task = asyncssh.connect(descriptor.host, descriptor.port, **options)
        if descriptor.timeout_seconds is None:
            return await connect_task
        return await asyncio.wait_for(connect_task, timeout=descriptor.timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise SSHConnectionError(
            f"SSH{label}连接超时: {address}",
            host=descriptor.host,
            port=descriptor.port,
            stage=stage,
        ) from exc
    except (asyncssh.Error, OSError) as exc:
        raise SSHConnectionError(
            f"SSH{label}连接失败: {address} - {exc}",
            host=descriptor.host,
            port=descriptor.port,
            stage=stage,
        ) from exc


async def open_remote_client(
    conn: ConnectionOptions,
    proxy: ConnectionOptions | None = None,
    *,
    command_timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
) -> RemoteClient:
    """构建连接配置并建立连接；配置了代理时经代理连接。"""
    address, descriptor = await build_connection(conn)
    proxy_built = await build_proxy_connection(proxy)
    if proxy_built is None:
        return await RemoteClient.connect(
            address, descriptor, command_timeout_seconds=command_timeout_seconds
        )
    proxy_address, proxy_descriptor = proxy_built
    return await RemoteClient.connect_via_proxy(
        address,
        descriptor,
        proxy_address,
        proxy_descriptor,
        command_timeout_seconds=command_timeout_seconds,
    )
