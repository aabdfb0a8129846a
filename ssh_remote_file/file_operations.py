"""远程文件操作模块

在已连接的 RemoteClient 上实现文件的写、读、删、权限与属主操作。
每个操作按 (操作类型, 是否sudo) 选择传输方式：
- BULK_COPY：SCP，非 sudo 写入（一步完成内容与权限）
- NATIVE_TRANSFER：SFTP，非 sudo 读取与删除
- SHELL_COMMAND：shell 命令，sudo 下的全部操作，以及 chmod/chown/chgrp/exists/stat

SCP 与 SFTP 无法以其他用户身份运行，sudo 时只能走 shell 命令。
"""
from __future__ import annotations

import enum
import shlex

import asyncssh
from loguru import logger

from ssh_remote_file.constants import DEFAULT_PERMISSIONS
from ssh_remote_file.exceptions import CommandError, FileTransferError, NotFoundError
from ssh_remote_file.remote_client import RemoteClient


class TransportKind(enum.Enum):
    BULK_COPY = "scp"
    NATIVE_TRANSFER = "sftp"
    SHELL_COMMAND = "shell"


class FileOperation(enum.Enum):
    WRITE = "write"
    READ = "read"
    DELETE = "delete"
    CHMOD = "chmod"
    CHOWN = "chown"
    CHGRP = "chgrp"
    EXISTS = "exists"
    STAT = "stat"


_UNPRIVILEGED_TRANSPORT: dict[FileOperation, TransportKind] = {
    FileOperation.WRITE: TransportKind.BULK_COPY,
    FileOperation.READ: TransportKind.NATIVE_TRANSFER,
    FileOperation.DELETE: TransportKind.NATIVE_TRANSFER,
}


def select_transport(operation: FileOperation, sudo: bool) -> TransportKind:
    """根据操作类型与是否提权选择传输方式。"""
    if sudo:
        return TransportKind.SHELL_COMMAND
    return _UNPRIVILEGED_TRANSPORT.get(operation, TransportKind.SHELL_COMMAND)


def canonical_permissions(raw: str) -> str:
    """把 stat 输出规范化为 4 位八进制字符串，如 644 -> 0644。"""
    permissions = raw.replace("\n", "")
    if 0 < len(permissions) < 4:
        permissions = permissions.zfill(4)
    return permissions


def _shell(command: str, *, sudo: bool) -> str:
    return f"sudo {command}" if sudo else command


class RemoteFileOperations:
    """远程文件操作集合。

    所有基于 shell 的操作失败时统一抛出 CommandError；
    调用方应把任何异常视为操作失败，而非部分成功。
    """

    def __init__(self, client: RemoteClient) -> None:
        self._client = client

    async def write(
        self,
        path: str,
        content: str,
        *,
        permissions: str = DEFAULT_PERMISSIONS,
        sudo: bool = False,
    ) -> None:
        transport = select_transport(FileOperation.WRITE, sudo)
        logger.debug("写入远程文件 {} via {}", path, transport.value)
        if transport is TransportKind.SHELL_COMMAND:
            command = f"cat /dev/stdin | sudo tee {shlex.quote(path)} > /dev/null"
            await self._client.run_command(command, input=content)
            return

        async with self._client.open_bulk_copy_session() as scp:
            await scp.copy_file(content.encode("utf-8"), path, permissions)

    async def read(self, path: str, *, sudo: bool = False) -> str:
        """读取远程文件内容。

        Raises:
            NotFoundError: 路径不存在
            FileTransferError: SFTP 读取失败
            CommandError: sudo 读取失败
        """
        transport = select_transport(FileOperation.READ, sudo)
        logger.debug("读取远程文件 {} via {}", path, transport.value)
        if transport is TransportKind.SHELL_COMMAND:
            try:
                result = await self._client.run_command(f"sudo cat {shlex.quote(path)}")
            except CommandError as exc:
                await self._raise_if_missing(path, exc, sudo=sudo)
                raise
            return result.stdout

        async with self._client.open_file_transfer_session() as sftp:
            try:
                async with sftp.open(path, "rb") as remote_file:
                    data = await remote_file.read()
            except asyncssh.SFTPNoSuchFile as exc:
                raise NotFoundError(f"远程文件不存在: {path}", path=path) from exc
            except (asyncssh.SFTPError, OSError) as exc:
                raise FileTransferError(
                    f"SFTP读取失败: {path} - {exc}", remote_path=path, protocol="sftp"
                ) from exc

        if isinstance(data, bytes):
            return data.decode("utf-8", errors="replace")
        return data

    async def delete(self, path: str, *, sudo: bool = False) -> None:
        transport = select_transport(FileOperation.DELETE, sudo)
        logger.debug("删除远程文件 {} via {}", path, transport.value)
        if transport is TransportKind.SHELL_COMMAND:
            try:
                await self._client.run_command(f"sudo rm {shlex.quote(path)}")
            except CommandError as exc:
                await self._raise_if_missing(path, exc, sudo=sudo)
                raise
            return

        async with self._client.open_file_transfer_session() as sftp:
            try:
                await sftp.remove(path)
            except asyncssh.SFTPNoSuchFile as exc:
                raise NotFoundError(f"远程文件不存在: {path}", path=path) from exc
            except (asyncssh.SFTPError, OSError) as exc:
                raise FileTransferError(
                    f"SFTP删除失败: {path} - {exc}", remote_path=path, protocol="sftp"
                ) from exc

    async def chmod(self, path: str, permissions: str, *, sudo: bool = False) -> None:
        command = f"chmod {shlex.quote(permissions)} {shlex.quote(path)}"
        await self._client.run_command(_shell(command, sudo=sudo))

    async def chown(self, path: str, owner: str, *, sudo: bool = False) -> None:
        command = f"chown {shlex.quote(owner)} {shlex.quote(path)}"
        await self._client.run_command(_shell(command, sudo=sudo))

    async def chgrp(self, path: str, group: str, *, sudo: bool = False) -> None:
        command = f"chgrp {shlex.quote(group)} {shlex.quote(path)}"
        await self._client.run_command(_shell(command, sudo=sudo))

    async def exists(self, path: str, *, sudo: bool = False) -> bool:
        """判断远程普通文件是否存在。

        `test -f` 成功即存在；失败时再执行 `test ! -f` 确认不存在，
        确认命令失败或任一命令传输失败都作为错误抛出。
        """
        quoted = shlex.quote(path)
        try:
            await self._client.run_command(_shell(f"test -f {quoted}", sudo=sudo))
        except CommandError as exc:
            if not exc.ran:
                raise
            await self._client.run_command(_shell(f"test ! -f {quoted}", sudo=sudo))
            return False
        return True

    async def read_permissions(self, path: str, *, sudo: bool = False) -> str:
        return canonical_permissions(await self._stat(path, "a", sudo=sudo))

    async def read_owner(self, path: str, *, sudo: bool = False) -> str:
        return await self._stat(path, "u", sudo=sudo)

    async def read_group(self, path: str, *, sudo: bool = False) -> str:
        return await self._stat(path, "g", sudo=sudo)

    async def read_owner_name(self, path: str, *, sudo: bool = False) -> str:
        return await self._stat(path, "U", sudo=sudo)

    async def read_group_name(self, path: str, *, sudo: bool = False) -> str:
        return await self._stat(path, "G", sudo=sudo)

    async def _stat(self, path: str, fmt: str, *, sudo: bool) -> str:
        command = _shell(f"stat -c %{fmt} {shlex.quote(path)}", sudo=sudo)
        result = await self._client.run_command(command)
        return result.stdout.replace("\n", "")

    async def _raise_if_missing(self, path: str, exc: CommandError, *, sudo: bool) -> None:
        # 仅当命令确实运行过时，才用退出状态探测路径是否存在
        if exc.ran and not await self.exists(path, sudo=sudo):
            raise NotFoundError(f"远程文件不存在: {path}", path=path) from exc
