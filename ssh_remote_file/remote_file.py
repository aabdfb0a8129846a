"""远程文件资源管理模块

把连接池与文件操作组合为完整的远程文件读写流程：
- apply：写入内容、设置权限与属主，返回远端实际状态
- read：读取远端实际状态，文件不存在时返回 None
- delete：删除远端文件，文件不存在时视为成功

单次调用的连接参数会覆盖默认连接；代理连接只能在全局配置中设置。
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ssh_remote_file.connection import (
    ConnectionOptions,
    connection_identity,
    load_connection_options,
    resource_id,
)
from ssh_remote_file.connection_pool import ConnectionPool
from ssh_remote_file.constants import DEFAULT_PERMISSIONS
from ssh_remote_file.exceptions import ConfigError
from ssh_remote_file.file_operations import RemoteFileOperations
from ssh_remote_file.remote_client import RemoteClient, open_remote_client
from ssh_remote_file.settings import RemoteFileSettings
from ssh_remote_file.types import RemoteFileStateDict


class RemoteFileTarget(BaseModel):
    """远程文件目标。

    owner 与 owner_name、group 与 group_name 各自互斥。
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = Field(min_length=1)
    content: str = ""
    permissions: str = Field(default=DEFAULT_PERMISSIONS, pattern=r"^[0-7]{3,4}$")
    owner: str | None = Field(default=None, pattern=r"^[0-9]+$")
    group: str | None = Field(default=None, pattern=r"^[0-9]+$")
    owner_name: str | None = Field(default=None, min_length=1)
    group_name: str | None = Field(default=None, min_length=1)

    @field_validator("permissions")
    @classmethod
    def _pad_permissions(cls, value: str) -> str:
        return value.zfill(4)

    @model_validator(mode="after")
    def _check_exclusive(self) -> RemoteFileTarget:
        if self.owner is not None and self.owner_name is not None:
            raise ValueError("owner 与 owner_name 不能同时设置")
        if self.group is not None and self.group_name is not None:
            raise ValueError("group 与 group_name 不能同时设置")
        return self

    @property
    def requested_owner(self) -> str | None:
        return self.owner if self.owner is not None else self.owner_name

    @property
    def requested_group(self) -> str | None:
        return self.group if self.group is not None else self.group_name


def load_target(data: Mapping[str, Any]) -> RemoteFileTarget:
    try:
        return RemoteFileTarget.model_validate(dict(data))
    except ValidationError as exc:
        raise ConfigError(f"文件参数非法: {exc}") from exc


@dataclass(frozen=True)
class RemoteFileState:
    """远程文件的实际状态。"""

    id: str
    path: str
    content: str
    permissions: str
    owner: str
    group: str
    owner_name: str
    group_name: str

    def to_dict(self) -> RemoteFileStateDict:
        return RemoteFileStateDict(**asdict(self))


class RemoteFileManager:
    """远程文件资源管理器。

    每个操作都在连接池会话内完成，操作失败时仍会释放会话。
    """

    def __init__(
        self,
        *,
        settings: RemoteFileSettings,
        pool: ConnectionPool[RemoteClient],
    ) -> None:
        self._settings = settings
        self._pool = pool

    def resolve_connection(
        self, conn: ConnectionOptions | Mapping[str, Any] | None = None
    ) -> ConnectionOptions:
        if conn is not None:
            return load_connection_options(conn)
        if self._settings.conn is not None:
            return self._settings.conn
        raise ConfigError("默认配置与本次调用均未提供连接参数", field="conn")

    def resource_id(self, path: str, conn: ConnectionOptions | Mapping[str, Any] | None = None) -> str:
        return resource_id(self.resolve_connection(conn), self._settings.proxy_conn, path)

    async def apply(
        self,
        target: RemoteFileTarget,
        conn: ConnectionOptions | Mapping[str, Any] | None = None,
    ) -> RemoteFileState:
        options = self.resolve_connection(conn)
        sudo = options.sudo
        async with self._session(options) as client:
            ops = RemoteFileOperations(client)
            await ops.write(target.path, target.content, permissions=target.permissions, sudo=sudo)
            # tee 不会设置权限；scp -t 覆盖已有文件时保留原权限，新文件受 umask 影响
            if sudo or await ops.read_permissions(target.path) != target.permissions:
                await ops.chmod(target.path, target.permissions, sudo=sudo)
            if target.requested_owner is not None:
                await ops.chown(target.path, target.requested_owner, sudo=sudo)
            if target.requested_group is not None:
                await ops.chgrp(target.path, target.requested_group, sudo=sudo)
            logger.info("已写入远程文件 {}", resource_id(options, self._settings.proxy_conn, target.path))
            return await self._read_state(ops, options, target.path)

    async def read(
        self,
        path: str,
        conn: ConnectionOptions | Mapping[str, Any] | None = None,
    ) -> RemoteFileState | None:
        options = self.resolve_connection(conn)
        async with self._session(options) as client:
            ops = RemoteFileOperations(client)
            if not await ops.exists(path, sudo=options.sudo):
                return None
            return await self._read_state(ops, options, path)

    async def exists(
        self,
        path: str,
        conn: ConnectionOptions | Mapping[str, Any] | None = None,
    ) -> bool:
        options = self.resolve_connection(conn)
        async with self._session(options) as client:
            return await RemoteFileOperations(client).exists(path, sudo=options.sudo)

    async def delete(
        self,
        path: str,
        conn: ConnectionOptions | Mapping[str, Any] | None = None,
    ) -> bool:
        """删除远程文件，返回是否确实删除了文件。"""
        options = self.resolve_connection(conn)
        async with self._session(options) as client:
            ops = RemoteFileOperations(client)
            if not await ops.exists(path, sudo=options.sudo):
                return False
            await ops.delete(path, sudo=options.sudo)
            logger.info("已删除远程文件 {}", resource_id(options, self._settings.proxy_conn, path))
            return True

    def _session(self, options: ConnectionOptions):
        proxy = self._settings.proxy_conn
        identity = connection_identity(options, proxy)

        async def connect() -> RemoteClient:
            return await open_remote_client(
                options,
                proxy,
                command_timeout_seconds=self._settings.command_timeout_seconds,
            )

        return self._pool.session(identity, connect)

    async def _read_state(
        self,
        ops: RemoteFileOperations,
        options: ConnectionOptions,
        path: str,
    ) -> RemoteFileState:
        sudo = options.sudo
        return RemoteFileState(
            id=resource_id(options, self._settings.proxy_conn, path),
            path=path,
            content=await ops.read(path, sudo=sudo),
            permissions=await ops.read_permissions(path, sudo=sudo),
            owner=await ops.read_owner(path, sudo=sudo),
            group=await ops.read_group(path, sudo=sudo),
            owner_name=await ops.read_owner_name(path, sudo=sudo),
            group_name=await ops.read_group_name(path, sudo=sudo),
        )
