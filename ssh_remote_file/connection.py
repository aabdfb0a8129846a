"""连接配置构建模块

把一组连接参数（密码、内联私钥、私钥文件、私钥环境变量、agent、超时）
转换为不可变的连接描述符与目标地址，并提供：
- 连接标识：用于连接池去重的确定性字符串
- 资源标识：host:port:path，配置代理时带 proxy_host:proxy_port| 前缀
"""
from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import asyncssh
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ssh_remote_file.constants import DEFAULT_SSH_PORT
from ssh_remote_file.exceptions import AgentUnavailableError, ConfigError, CredentialError

AuthKind = Literal["password", "inline", "file", "env", "agent"]


class ConnectionOptions(BaseModel):
    """一次连接的原始参数。

    password/private_key/private_key_path/private_key_env_var/agent
    预期只配置其一，但同时配置多个时全部作为备选认证方式。
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str = Field(min_length=1, description="远程主机")
    port: int = Field(default=DEFAULT_SSH_PORT, ge=1, le=65535, description="SSH端口")
    user: str = Field(min_length=1, description="远程用户名")
    timeout: int = Field(default=0, ge=0, description="TCP连接超时(毫秒)，0表示不超时")
    sudo: bool = Field(default=False, description="是否通过sudo访问文件")
    agent: bool = Field(default=False, description="是否使用本地SSH agent登录")
    password: str | None = Field(default=None, description="登录密码")
    private_key: str | None = Field(default=None, description="内联私钥内容")
    private_key_path: str | None = Field(default=None, description="本地私钥文件路径")
    private_key_env_var: str | None = Field(default=None, description="保存私钥的环境变量名")

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def identity_fields(self) -> list[Any]:
        """参与连接标识计算的字段（不含 sudo 与 timeout）。"""
        return [
            self.host,
            self.port,
            self.user,
            self.password,
            self.private_key,
            self.private_key_path,
            self.private_key_env_var,
            self.agent,
        ]


def load_connection_options(data: Mapping[str, Any] | ConnectionOptions) -> ConnectionOptions:
    """校验原始连接参数，校验失败统一转换为 ConfigError。"""
    if isinstance(data, ConnectionOptions):
        return data
    try:
        return ConnectionOptions.model_validate(dict(data))
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ()))
        raise ConfigError(f"连接参数非法: {exc}", field=field) from exc


@dataclass(frozen=True)
class AuthMethod:
    """单个认证方式。

    Attributes:
        kind: 认证方式来源
        password: kind=password 时的密码
        key: 已解析的私钥（inline/file/env）
        agent_path: kind=agent 时的套接字路径
    """

    kind: AuthKind
    password: str | None = None
    key: asyncssh.SSHKey | None = None
    agent_path: str | None = None


@dataclass(frozen=True)
class ConnectionDescriptor:
    """不可变的连接描述符。

    auth_methods 按固定顺序排列：password, inline, file, env, agent。
    """

    host: str
    port: int
    user: str
    timeout_seconds: float | None
    auth_methods: tuple[AuthMethod, ...]
    sudo: bool = False

    def connect_kwargs(self) -> dict[str, object]:
        """转换为 asyncssh.connect 的认证相关参数。

        未配置的认证方式被显式关闭，避免 asyncssh 回退到默认私钥或默认 agent。
        client_keys=None 会让 asyncssh 同时丢弃 agent_path，因此配置了 agent
        而没有显式私钥时传入空元组（asyncssh 此时还会尝试默认私钥文件）。
        """
        passwords = [m.password for m in self.auth_methods if m.kind == "password"]
        keys = [m.key for m in self.auth_methods if m.key is not None]
        agents = [m.agent_path for m in self.auth_methods if m.kind == "agent"]

        preferred: list[str] = []
        for method in self.auth_methods:
            name = "password" if method.kind == "password" else "publickey"
            if name not in preferred:
                preferred.append(name)

        options: dict[str, object] = {
            "username": self.user,
            "known_hosts": None,
            "client_keys": keys or (() if agents else None),
            "agent_path": agents[0] if agents else None,
        }
        if passwords:
            options["password"] = passwords[0]
        if preferred:
            options["preferred_auth"] = preferred
        return options


def _import_key(data: str | bytes, *, source: Literal["inline", "file", "env"], options: ConnectionOptions) -> asyncssh.SSHKey:
    try:
        return asyncssh.import_private_key(data)
    except (asyncssh.KeyImportError, ValueError) as exc:
        raise CredentialError(
            f"无法解析私钥({source}): {exc}",
            source=source,
            host=options.host,
            user=options.user,
        ) from exc


async def _check_agent(agent_path: str | None) -> str:
    if not agent_path:
        raise AgentUnavailableError("未设置 SSH_AUTH_SOCK，无法连接 SSH agent")
    try:
        agent = await asyncssh.connect_agent(agent_path)
    except (OSError, asyncssh.Error) as exc:
        raise AgentUnavailableError(
            f"无法连接 SSH agent: {exc}", agent_path=agent_path
        ) from exc
    if agent is None:
        raise AgentUnavailableError("无法连接 SSH agent", agent_path=agent_path)
    agent.close()
    await agent.wait_closed()
    return agent_path


async def build_connection(
    options: ConnectionOptions | Mapping[str, Any],
) -> tuple[str, ConnectionDescriptor]:
    """根据连接参数构建 (地址, 连接描述符)。

    Args:
        options: 连接参数

    Returns:
        ("host:port", ConnectionDescriptor)

    Raises:
        ConfigError: 参数缺失/非法，私钥文件不可读，私钥环境变量不存在
        CredentialError: 私钥内容无法解析
        AgentUnavailableError: 无法连接本地 SSH agent
    """
    opts = load_connection_options(options)
    methods: list[AuthMethod] = []

    if opts.password:
        methods.append(AuthMethod(kind="password", password=opts.password))

    if opts.private_key:
        methods.append(
            AuthMethod(kind="inline", key=_import_key(opts.private_key, source="inline", options=opts))
        )

    if opts.private_key_path:
        try:
            content = Path(opts.private_key_path).expanduser().read_bytes()
        except OSError as exc:
            raise ConfigError(
                f"无法读取私钥文件: {opts.private_key_path} - {exc}",
                field="private_key_path",
            ) from exc
        methods.append(AuthMethod(kind="file", key=_import_key(content, source="file", options=opts)))

    if opts.private_key_env_var:
        content_env = os.environ.get(opts.private_key_env_var)
        if content_env is None:
            raise ConfigError(
                f"私钥环境变量不存在: {opts.private_key_env_var}",
                field="private_key_env_var",
            )
        methods.append(AuthMethod(kind="env", key=_import_key(content_env, source="env", options=opts)))

    if opts.agent:
        agent_path = await _check_agent(os.environ.get("SSH_AUTH_SOCK"))
        methods.append(AuthMethod(kind="agent", agent_path=agent_path))

    logger.debug(
        "构建连接配置 {}@{} 认证方式: {}",
        opts.user,
        opts.address,
        [m.kind for m in methods],
    )

    descriptor = ConnectionDescriptor(
        host=opts.host,
        port=opts.port,
        user=opts.user,
        timeout_seconds=opts.timeout / 1000 if opts.timeout else None,
        auth_methods=tuple(methods),
        sudo=opts.sudo,
    )
    return opts.address, descriptor


async def build_proxy_connection(
    options: ConnectionOptions | Mapping[str, Any] | None,
) -> tuple[str, ConnectionDescriptor] | None:
    """构建代理连接描述符；未配置代理不是错误，返回 None。"""
    if options is None:
        return None
    return await build_connection(options)


def connection_identity(conn: ConnectionOptions, proxy: ConnectionOptions | None = None) -> str:
    """计算连接池去重用的连接标识。

    覆盖目标与代理的全部地址及认证字段；None 与空字符串视为不同值。
    """
    proxy_fields: list[Any] = proxy.identity_fields() if proxy is not None else [None] * 8
    payload = json.dumps([conn.identity_fields(), proxy_fields], separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def resource_id(conn: ConnectionOptions, proxy: ConnectionOptions | None, path: str) -> str:
    """计算远程文件的资源标识。

    Examples:
        h:22:/tmp/x
        p:2222|h:22:/tmp/x
    """
    rid = f"{conn.host}:{conn.port}:{path}"
    if proxy is not None:
        rid = f"{proxy.host}:{proxy.port}|{rid}"
    return rid
