"""远程文件管理配置设置模块

使用 Pydantic Settings 管理配置，支持以下配置方式（优先级从高到低）：
1. 环境变量（前缀：REMOTE_FILE_）
2. .env 文件
3. JSON 配置文件
4. 默认值

示例环境变量：
    REMOTE_FILE_LOG_LEVEL=DEBUG
    REMOTE_FILE_MAX_SESSIONS=5
    REMOTE_FILE_CONN='{"host": "10.0.0.1", "user": "root", "agent": true}'
    REMOTE_FILE_PROXY_CONN='{"host": "bastion", "port": 2222, "user": "jump"}'
"""
from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ssh_remote_file.connection import ConnectionOptions
from ssh_remote_file.constants import DEFAULT_COMMAND_TIMEOUT_SECONDS, DEFAULT_MAX_SESSIONS


class RemoteFileSettings(BaseSettings):
    """远程文件管理配置类。

    conn 为默认连接，可被单次调用覆盖；proxy_conn 只能在此处配置。
    """

    model_config = SettingsConfigDict(env_prefix="REMOTE_FILE_", extra="ignore")

    # 配置文件路径
    config_file: Path = Field(default=Path("remote_file_config.json"))

    # 日志配置
    log_level: str = Field(default="INFO", description="日志级别")
    log_dir: Path = Field(default=Path("logs"), description="日志目录")
    log_rotation: str = Field(default="10 MB", description="日志轮转大小")
    log_retention: str = Field(default="30 days", description="日志保留时间")

    # 连接池配置
    max_sessions: int = Field(
        default=DEFAULT_MAX_SESSIONS, ge=1, description="每个连接标识的最大并发会话数"
    )
    command_timeout_seconds: int = Field(
        default=DEFAULT_COMMAND_TIMEOUT_SECONDS, ge=1, description="远程命令执行超时时间(秒)"
    )

    # 连接配置
    conn: ConnectionOptions | None = Field(default=None, description="默认连接")
    proxy_conn: ConnectionOptions | None = Field(default=None, description="代理跳板连接")
