"""远程文件管理自定义异常模块

定义项目中使用的所有自定义异常类，提供结构化的错误处理。
异常层次结构：
    RemoteFileError (基类)
    ├── ConfigError             - 连接参数缺失/非法、私钥文件或环境变量不可读
    ├── CredentialError         - 私钥内容无法解析
    ├── AgentUnavailableError   - 无法连接本地 SSH agent
    ├── SSHConnectionError      - 直连或经代理建立连接失败
    ├── CommandError            - 远程命令非零退出或执行中传输失败
    ├── NotFoundError           - 目标路径不存在
    ├── FileTransferError       - SCP/SFTP 协议错误（非不存在类）
    └── SessionError            - 连接池会话计数契约被破坏
"""
from __future__ import annotations

from typing import Literal

CredentialSource = Literal["inline", "file", "env"]
ConnectionStage = Literal["proxy", "target"]
TransferProtocol = Literal["scp", "sftp"]


class RemoteFileError(Exception):
    """远程文件管理基础异常类。

    所有自定义异常的基类，提供统一的错误消息格式。

    Attributes:
        message: 用户友好的错误描述信息
        details: 可选的附加错误详情字典
    """

    def __init__(self, message: str, *, details: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_error_dict(self) -> dict[str, object]:
        """将异常转换为结构化的错误字典。

        Returns:
            包含error_type、message和details的字典
        """
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(RemoteFileError):
    """配置错误。

    当连接参数缺失或非法、私钥文件无法读取、私钥环境变量不存在时抛出。

    Attributes:
        field: 出错的配置字段名
    """

    def __init__(
        self,
        message: str,
        *,
        field: str = "",
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"field": field, **(details or {})}
        super().__init__(message, details=merged_details)
        self.field = field


class CredentialError(RemoteFileError):
    """凭据错误。

    当私钥内容格式错误、无法解析时抛出。

    Attributes:
        source: 私钥来源（inline/file/env）
        host: 关联的主机地址
        user: 关联的用户名
    """

    def __init__(
        self,
        message: str,
        *,
        source: CredentialSource,
        host: str = "",
        user: str = "",
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"source": source, "host": host, "user": user, **(details or {})}
        super().__init__(message, details=merged_details)
        self.source = source
        self.host = host
        self.user = user


class AgentUnavailableError(RemoteFileError):
    """SSH agent 不可用错误。

    Attributes:
        agent_path: 尝试连接的 agent 套接字路径
    """

    def __init__(
        self,
        message: str,
        *,
        agent_path: str = "",
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"agent_path": agent_path, **(details or {})}
        super().__init__(message, details=merged_details)
        self.agent_path = agent_path


class SSHConnectionError(RemoteFileError):
    """SSH连接错误。

    当SSH连接建立失败、超时或认证全部被拒绝时抛出。经代理连接时，
    stage 用于区分代理阶段与目标阶段的失败。

    Attributes:
        host: 目标主机地址
        port: 目标SSH端口
        stage: 失败阶段（proxy/target）
    """

    def __init__(
        self,
        message: str,
        *,
        host: str = "",
        port: int = 22,
        stage: ConnectionStage = "target",
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"host": host, "port": port, "stage": stage, **(details or {})}
        super().__init__(message, details=merged_details)
        self.host = host
        self.port = port
        self.stage = stage


class CommandError(RemoteFileError):
    """命令执行错误。

    exit_status 为 None 表示命令未能运行（通道/传输失败），
    否则表示命令已运行但以非零状态退出。

    Attributes:
        command: 执行失败的命令
        exit_status: 命令退出状态码，传输失败时为 None
        stderr: 捕获的标准错误输出
        cause: 底层错误描述
    """

    def __init__(
        self,
        message: str,
        *,
        command: str = "",
        exit_status: int | None = None,
        stderr: str = "",
        cause: str = "",
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {
            "command": command,
            "exit_status": exit_status,
            "stderr": stderr,
            "cause": cause,
            **(details or {}),
        }
        super().__init__(message, details=merged_details)
        self.command = command
        self.exit_status = exit_status
        self.stderr = stderr
        self.cause = cause

    @property
    def ran(self) -> bool:
        """命令是否已在远端运行（区分“运行失败”与“无法运行”）。"""
        return self.exit_status is not None


class NotFoundError(RemoteFileError):
    """目标路径不存在错误。

    Attributes:
        path: 远程文件路径
    """

    def __init__(
        self,
        message: str,
        *,
        path: str = "",
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"path": path, **(details or {})}
        super().__init__(message, details=merged_details)
        self.path = path


class FileTransferError(RemoteFileError):
    """文件传输错误。

    当 SCP 或 SFTP 协议交互失败且不属于“文件不存在”时抛出。

    Attributes:
        remote_path: 远程文件路径
        protocol: 使用的传输协议（scp/sftp）
    """

    def __init__(
        self,
        message: str,
        *,
        remote_path: str = "",
        protocol: TransferProtocol = "sftp",
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {
            "remote_path": remote_path,
            "protocol": protocol,
            **(details or {}),
        }
        super().__init__(message, details=merged_details)
        self.remote_path = remote_path
        self.protocol = protocol


class SessionError(RemoteFileError):
    """连接池会话错误。

    当释放一个未被获取（或已被释放）的连接标识时抛出。

    Attributes:
        identity: 出错的连接标识
    """

    def __init__(
        self,
        message: str,
        *,
        identity: str = "",
        details: dict[str, object] | None = None,
    ) -> None:
        merged_details = {"identity": identity, **(details or {})}
        super().__init__(message, details=merged_details)
        self.identity = identity
