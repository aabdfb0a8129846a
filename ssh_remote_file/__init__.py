"""
SSH Remote File 远程文件管理工具

通过 SSH（密码、私钥、agent 或跳板机）管理远程主机上的文件，
在多个并发文件操作之间共享并限流底层连接。
"""

__version__ = "0.1.0"

__all__ = [
    "config_manager",
    "connection",
    "connection_pool",
    "constants",
    "exceptions",
    "file_operations",
    "logger",
    "mcp_server",
    "remote_client",
    "remote_file",
    "settings",
    "types",
]
