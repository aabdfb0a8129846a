"""测试共用的假 SSH 主机。

FakeSSHConnection 模拟 asyncssh.SSHClientConnection 的 run/create_process/
start_sftp_client，在内存中维护一个简单的文件系统，用于驱动 RemoteClient。
"""
from __future__ import annotations

import posixpath
import shlex
from dataclasses import dataclass

import asyncssh
import pytest

from ssh_remote_file.remote_client import RemoteClient

USERS = {"0": "root", "1000": "alice"}
GROUPS = {"0": "root", "1001": "staff"}


@dataclass
class FakeFile:
    content: bytes
    mode: str = "0644"
    uid: str = "0"
    gid: str = "0"


class FakeCompleted:
    def __init__(self, *, exit_status: int | None = 0, stdout: str = "", stderr: str = "") -> None:
        self.exit_status = exit_status
        self.stdout = stdout
        self.stderr = stderr


class _FakeWriter:
    def __init__(self, proc: FakeScpProcess) -> None:
        self._proc = proc

    def write(self, data: bytes) -> None:
        self._proc.buffer.extend(data)

    def write_eof(self) -> None:
        self._proc.eof = True


class _FakeReader:
    def __init__(self, proc: FakeScpProcess) -> None:
        self._proc = proc

    async def read(self, n: int) -> bytes:
        return self._proc.next_ack()

    async def readline(self) -> bytes:
        return self._proc.error_line


class FakeScpProcess:
    """按 SCP sink 协议应答的假进程。"""

    def __init__(self, conn: FakeSSHConnection, directory: str) -> None:
        self._conn = conn
        self._directory = directory
        self.stage = 0
        self.buffer = bytearray()
        self.eof = False
        self.error_line = b""
        self._header: tuple[str, int, str] | None = None
        self.stdin = _FakeWriter(self)
        self.stdout = _FakeReader(self)

    async def __aenter__(self) -> FakeScpProcess:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False

    def next_ack(self) -> bytes:
        if self.stage == 0:
            self.stage = 1
            return b"\x00"
        if self.stage == 1:
            line, _, rest = bytes(self.buffer).partition(b"\n")
            mode, size, name = line.decode()[1:].split(" ", 2)
            if self._directory in self._conn.missing_dirs:
                self.error_line = f"scp: {self._directory}/{name}: No such file or directory\n".encode()
                return b"\x01"
            self._header = (mode, int(size), name)
            self.buffer = bytearray(rest)
            self.stage = 2
            return b"\x00"
        assert self._header is not None
        mode, size, name = self._header
        data = bytes(self.buffer[:size])
        assert self.buffer[size:size + 1] == b"\x00"
        path = posixpath.join(self._directory, name)
        existing = self._conn.files.get(path)
        if existing is not None:
            # 与 OpenSSH 的 scp -t 一致：覆盖已有文件时保留原权限
            existing.content = data
        else:
            self._conn.files[path] = FakeFile(content=data, mode=mode)
        self.stage = 3
        return b"\x00"

    async def wait(self) -> FakeCompleted:
        return FakeCompleted(exit_status=None if self._conn.drop_exit_status else 0)


class _FakeSFTPFile:
    def __init__(self, data: bytes) -> None:
        self._data = data

    async def __aenter__(self) -> _FakeSFTPFile:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False

    async def read(self) -> bytes:
        return self._data


class FakeSFTP:
    def __init__(self, conn: FakeSSHConnection) -> None:
        self._conn = conn
        self.exited = False

    def open(self, path: str, mode: str) -> _FakeSFTPFile:
        self._conn.sftp_calls.append(("open", path))
        if path in self._conn.denied:
            raise asyncssh.SFTPPermissionDenied("Permission denied")
        file = self._conn.files.get(path)
        if file is None:
            raise asyncssh.SFTPNoSuchFile("No such file")
        return _FakeSFTPFile(file.content)

    async def remove(self, path: str) -> None:
        self._conn.sftp_calls.append(("remove", path))
        if path not in self._conn.files:
            raise asyncssh.SFTPNoSuchFile("No such file")
        del self._conn.files[path]

    def exit(self) -> None:
        self.exited = True

    async def wait_closed(self) -> None:
        return


class FakeSSHConnection:
    """内存文件系统上的假 SSH 连接。

    Attributes:
        files: 路径 -> FakeFile
        commands: 已执行的 shell 命令
        processes: 已启动的进程命令（SCP）
        sftp_calls: SFTP 调用记录
        denied: test 命令返回权限错误的路径
        missing_dirs: SCP 写入时不存在的目录
        drop_exit_status: 通道关闭前不上报退出状态
    """

    def __init__(self) -> None:
        self.files: dict[str, FakeFile] = {}
        self.commands: list[str] = []
        self.processes: list[str] = []
        self.sftp_calls: list[tuple[str, str]] = []
        self.denied: set[str] = set()
        self.missing_dirs: set[str] = set()
        self.fail_transport = False
        self.drop_exit_status = False
        self.closed_count = 0

    def close(self) -> None:
        self.closed_count += 1

    async def wait_closed(self) -> None:
        return

    def create_process(self, command: str, **_kwargs) -> FakeScpProcess:
        self.processes.append(command)
        argv = shlex.split(command)
        return FakeScpProcess(self, argv[-1])

    async def start_sftp_client(self) -> FakeSFTP:
        return FakeSFTP(self)

    async def run(self, command: str, *, input: str | None = None, **_kwargs) -> FakeCompleted:
        self.commands.append(command)
        if self.fail_transport:
            raise asyncssh.ChannelOpenError(2, "channel refused")
        if self.drop_exit_status:
            return FakeCompleted(exit_status=None)
        return self._execute(shlex.split(command), input)

    def _execute(self, argv: list[str], stdin: str | None) -> FakeCompleted:
        if "|" in argv:
            path = argv[argv.index("tee") + 1]
            data = (stdin or "").encode()
            existing = self.files.get(path)
            if existing is not None:
                existing.content = data
            else:
                self.files[path] = FakeFile(content=data)
            return FakeCompleted()

        if argv[0] == "sudo":
            argv = argv[1:]
        name, path = argv[0], argv[-1]
        file = self.files.get(path)

        if name == "test":
            if path in self.denied:
                return FakeCompleted(exit_status=2, stderr="test: Permission denied\n")
            present = file is not None
            negate = argv[1] == "!"
            return FakeCompleted(exit_status=0 if present != negate else 1)

        if file is None:
            return FakeCompleted(
                exit_status=1, stderr=f"{name}: {path}: No such file or directory\n"
            )

        if name == "cat":
            return FakeCompleted(stdout=file.content.decode())
        if name == "rm":
            del self.files[path]
            return FakeCompleted()
        if name == "chmod":
            file.mode = argv[1].zfill(4)
            return FakeCompleted()
        if name == "chown":
            file.uid = next((k for k, v in USERS.items() if v == argv[1]), argv[1])
            return FakeCompleted()
        if name == "chgrp":
            file.gid = next((k for k, v in GROUPS.items() if v == argv[1]), argv[1])
            return FakeCompleted()
        if name == "stat":
            fmt = argv[2][1:]
            value = {
                "a": format(int(file.mode, 8), "o"),
                "u": file.uid,
                "g": file.gid,
                "U": USERS.get(file.uid, "UNKNOWN"),
                "G": GROUPS.get(file.gid, "UNKNOWN"),
            }[fmt]
            return FakeCompleted(stdout=f"{value}\n")
        raise AssertionError(f"unexpected command: {argv}")


@pytest.fixture
def fake_conn() -> FakeSSHConnection:
    return FakeSSHConnection()


@pytest.fixture
def remote_client(fake_conn: FakeSSHConnection) -> RemoteClient:
    return RemoteClient(fake_conn, command_timeout_seconds=5)  # type: ignore[arg-type]
