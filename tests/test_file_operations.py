"""RemoteFileOperations 单元测试模块

覆盖以下场景：
- 传输方式选择（SCP/SFTP/shell 与 sudo 的组合）
- 写入后读回（非 sudo 与 sudo 两种模式）
- 文件不存在时的 NotFoundError 映射
- exists 的双探测语义
- 权限字符串规范化与属主/属组读取
"""
import pytest

from ssh_remote_file.exceptions import CommandError, FileTransferError, NotFoundError
from ssh_remote_file.file_operations import (
    FileOperation,
    RemoteFileOperations,
    TransportKind,
    canonical_permissions,
    select_transport,
)

from conftest import FakeFile


class TestSelectTransport:
    """传输方式选择测试组。"""

    @pytest.mark.parametrize(
        ("operation", "expected"),
        [
            (FileOperation.WRITE, TransportKind.BULK_COPY),
            (FileOperation.READ, TransportKind.NATIVE_TRANSFER),
            (FileOperation.DELETE, TransportKind.NATIVE_TRANSFER),
            (FileOperation.CHMOD, TransportKind.SHELL_COMMAND),
            (FileOperation.CHOWN, TransportKind.SHELL_COMMAND),
            (FileOperation.CHGRP, TransportKind.SHELL_COMMAND),
            (FileOperation.EXISTS, TransportKind.SHELL_COMMAND),
            (FileOperation.STAT, TransportKind.SHELL_COMMAND),
        ],
    )
    def test_without_sudo(self, operation, expected) -> None:
        assert select_transport(operation, sudo=False) is expected

    @pytest.mark.parametrize("operation", list(FileOperation))
    def test_sudo_always_uses_shell(self, operation) -> None:
        assert select_transport(operation, sudo=True) is TransportKind.SHELL_COMMAND


class TestCanonicalPermissions:
    """权限字符串规范化测试组。"""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("644\n", "0644"), ("755", "0755"), ("1755\n", "1755"), ("0", "0000"), ("", "")],
    )
    def test_canonical(self, raw: str, expected: str) -> None:
        assert canonical_permissions(raw) == expected


class TestWriteRead:
    """写入与读取测试组。"""

    @pytest.mark.asyncio
    async def test_write_then_read_without_sudo(self, remote_client, fake_conn) -> None:
        """非 sudo 写入走 SCP，读取走 SFTP，不执行任何 shell 命令。"""
        ops = RemoteFileOperations(remote_client)

        await ops.write("/tmp/x", "hello", permissions="0600")
        content = await ops.read("/tmp/x")

        assert content == "hello"
        assert fake_conn.files["/tmp/x"].mode == "0600"
        assert fake_conn.processes == ["scp -qt /tmp"]
        assert fake_conn.sftp_calls == [("open", "/tmp/x")]
        assert fake_conn.commands == []

    @pytest.mark.asyncio
    async def test_write_then_read_with_sudo(self, remote_client, fake_conn) -> None:
        """sudo 写入/读取只走 shell 命令。"""
        ops = RemoteFileOperations(remote_client)

        await ops.write("/etc/app.conf", "hello", sudo=True)
        content = await ops.read("/etc/app.conf", sudo=True)

        assert content == "hello"
        assert fake_conn.processes == []
        assert fake_conn.sftp_calls == []
        assert fake_conn.commands == [
            "cat /dev/stdin | sudo tee /etc/app.conf > /dev/null",
            "sudo cat /etc/app.conf",
        ]

    @pytest.mark.asyncio
    async def test_write_quotes_path(self, remote_client, fake_conn) -> None:
        ops = RemoteFileOperations(remote_client)
        await ops.write("/tmp/a b", "x", sudo=True)
        assert fake_conn.commands == ["cat /dev/stdin | sudo tee '/tmp/a b' > /dev/null"]
        assert fake_conn.files["/tmp/a b"].content == b"x"

    @pytest.mark.asyncio
    async def test_scp_rejection_raises_transfer_error(self, remote_client, fake_conn) -> None:
        fake_conn.missing_dirs.add("/missing")
        ops = RemoteFileOperations(remote_client)

        with pytest.raises(FileTransferError) as exc_info:
            await ops.write("/missing/x", "hello")

        assert exc_info.value.protocol == "scp"
        assert exc_info.value.remote_path == "/missing/x"

    @pytest.mark.asyncio
    async def test_read_missing_without_sudo(self, remote_client) -> None:
        ops = RemoteFileOperations(remote_client)
        with pytest.raises(NotFoundError) as exc_info:
            await ops.read("/tmp/nope")
        assert exc_info.value.path == "/tmp/nope"

    @pytest.mark.asyncio
    async def test_read_missing_with_sudo(self, remote_client) -> None:
        ops = RemoteFileOperations(remote_client)
        with pytest.raises(NotFoundError):
            await ops.read("/tmp/nope", sudo=True)

    @pytest.mark.asyncio
    async def test_read_sftp_failure_is_transfer_error(self, remote_client, fake_conn) -> None:
        fake_conn.files["/root/secret"] = FakeFile(content=b"s")
        fake_conn.denied.add("/root/secret")
        ops = RemoteFileOperations(remote_client)

        with pytest.raises(FileTransferError) as exc_info:
            await ops.read("/root/secret")
        assert exc_info.value.protocol == "sftp"


class TestDelete:
    """删除测试组。"""

    @pytest.mark.asyncio
    async def test_delete_without_sudo_uses_sftp(self, remote_client, fake_conn) -> None:
        fake_conn.files["/tmp/x"] = FakeFile(content=b"a")
        await RemoteFileOperations(remote_client).delete("/tmp/x")
        assert "/tmp/x" not in fake_conn.files
        assert fake_conn.sftp_calls == [("remove", "/tmp/x")]
        assert fake_conn.commands == []

    @pytest.mark.asyncio
    async def test_delete_with_sudo_uses_shell(self, remote_client, fake_conn) -> None:
        fake_conn.files["/tmp/x"] = FakeFile(content=b"a")
        await RemoteFileOperations(remote_client).delete("/tmp/x", sudo=True)
        assert "/tmp/x" not in fake_conn.files
        assert fake_conn.commands == ["sudo rm /tmp/x"]

    @pytest.mark.asyncio
    async def test_delete_missing(self, remote_client) -> None:
        ops = RemoteFileOperations(remote_client)
        with pytest.raises(NotFoundError):
            await ops.delete("/tmp/nope")
        with pytest.raises(NotFoundError):
            await ops.delete("/tmp/nope", sudo=True)


class TestOwnership:
    """权限与属主操作测试组。"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sudo", [False, True])
    async def test_chmod_chown_chgrp_always_use_shell(self, remote_client, fake_conn, sudo) -> None:
        fake_conn.files["/tmp/x"] = FakeFile(content=b"a")
        ops = RemoteFileOperations(remote_client)

        await ops.chmod("/tmp/x", "0755", sudo=sudo)
        await ops.chown("/tmp/x", "1000", sudo=sudo)
        await ops.chgrp("/tmp/x", "staff", sudo=sudo)

        prefix = "sudo " if sudo else ""
        assert fake_conn.commands == [
            f"{prefix}chmod 0755 /tmp/x",
            f"{prefix}chown 1000 /tmp/x",
            f"{prefix}chgrp staff /tmp/x",
        ]
        assert await ops.read_permissions("/tmp/x") == "0755"
        assert await ops.read_owner("/tmp/x") == "1000"
        assert await ops.read_owner_name("/tmp/x") == "alice"
        assert await ops.read_group("/tmp/x") == "1001"
        assert await ops.read_group_name("/tmp/x") == "staff"

    @pytest.mark.asyncio
    async def test_read_permissions_keeps_four_digits(self, remote_client, fake_conn) -> None:
        fake_conn.files["/tmp/x"] = FakeFile(content=b"a", mode="1755")
        assert await RemoteFileOperations(remote_client).read_permissions("/tmp/x") == "1755"

    @pytest.mark.asyncio
    async def test_stat_missing_raises_command_error(self, remote_client) -> None:
        with pytest.raises(CommandError) as exc_info:
            await RemoteFileOperations(remote_client).read_owner("/tmp/nope")
        err = exc_info.value
        assert err.command == "stat -c %u /tmp/nope"
        assert err.exit_status == 1
        assert "No such file" in err.stderr


class TestExists:
    """exists 双探测测试组。"""

    @pytest.mark.asyncio
    async def test_exists_true(self, remote_client, fake_conn) -> None:
        fake_conn.files["/tmp/x"] = FakeFile(content=b"a")
        assert await RemoteFileOperations(remote_client).exists("/tmp/x") is True
        assert fake_conn.commands == ["test -f /tmp/x"]

    @pytest.mark.asyncio
    async def test_exists_false_after_confirming_probe(self, remote_client, fake_conn) -> None:
        assert await RemoteFileOperations(remote_client).exists("/tmp/nope", sudo=True) is False
        assert fake_conn.commands == ["sudo test -f /tmp/nope", "sudo test ! -f /tmp/nope"]

    @pytest.mark.asyncio
    async def test_exists_both_probes_fail(self, remote_client, fake_conn) -> None:
        fake_conn.denied.add("/root/x")
        with pytest.raises(CommandError) as exc_info:
            await RemoteFileOperations(remote_client).exists("/root/x")
        assert exc_info.value.command == "test ! -f /root/x"
        assert exc_info.value.exit_status == 2

    @pytest.mark.asyncio
    async def test_exists_transport_failure_is_hard_error(self, remote_client, fake_conn) -> None:
        fake_conn.fail_transport = True
        with pytest.raises(CommandError) as exc_info:
            await RemoteFileOperations(remote_client).exists("/tmp/x")
        assert exc_info.value.ran is False
        assert fake_conn.commands == ["test -f /tmp/x"]

    @pytest.mark.asyncio
    async def test_exists_missing_exit_status_is_error(self, remote_client, fake_conn) -> None:
        fake_conn.files["/tmp/x"] = FakeFile(content=b"a")
        fake_conn.drop_exit_status = True
        with pytest.raises(CommandError) as exc_info:
            await RemoteFileOperations(remote_client).exists("/tmp/x")
        assert exc_info.value.ran is False
        assert fake_conn.commands == ["test -f /tmp/x"]

    @pytest.mark.asyncio
    async def test_scp_missing_exit_status_is_transfer_error(self, remote_client, fake_conn) -> None:
        fake_conn.drop_exit_status = True
        with pytest.raises(FileTransferError) as exc_info:
            await RemoteFileOperations(remote_client).write("/tmp/x", "hello")
        assert exc_info.value.protocol == "scp"
