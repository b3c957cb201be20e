"""Tests for vhostlab.targets module."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from paramiko.ssh_exception import SSHException

from conftest import FakeTarget
from vhostlab.exceptions import CommandError, TargetUnreachable, WorkflowError
from vhostlab.models import TargetSettings
from vhostlab.targets import (
    CommandResult,
    Inventory,
    LocalTarget,
    SSHTarget,
    build_guest_target,
    build_host_target,
)


class TestTargetRun:
    def test_check_raises_command_error(self, fake_target):
        fake_target.respond("false", returncode=1, stderr="boom")
        with pytest.raises(CommandError) as exc:
            fake_target.run("false")
        assert exc.value.returncode == 1
        assert exc.value.target == "kvm-host"
        assert "boom" in str(exc.value)

    def test_check_false_returns_result(self, fake_target):
        fake_target.respond("false", returncode=1)
        result = fake_target.run("false", check=False)
        assert not result.ok

    def test_env_prefix(self, fake_target):
        fake_target.run("virt-sysprep -a img", env={"LIBVIRT_DEFAULT_URI": "qemu:///system"})
        assert fake_target.commands == ["LIBVIRT_DEFAULT_URI=qemu:///system virt-sysprep -a img"]

    def test_sudo_only_when_needed(self):
        target = FakeTarget(needs_sudo=False)
        target.run("yum install -y tmux", sudo=True)
        assert target.sudo_flags == [False]

    def test_read_text_missing_file_raises(self, fake_target):
        with pytest.raises(CommandError, match="No such file"):
            fake_target.read_text("/etc/missing")


class TestLocalTarget:
    def test_runs_shell_commands(self):
        target = LocalTarget()
        with patch.object(LocalTarget, "needs_sudo", False):
            result = target.run("echo hello && echo oops >&2")
        assert result.stdout == "hello\n"
        assert result.stderr == "oops\n"

    def test_sudo_prefix(self):
        target = LocalTarget()
        completed = MagicMock(returncode=0, stdout="", stderr="")
        with patch.object(LocalTarget, "needs_sudo", True), \
                patch("vhostlab.targets.run", return_value=completed) as mock_run:
            target.run("systemctl start libvirtd", sudo=True)
        assert mock_run.call_args[0][0] == ["sudo", "sh", "-c", "systemctl start libvirtd"]

    def test_write_and_read_round_trip(self, tmp_path):
        target = LocalTarget()
        path = str(tmp_path / "tpmd.sh")
        content = "#!/bin/sh\nexec tmux new-session -d -s 'a b' \"quoted\"\n"
        with patch.object(LocalTarget, "needs_sudo", False):
            target.write_text(path, content, mode=0o755)
            assert target.read_text(path) == content
        assert (tmp_path / "tpmd.sh").stat().st_mode & 0o777 == 0o755

    def test_path_exists(self, tmp_path):
        target = LocalTarget()
        assert target.path_exists(str(tmp_path))
        assert not target.path_exists(str(tmp_path / "nope"))

    def test_port_open_false_when_refused(self):
        with patch("vhostlab.targets.socket.create_connection", side_effect=ConnectionRefusedError):
            assert LocalTarget().port_open("192.168.124.10", 22) is False

    def test_download_without_sudo(self, tmp_path):
        dest = tmp_path / "images" / "base.qcow2"

        def _fake_download(url, destination, label):
            destination.write_bytes(b"qcow")

        with patch.object(LocalTarget, "needs_sudo", False), \
                patch("vhostlab.targets.download_file", side_effect=_fake_download):
            LocalTarget().download("https://example.com/base.qcow2", str(dest), 0o640, sudo=True)
        assert dest.stat().st_mode & 0o777 == 0o640

    def test_download_with_sudo_uses_curl(self):
        target = LocalTarget()
        completed = MagicMock(returncode=0, stdout="", stderr="")
        with patch.object(LocalTarget, "needs_sudo", True), \
                patch("vhostlab.targets.run", return_value=completed) as mock_run:
            target.download("https://example.com/base.qcow2", "/var/lib/libvirt/images/b.qcow2", 0o640, sudo=True)
        cmd = mock_run.call_args[0][0]
        assert cmd[0] == "sudo"
        assert "curl -fL" in cmd[-1]
        assert "chmod 640 /var/lib/libvirt/images/b.qcow2" in cmd[-1]


class TestSSHTarget:
    @patch("vhostlab.targets.Connection")
    def test_password_auth(self, mock_conn):
        SSHTarget("kvm01", "kvm01", user="lab", password="pw", port=2222)
        kwargs = mock_conn.call_args.kwargs
        assert mock_conn.call_args[0][0] == "kvm01"
        assert kwargs["user"] == "lab"
        assert kwargs["port"] == 2222
        assert kwargs["connect_kwargs"] == {"password": "pw", "look_for_keys": False, "allow_agent": False}
        assert kwargs["gateway"] is None

    @patch("vhostlab.targets.Connection")
    def test_run_without_sudo(self, mock_conn):
        mock_conn.return_value.run.return_value = MagicMock(return_code=0, stdout="ok\n", stderr="")
        target = SSHTarget("guest", "192.168.124.10", user="root")
        mock_conn.return_value.user = "root"
        result = target.run("modprobe vfio-pci", sudo=True)
        assert result == CommandResult(0, "ok\n", "")
        mock_conn.return_value.run.assert_called_once_with(
            "modprobe vfio-pci", hide=True, warn=True, in_stream=False
        )
        mock_conn.return_value.sudo.assert_not_called()

    @patch("vhostlab.targets.Connection")
    def test_run_with_sudo(self, mock_conn):
        mock_conn.return_value.sudo.return_value = MagicMock(return_code=0, stdout="", stderr="")
        target = SSHTarget("kvm01", "kvm01", user="lab", password="pw")
        mock_conn.return_value.user = "lab"
        target.run("rm -f /tmp/vhost-user1", sudo=True)
        args, kwargs = mock_conn.return_value.sudo.call_args
        assert args[0] == "sh -c 'rm -f /tmp/vhost-user1'"
        assert kwargs["password"] == "pw"

    @patch("vhostlab.targets.Connection")
    def test_connection_failure_is_unreachable(self, mock_conn):
        mock_conn.return_value.run.side_effect = SSHException("Error reading SSH protocol banner")
        target = SSHTarget("guest", "192.168.124.10", user="root")
        with pytest.raises(TargetUnreachable, match="Cannot reach guest"):
            target.run("true")
        mock_conn.return_value.close.assert_called_once()

    @patch("vhostlab.targets.Connection")
    def test_unreachable_is_workflow_error(self, mock_conn):
        mock_conn.return_value.run.side_effect = OSError("No route to host")
        target = SSHTarget("guest", "192.168.124.10", user="root")
        with pytest.raises(WorkflowError):
            target.run("true")

    @patch("vhostlab.targets.Connection")
    def test_ssh_config_loaded_by_default(self, mock_conn):
        SSHTarget("kvm01", "kvm01", user="lab")
        assert mock_conn.call_args.kwargs["config"].load_ssh_configs is True

    @patch("vhostlab.targets.Connection")
    def test_guest_ignores_ssh_config(self, mock_conn):
        SSHTarget("guest", "192.168.124.10", user="root", load_ssh_configs=False)
        assert mock_conn.call_args.kwargs["config"].load_ssh_configs is False


class TestInventory:
    def test_groups_keep_insertion_order(self):
        inventory = Inventory()
        a, b = FakeTarget("a"), FakeTarget("b")
        inventory.add_host("a", a, "guests")
        inventory.add_host("b", b, "guests")
        assert inventory.group("guests") == [a, b]
        assert inventory.group("kvm-host") == []
        assert "a" in inventory

    def test_re_adding_replaces_and_closes_previous(self):
        inventory = Inventory()
        old, new = FakeTarget("g"), FakeTarget("g")
        inventory.add_host("g", old, "guests")
        inventory.add_host("g", new, "guests")
        assert old.closed == 1
        assert inventory.group("guests") == [new]

    def test_get_unknown(self):
        with pytest.raises(WorkflowError, match="Unknown target"):
            Inventory().get("nope")

    def test_close_all(self):
        inventory = Inventory()
        a = FakeTarget("a")
        inventory.add_host("a", a, "kvm-host")
        inventory.close()
        assert a.closed == 1


class TestBuildTargets:
    def test_localhost(self):
        assert isinstance(build_host_target(TargetSettings()), LocalTarget)

    @patch("vhostlab.targets.Connection")
    def test_remote_host(self, mock_conn):
        target = build_host_target(TargetSettings(address="kvm01", user="lab", password="pw"))
        assert isinstance(target, SSHTarget)
        assert target.name == "kvm01"

    @patch("vhostlab.targets.Connection")
    def test_guest_direct_from_local_host(self, mock_conn, settings):
        guest = build_guest_target(settings, LocalTarget())
        assert guest.name == "192.168.124.10"
        kwargs = mock_conn.call_args.kwargs
        assert kwargs["user"] == "root"
        assert kwargs["gateway"] is None
        assert kwargs["connect_kwargs"]["password"] == "secret"

    @patch("vhostlab.targets.Connection")
    def test_guest_tunnelled_through_remote_host(self, mock_conn, settings):
        host = SSHTarget("kvm01", "kvm01", user="lab")
        build_guest_target(settings, host)
        assert mock_conn.call_args.kwargs["gateway"] is host.connection
