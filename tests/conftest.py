"""Shared test fixtures: a recording fake target, a fake clock and sample settings."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Set, Tuple, Union

import pytest

from vhostlab import utils
from vhostlab.models import PciAddress, Settings, VhostInterface
from vhostlab.targets import CommandResult, Target

Response = Union[CommandResult, Callable[[str], CommandResult]]


class FakeTarget(Target):
    """Target that records commands instead of running them.

    ``respond`` registers a canned result for any command containing a
    substring; the most recent registration wins. ``cat`` of a path held in
    ``files`` returns its content.
    """

    def __init__(self, name: str = "kvm-host", needs_sudo: bool = True) -> None:
        super().__init__(name)
        self._needs_sudo = needs_sudo
        self.commands: List[str] = []
        self.sudo_flags: List[bool] = []
        self.responses: List[Tuple[str, Response]] = []
        self.files: Dict[str, str] = {}
        self.modes: Dict[str, Optional[int]] = {}
        self.existing: Set[str] = set()
        self.open_ports: Set[Tuple[str, int]] = set()
        self.downloads: List[Tuple[str, str, int]] = []
        self.closed = 0

    @property
    def needs_sudo(self) -> bool:
        return self._needs_sudo

    def respond(self, pattern: str, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.responses.append((pattern, CommandResult(returncode, stdout, stderr)))

    def respond_with(self, pattern: str, func: Callable[[str], CommandResult]) -> None:
        self.responses.append((pattern, func))

    def _execute(self, command: str, sudo: bool) -> CommandResult:
        self.commands.append(command)
        self.sudo_flags.append(sudo)
        for pattern, response in reversed(self.responses):
            if pattern in command:
                return response(command) if callable(response) else response
        if command.startswith("cat "):
            path = command[4:].strip()
            if path in self.files:
                return CommandResult(0, self.files[path], "")
            return CommandResult(1, "", f"cat: {path}: No such file or directory")
        return CommandResult(0, "", "")

    def write_text(self, path: str, content: str, mode: Optional[int] = None, sudo: bool = False) -> None:
        self.commands.append(f"write {path}")
        self.sudo_flags.append(sudo)
        self.files[path] = content
        self.modes[path] = mode

    def path_exists(self, path: str) -> bool:
        return path in self.existing or path in self.files

    def port_open(self, host: str, port: int, timeout: float = 2.0) -> bool:
        return (host, port) in self.open_ports

    def download(self, url: str, destination: str, mode: int, sudo: bool = False) -> None:
        self.commands.append(f"download {url}")
        self.sudo_flags.append(sudo)
        self.downloads.append((url, destination, mode))
        self.existing.add(destination)

    def close(self) -> None:
        self.closed += 1

    def ran(self, fragment: str) -> bool:
        return any(fragment in command for command in self.commands)

    def index(self, fragment: str) -> int:
        for idx, command in enumerate(self.commands):
            if fragment in command:
                return idx
        raise AssertionError(f"no command containing {fragment!r} in {self.commands}")


class FakeClock:
    """Stands in for the ``time`` module inside vhostlab.utils."""

    def __init__(self) -> None:
        self.now = 1000.0
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(autouse=True)
def clock(monkeypatch) -> FakeClock:
    """Make every bounded wait instantaneous."""
    fake = FakeClock()
    monkeypatch.setattr(utils, "time", fake)
    return fake


@pytest.fixture
def fake_target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        base_image_file="/var/lib/libvirt/images/base.qcow2",
        remote_base_file="https://example.com/images/base.qcow2",
        vm_image_file="/var/lib/libvirt/images/vhuser-test1.qcow2",
        guest_name="vhuser-test1",
        guest_root_password="secret",
        guest_ip="192.168.124.10",
        guest_mac="52:54:00:aa:bb:cc",
        guest_cmdline_options="iommu=pt intel_iommu=on",
        vhost_ifaces=(
            VhostInterface("/tmp/vhost-user1", PciAddress(0, 0, 0x10, 0)),
            VhostInterface("/tmp/vhost-user2", PciAddress(0, 0, 0x11, 0)),
        ),
    )


@pytest.fixture
def settings_data() -> dict:
    """Minimal valid contents of a settings file."""
    return {
        "base_image_file": "/var/lib/libvirt/images/base.qcow2",
        "remote_base_file": "https://example.com/images/base.qcow2",
        "vm_image_file": "/var/lib/libvirt/images/vhuser-test1.qcow2",
        "guest_name": "vhuser-test1",
        "guest_root_password": "secret",
        "guest_ip": "192.168.124.10",
        "guest_cmdline_options": "iommu=pt intel_iommu=on",
        "vhost_ifaces": [
            {"path": "/tmp/vhost-user1", "pci_addr": {"domain": "0000", "bus": "00", "slot": "10", "function": "0"}},
            {"path": "/tmp/vhost-user2", "pci_addr": {"domain": "0000", "bus": "00", "slot": "11", "function": "0"}},
        ],
    }


@pytest.fixture
def mock_env(monkeypatch):
    """Helper to set environment variables for tests."""

    def _set(**kwargs):
        for key, value in kwargs.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, str(value))

    return _set
