"""Data models for vhost-user-lab."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, NamedTuple, Optional, Tuple

from vhostlab.constants import (
    DEFAULT_DISK_SIZE,
    GUEST_PACKAGES,
    HOST_PACKAGES,
    REBOOT_TIMEOUT,
)


class PciAddress(NamedTuple):
    domain: int
    bus: int
    slot: int
    function: int

    def __str__(self) -> str:
        return f"{self.domain:04x}:{self.bus:02x}:{self.slot:02x}.{self.function:x}"

    def xml_attributes(self) -> Dict[str, str]:
        """Attributes of a libvirt ``<address type="pci"/>`` element."""
        return {
            "type": "pci",
            "domain": f"0x{self.domain:04x}",
            "bus": f"0x{self.bus:02x}",
            "slot": f"0x{self.slot:02x}",
            "function": f"0x{self.function:x}",
        }


@dataclass(frozen=True)
class VhostInterface:
    path: str
    pci_addr: PciAddress


@dataclass(frozen=True)
class NetworkSettings:
    name: str = "virtio-default"
    bridge: str = "virbr-vhost"
    address: str = "192.168.124.1"
    netmask: str = "255.255.255.0"
    dhcp_start: str = "192.168.124.2"
    dhcp_end: str = "192.168.124.254"


@dataclass(frozen=True)
class TargetSettings:
    address: str = "localhost"
    user: Optional[str] = None
    password: Optional[str] = None
    port: int = 22


@dataclass(frozen=True)
class TestpmdSettings:
    lcores: str
    memory_channels: int = 4
    forward_mode: str = "io"
    socket_mem: Optional[str] = None
    file_prefix: Optional[str] = None
    extra_args: Tuple[str, ...] = ()

    __test__ = False  # keep pytest from collecting this class


DEFAULT_HOST_TESTPMD = TestpmdSettings(lcores="0,2,4", socket_mem="1024", file_prefix="host")
DEFAULT_GUEST_TESTPMD = TestpmdSettings(lcores="0,1,2", forward_mode="macswap")


@dataclass(frozen=True)
class Settings:
    base_image_file: str
    remote_base_file: str
    vm_image_file: str
    guest_name: str
    guest_root_password: str
    guest_ip: str
    guest_mac: str
    guest_cmdline_options: str
    vhost_ifaces: Tuple[VhostInterface, ...]
    guest_memory_mb: int = 4096
    guest_cpus: int = 4
    vm_disk_size: str = DEFAULT_DISK_SIZE
    machine_type: str = "pc"
    network: NetworkSettings = field(default_factory=NetworkSettings)
    host: TargetSettings = field(default_factory=TargetSettings)
    host_testpmd: TestpmdSettings = DEFAULT_HOST_TESTPMD
    guest_testpmd: TestpmdSettings = DEFAULT_GUEST_TESTPMD
    host_packages: Tuple[str, ...] = HOST_PACKAGES
    guest_packages: Tuple[str, ...] = GUEST_PACKAGES
    reboot_timeout: float = REBOOT_TIMEOUT
