"""Global constants and path configuration for vhost-user-lab."""

from __future__ import annotations

import os
import re
from pathlib import Path

DEFAULT_SETTINGS_PATH = Path("vars/vhost-user_settings.yml")
LIBVIRT_URI = os.environ.get("LIBVIRT_URI", "qemu:///system")
TRUTHY = {"1", "true", "yes", "on"}
MAC_ADDRESS_RE = re.compile(r"^[0-9a-f]{2}(:[0-9a-f]{2}){5}$")
DISK_SIZE_RE = re.compile(r"^\d+[KMGTkmgt]?$")

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

_SENSITIVE_FIELDS = {"guest_root_password", "password"}

# Inventory groups
HOST_GROUP = "kvm-host"
GUEST_GROUP = "guests"
LOCAL_HOST_NAMES = {"", "localhost", "127.0.0.1", "::1"}

HOST_PACKAGES = (
    "libvirt-daemon-kvm",
    "policycoreutils-python-utils",
    "virt-install",
    "libguestfs-tools-c",
    "python3-lxml",
    "sshpass",
    "dpdk-tools",
    "tmux",
    "grubby",
)
GUEST_PACKAGES = ("dpdk-tools", "tmux", "pciutils")

# Host checks
REQUIRED_CPU_FLAGS = ("ssse3", "pdpe1gb")
HUGEPAGE_SIZE_KB = 1048576
HUGEPAGE_KERNEL_ARGS = "default_hugepagesz=1G hugepagesz=1G hugepages={count}"
LIBVIRT_GROUP = "libvirt"
LIBVIRT_SERVICE = "libvirtd"

BASE_IMAGE_MODE = 0o640
DEFAULT_DISK_SIZE = "20G"

# vhost-user sockets are opened by the qemu process
QEMU_USER = "qemu"
QEMU_GROUP = "qemu"
SOCKET_MODE = 0o644
SOCKET_WAIT_TIMEOUT = 5.0
SELINUX_PERMISSIVE_DOMAIN = "svirt_t"

TESTPMD_SCRIPT_PATH = "/tmp/tpmd.sh"
HOST_TMUX_SESSION = "testpmd-session"
GUEST_TMUX_SESSION = "guest-testpmd-session"

NETWORK_XML_PATH = "/tmp/vhostlab-network.xml"
DOMAIN_XML_PATH = "/tmp/vhostlab-domain.xml"

SSH_PORT = 22
SSH_WAIT_DELAY = 5.0
SSH_WAIT_TIMEOUT = 300.0
REBOOT_TIMEOUT = 600.0

GRUB_DEFAULTS_PATH = "/etc/default/grub"
GRUB_CFG_PATH = "/boot/grub2/grub.cfg"
BOOT_ID_PATH = "/proc/sys/kernel/random/boot_id"

# enable_unsafe_noiommu_mode lets vfio-pci claim devices in a guest
# without a virtual IOMMU.
VFIO_MODULES = (
    ("vfio", "enable_unsafe_noiommu_mode=1"),
    ("vfio-pci", ""),
)
USERSPACE_DRIVER = "vfio-pci"
