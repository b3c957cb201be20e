"""Host play: prepares the KVM host, the network, the guest domain and host testpmd."""

from __future__ import annotations

import shlex
from typing import Callable, List, Optional

from vhostlab.constants import (
    GUEST_GROUP,
    HOST_TMUX_SESSION,
    HUGEPAGE_KERNEL_ARGS,
    HUGEPAGE_SIZE_KB,
    LIBVIRT_GROUP,
    LIBVIRT_SERVICE,
    REQUIRED_CPU_FLAGS,
    SELINUX_PERMISSIVE_DOMAIN,
    SSH_PORT,
    SSH_WAIT_DELAY,
    SSH_WAIT_TIMEOUT,
)
from vhostlab.exceptions import WaitTimeout, WorkflowError
from vhostlab.image import DiskImages
from vhostlab.models import Settings
from vhostlab.network import VirtualNetwork
from vhostlab.targets import Inventory, Target
from vhostlab.testpmd import TestpmdLauncher, render_host_script
from vhostlab.utils import log, wait_until
from vhostlab.vm import GuestVM
from vhostlab.workflow import EndRun, RunStatus, Step

# Returns the number of 1 GiB hugepages to configure, or None to decline.
HugepageDecider = Callable[[], Optional[int]]
GuestFactory = Callable[[Settings, Target], Target]

REBOOT_INSTRUCTION = "Please reboot and run the playbook again"


def parse_hugepage_size(meminfo: str) -> Optional[int]:
    """Return ``Hugepagesize`` in kB from /proc/meminfo contents."""
    for line in meminfo.splitlines():
        if line.startswith("Hugepagesize:"):
            parts = line.split()
            if len(parts) >= 2 and parts[1].isdigit():
                return int(parts[1])
    return None


def has_cpu_flags(cpuinfo: str, required=REQUIRED_CPU_FLAGS) -> bool:
    for line in cpuinfo.splitlines():
        if not line.startswith("flags"):
            continue
        flags = set(line.split(":", 1)[-1].split())
        if all(flag in flags for flag in required):
            return True
    return False


def install_packages(target: Target, packages) -> None:
    target.run(shlex.join(["yum", "install", "-y", *packages]), sudo=True)


class HostSetup:
    def __init__(
        self,
        settings: Settings,
        target: Target,
        inventory: Inventory,
        hugepage_decider: HugepageDecider,
        guest_factory: GuestFactory,
        ssh_wait_delay: float = SSH_WAIT_DELAY,
        ssh_wait_timeout: float = SSH_WAIT_TIMEOUT,
    ) -> None:
        self.settings = settings
        self.target = target
        self.inventory = inventory
        self.hugepage_decider = hugepage_decider
        self.guest_factory = guest_factory
        self.ssh_wait_delay = ssh_wait_delay
        self.ssh_wait_timeout = ssh_wait_timeout
        self.hugepage_size_kb: Optional[int] = None
        self.network = VirtualNetwork(settings, target)
        self.images = DiskImages(settings, target)
        self.vm = GuestVM(settings, target)
        self.testpmd = TestpmdLauncher(
            target,
            HOST_TMUX_SESSION,
            render_host_script(settings),
            interfaces=settings.vhost_ifaces,
        )

    def steps(self) -> List[Step]:
        return [
            Step("Check proper processor flags", self.check_cpu_flags),
            Step("Install dependencies", self.install_dependencies),
            Step("Check if we have hugepages", self.read_hugepage_size),
            Step("Configure hugepages and end play to reboot", self.configure_hugepages, when=self.hugepages_missing),
            Step("Add user to libvirt group", self.add_user_to_libvirt_group),
            Step("Start libvirtd", self.start_libvirtd),
            Step("Download base image", self.images.download_base_image, when=self.images.base_image_missing),
            Step("Destroy previous network", self.network.remove, ignore_errors=True),
            Step("Define network", self.network.define),
            Step("Start network", self.network.start),
            Step("Destroy the guest VM (in case of name collision)", self.vm.destroy, ignore_errors=True),
            Step("Create image", self.images.create_overlay),
            Step("Prepare image", self.images.customize),
            Step("Undefine guest VM (in case of name collision)", self.vm.undefine, ignore_errors=True),
            Step("Define the VM", self.vm.define),
            Step("Generate testpmd command", self.testpmd.write_script),
            Step("Kill existing instances of testpmd", self.testpmd.kill_processes, ignore_errors=True),
            Step("Kill existing tmux sessions", self.testpmd.kill_session, ignore_errors=True),
            Step("Remove previous socket files", self.testpmd.remove_sockets),
            Step("Start testpmd in the host", self.testpmd.launch),
            Step("Wait for testpmd to initialize unix sockets", self.testpmd.wait_for_sockets),
            Step("Change socket ownership, group and permissions", self.testpmd.fix_socket_permissions),
            Step(
                f"Change the {SELINUX_PERMISSIVE_DOMAIN} domain to permissive",
                self.relax_selinux_domain,
                when=self.selinux_domain_enforcing,
            ),
            Step("Start the VM", self.vm.start),
            Step("Wait for SSH to become available on guest", self.wait_for_guest_ssh),
            Step("Add guest to inventory", self.add_guest),
        ]

    def check_cpu_flags(self) -> None:
        if not has_cpu_flags(self.target.read_text("/proc/cpuinfo")):
            raise WorkflowError(
                f"Processor does not have all the flags {' and '.join(REQUIRED_CPU_FLAGS)}. Can't continue."
            )

    def install_dependencies(self) -> None:
        install_packages(self.target, self.settings.host_packages)

    def read_hugepage_size(self) -> None:
        self.hugepage_size_kb = parse_hugepage_size(self.target.read_text("/proc/meminfo"))
        log("INFO", f"Hugepagesize: {self.hugepage_size_kb} kB")

    def hugepages_missing(self) -> bool:
        return self.hugepage_size_kb != HUGEPAGE_SIZE_KB

    def configure_hugepages(self) -> EndRun:
        count = self.hugepage_decider()
        if count is None:
            raise WorkflowError("Please configure hugepages manually")
        if count < 1:
            raise WorkflowError(f"Number of hugepages must be >= 1 (got {count})")
        kernel_args = HUGEPAGE_KERNEL_ARGS.format(count=count)
        self.target.run(
            f"grubby --args={shlex.quote(kernel_args)} --update-kernel \"$(grubby --default-kernel)\"",
            sudo=True,
        )
        return EndRun(RunStatus.REBOOT_REQUIRED, REBOOT_INSTRUCTION)

    def add_user_to_libvirt_group(self) -> None:
        user = self.target.run("id -un").stdout.strip()
        self.target.run(shlex.join(["usermod", "-a", "-G", LIBVIRT_GROUP, user]), sudo=True)

    def start_libvirtd(self) -> None:
        self.target.run(f"systemctl start {LIBVIRT_SERVICE}", sudo=True)

    def selinux_domain_enforcing(self) -> bool:
        listing = self.target.run("semanage permissive -l", sudo=True).stdout
        return SELINUX_PERMISSIVE_DOMAIN not in listing.split()

    def relax_selinux_domain(self) -> None:
        self.target.run(f"semanage permissive -a {SELINUX_PERMISSIVE_DOMAIN}", sudo=True)

    def wait_for_guest_ssh(self) -> None:
        guest_ip = self.settings.guest_ip
        if not wait_until(
            lambda: self.target.port_open(guest_ip, SSH_PORT),
            timeout=self.ssh_wait_timeout,
            interval=2.0,
            delay=self.ssh_wait_delay,
        ):
            raise WaitTimeout(f"Port {SSH_PORT} on {guest_ip} did not open within {self.ssh_wait_timeout:g}s")

    def add_guest(self) -> None:
        guest = self.guest_factory(self.settings, self.target)
        self.inventory.add_host(self.settings.guest_ip, guest, GUEST_GROUP)
