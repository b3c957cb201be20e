"""Guest play: kernel command line, vfio binding and guest testpmd."""

from __future__ import annotations

import shlex
from typing import List, Optional

from vhostlab.constants import (
    BOOT_ID_PATH,
    GRUB_CFG_PATH,
    GRUB_DEFAULTS_PATH,
    GUEST_TMUX_SESSION,
    USERSPACE_DRIVER,
    VFIO_MODULES,
)
from vhostlab.exceptions import TargetUnreachable, WaitTimeout, WorkflowError
from vhostlab.grub import append_cmdline_options, has_cmdline_options
from vhostlab.host import install_packages
from vhostlab.models import Settings
from vhostlab.targets import Target
from vhostlab.testpmd import TestpmdLauncher, render_guest_script
from vhostlab.utils import log, wait_until
from vhostlab.workflow import Step


def read_boot_id(target: Target) -> Optional[str]:
    """Current boot id, or None while the target cannot be reached."""
    try:
        result = target.run(f"cat {BOOT_ID_PATH}", check=False)
    except TargetUnreachable:
        return None
    if not result.ok:
        return None
    return result.stdout.strip() or None


def is_reachable(target: Target) -> bool:
    try:
        return target.run("true", check=False).ok
    except TargetUnreachable:
        return False


class GuestSetup:
    def __init__(self, settings: Settings, target: Target, poll_interval: float = 5.0) -> None:
        self.settings = settings
        self.target = target
        self.poll_interval = poll_interval
        self.cmdline_present: Optional[bool] = None
        self.testpmd = TestpmdLauncher(
            target,
            GUEST_TMUX_SESSION,
            render_guest_script(settings),
            sudo=False,
        )

    def steps(self) -> List[Step]:
        return [
            Step("Install dependencies", self.install_dependencies),
            Step("Check if needed cmdline options are found", self.check_cmdline_options),
            Step("Edit commandline options", self.edit_cmdline_options, when=self.cmdline_missing),
            Step("Update grub", self.update_grub, when=self.cmdline_missing),
            Step("Reboot", self.reboot, when=self.cmdline_missing),
            Step("Wait for guest to become available again", self.wait_for_connection, when=self.cmdline_missing),
            Step("Insert vfio modules", self.load_vfio_modules),
            Step("Bind NICs to vfio driver", self.bind_nics),
            Step("Kill testpmd if running", self.testpmd.kill_processes, ignore_errors=True),
            Step("Kill existing tmux sessions", self.testpmd.kill_session, ignore_errors=True),
            Step("Generate guest testpmd command", self.testpmd.write_script),
            Step("Start testpmd in the guest", self.testpmd.launch),
        ]

    def install_dependencies(self) -> None:
        install_packages(self.target, self.settings.guest_packages)

    def check_cmdline_options(self) -> None:
        grub_defaults = self.target.read_text(GRUB_DEFAULTS_PATH)
        self.cmdline_present = has_cmdline_options(grub_defaults, self.settings.guest_cmdline_options)
        state = "present" if self.cmdline_present else "missing"
        log("INFO", f"Kernel options '{self.settings.guest_cmdline_options}' {state} in {GRUB_DEFAULTS_PATH}")

    def cmdline_missing(self) -> bool:
        return not self.cmdline_present

    def edit_cmdline_options(self) -> None:
        current = self.target.read_text(GRUB_DEFAULTS_PATH)
        updated = append_cmdline_options(current, self.settings.guest_cmdline_options)
        self.target.write_text(GRUB_DEFAULTS_PATH, updated)

    def update_grub(self) -> None:
        self.target.run(f"grub2-mkconfig -o {GRUB_CFG_PATH}")

    def reboot(self) -> None:
        options = self.settings.guest_cmdline_options
        previous = read_boot_id(self.target)
        # Detach so the command returns before the connection drops
        self.target.run("nohup sh -c 'sleep 2; systemctl reboot' >/dev/null 2>&1 &")
        self.target.close()
        log("INFO", f"Rebooting {self.target.name}")

        def _rebooted() -> bool:
            current = read_boot_id(self.target)
            return current is not None and current != previous

        if not wait_until(_rebooted, timeout=self.settings.reboot_timeout, interval=self.poll_interval):
            raise WaitTimeout(
                f"{self.target.name} did not come back within {self.settings.reboot_timeout:g}s after reboot"
            )
        cmdline = self.target.run("cat /proc/cmdline").stdout
        if options not in cmdline:
            raise WorkflowError(f"Kernel booted without '{options}': {cmdline.strip()}")
        log("SUCCESS", f"{self.target.name} rebooted with '{options}'")

    def wait_for_connection(self) -> None:
        if not wait_until(
            lambda: is_reachable(self.target),
            timeout=self.settings.reboot_timeout,
            interval=self.poll_interval,
        ):
            raise WaitTimeout(f"{self.target.name} is not reachable")

    def load_vfio_modules(self) -> None:
        for module, params in VFIO_MODULES:
            self.target.run(" ".join(filter(None, ["modprobe", module, params])), sudo=True)

    def bind_nics(self) -> None:
        for iface in self.settings.vhost_ifaces:
            self.target.run(shlex.join(["dpdk-devbind", "-b", USERSPACE_DRIVER, str(iface.pci_addr)]), sudo=True)
            log("INFO", f"Bound {iface.pci_addr} to {USERSPACE_DRIVER}")
