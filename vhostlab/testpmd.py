"""testpmd launch scripts and process management for vhost-user-lab."""

from __future__ import annotations

import shlex
import textwrap
from typing import List, Sequence

from vhostlab.constants import (
    GUEST_TMUX_SESSION,
    HOST_TMUX_SESSION,
    QEMU_GROUP,
    QEMU_USER,
    SOCKET_MODE,
    SOCKET_WAIT_TIMEOUT,
    TESTPMD_SCRIPT_PATH,
)
from vhostlab.exceptions import WaitTimeout
from vhostlab.models import Settings, TestpmdSettings, VhostInterface
from vhostlab.utils import log, wait_until


def _eal_args(cfg: TestpmdSettings) -> List[str]:
    args = ["-l", cfg.lcores, "-n", str(cfg.memory_channels)]
    if cfg.socket_mem:
        args += ["--socket-mem", cfg.socket_mem]
    if cfg.file_prefix:
        args.append(f"--file-prefix={cfg.file_prefix}")
    return args


def _app_args(cfg: TestpmdSettings) -> List[str]:
    return ["-i", f"--forward-mode={cfg.forward_mode}", "--auto-start", *cfg.extra_args]


def host_testpmd_command(settings: Settings) -> List[str]:
    """testpmd acting as vhost-user server, one vdev per configured socket."""
    cmd = ["dpdk-testpmd", *_eal_args(settings.host_testpmd), "--no-pci"]
    for idx, iface in enumerate(settings.vhost_ifaces):
        cmd += ["--vdev", f"net_vhost{idx},iface={iface.path},queues=1"]
    return cmd + ["--", *_app_args(settings.host_testpmd)]


def guest_testpmd_command(settings: Settings) -> List[str]:
    """testpmd in the guest, driving the virtio NICs bound to vfio-pci."""
    cmd = ["dpdk-testpmd", *_eal_args(settings.guest_testpmd)]
    for iface in settings.vhost_ifaces:
        cmd += ["-a", str(iface.pci_addr)]
    return cmd + ["--", *_app_args(settings.guest_testpmd)]


def render_launch_script(session: str, command: Sequence[str]) -> str:
    return (
        textwrap.dedent(
            f"""
            #!/bin/sh
            # Generated by vhostlab: runs testpmd detached in tmux session '{session}'.
            # Attach with: tmux attach-session -t {session}
            exec tmux new-session -d -s {shlex.quote(session)} {shlex.quote(shlex.join(command))}
            """
        ).strip()
        + "\n"
    )


def render_host_script(settings: Settings) -> str:
    return render_launch_script(HOST_TMUX_SESSION, host_testpmd_command(settings))


def render_guest_script(settings: Settings) -> str:
    return render_launch_script(GUEST_TMUX_SESSION, guest_testpmd_command(settings))


class TestpmdLauncher:
    """Replace whatever testpmd ran before with a fresh one in tmux.

    On the host, testpmd creates the vhost-user sockets; ``wait_for_sockets``
    and ``fix_socket_permissions`` must run before the guest domain starts.
    """

    __test__ = False  # keep pytest from collecting this class

    def __init__(
        self,
        target,
        session: str,
        script: str,
        interfaces: Sequence[VhostInterface] = (),
        sudo: bool = True,
        socket_timeout: float = SOCKET_WAIT_TIMEOUT,
    ) -> None:
        self.target = target
        self.session = session
        self.script = script
        self.interfaces = list(interfaces)
        self.sudo = sudo
        self.socket_timeout = socket_timeout

    def write_script(self) -> None:
        self.target.write_text(TESTPMD_SCRIPT_PATH, self.script, mode=0o755)

    def kill_processes(self) -> None:
        self.target.run("pgrep testpmd | xargs --no-run-if-empty kill", sudo=self.sudo)

    def kill_session(self) -> None:
        self.target.run(f"tmux kill-session -t {shlex.quote(self.session)}", sudo=self.sudo)

    def remove_sockets(self) -> None:
        for iface in self.interfaces:
            self.target.run(f"rm -f {shlex.quote(iface.path)}", sudo=self.sudo)

    def launch(self) -> None:
        self.target.run(f"sh {TESTPMD_SCRIPT_PATH}", sudo=self.sudo)
        log("SUCCESS", f"testpmd started in tmux session {self.session} on {self.target.name}")

    def wait_for_sockets(self) -> None:
        for iface in self.interfaces:
            if not wait_until(
                lambda: self.target.path_exists(iface.path),
                timeout=self.socket_timeout,
                interval=0.2,
            ):
                raise WaitTimeout(
                    f"Socket {iface.path} did not appear within {self.socket_timeout:g}s; "
                    f"testpmd failed to initialize (see: tmux attach-session -t {self.session})"
                )
            log("DEBUG", f"Socket {iface.path} is present")

    def fix_socket_permissions(self) -> None:
        for iface in self.interfaces:
            path = shlex.quote(iface.path)
            self.target.run(
                f"chown {QEMU_USER}:{QEMU_GROUP} {path} && chmod {SOCKET_MODE:o} {path}",
                sudo=self.sudo,
            )
