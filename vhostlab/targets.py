"""Command targets (local machine or SSH) and the inventory that names them."""

from __future__ import annotations

import base64
import os
import shlex
import socket
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional

try:
    from fabric import Config, Connection  # type: ignore
    from paramiko.ssh_exception import SSHException  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("fabric is required but not installed") from exc

from vhostlab.constants import LOCAL_HOST_NAMES, SSH_PORT
from vhostlab.exceptions import CommandError, TargetUnreachable, WorkflowError
from vhostlab.models import Settings, TargetSettings
from vhostlab.utils import download_file, log, run, shell_env_prefix


class CommandResult(NamedTuple):
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class Target:
    """Something commands can be run on.

    Subclasses implement ``_execute``; everything else is expressed as shell
    commands so it works the same locally and over SSH.
    """

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    @property
    def needs_sudo(self) -> bool:
        return False

    def _execute(self, command: str, sudo: bool) -> CommandResult:
        raise NotImplementedError

    def run(
        self,
        command: str,
        *,
        sudo: bool = False,
        check: bool = True,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        command = shell_env_prefix(env) + command
        sudo = sudo and self.needs_sudo
        log("DEBUG", f"[{self.name}]{' (sudo)' if sudo else ''} {command}")
        result = self._execute(command, sudo)
        if check and result.returncode != 0:
            raise CommandError(command, result.returncode, result.stdout, result.stderr, target=self.name)
        return result

    def read_text(self, path: str, sudo: bool = False) -> str:
        return self.run(f"cat {shlex.quote(path)}", sudo=sudo).stdout

    def write_text(self, path: str, content: str, mode: Optional[int] = None, sudo: bool = False) -> None:
        # base64 keeps arbitrary content intact through the shell
        payload = base64.b64encode(content.encode("utf-8")).decode("ascii")
        command = f"printf %s {payload} | base64 -d > {shlex.quote(path)}"
        if mode is not None:
            command += f" && chmod {mode:o} {shlex.quote(path)}"
        self.run(command, sudo=sudo)

    def path_exists(self, path: str) -> bool:
        return self.run(f"test -e {shlex.quote(path)}", check=False).ok

    def port_open(self, host: str, port: int, timeout: float = 2.0) -> bool:
        probe = f"</dev/tcp/{host}/{port}"
        return self.run(f"timeout {int(max(timeout, 1))} bash -c {shlex.quote(probe)}", check=False).ok

    def download(self, url: str, destination: str, mode: int, sudo: bool = False) -> None:
        dest = shlex.quote(destination)
        self.run(
            f"curl -fL --silent --show-error -o {dest} {shlex.quote(url)} && chmod {mode:o} {dest}",
            sudo=sudo,
        )

    def close(self) -> None:
        pass


class LocalTarget(Target):
    """The machine vhostlab itself runs on."""

    def __init__(self, name: str = "localhost") -> None:
        super().__init__(name)

    @property
    def needs_sudo(self) -> bool:
        return os.geteuid() != 0

    def _execute(self, command: str, sudo: bool) -> CommandResult:
        cmd = ["sh", "-c", command]
        if sudo:
            cmd = ["sudo", *cmd]
        result = run(cmd, check=False, capture_output=True)
        return CommandResult(result.returncode, result.stdout or "", result.stderr or "")

    def path_exists(self, path: str) -> bool:
        return Path(path).exists()

    def port_open(self, host: str, port: int, timeout: float = 2.0) -> bool:
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError:
            return False

    def download(self, url: str, destination: str, mode: int, sudo: bool = False) -> None:
        if sudo and self.needs_sudo:
            super().download(url, destination, mode, sudo=True)
            return
        dest = Path(destination)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            download_file(url, dest, label="Downloading base image")
            dest.chmod(mode)
        except OSError as exc:
            raise WorkflowError(f"Failed to write {dest}: {exc}") from exc


class SSHTarget(Target):
    """A machine reached over SSH through a Fabric connection."""

    def __init__(
        self,
        name: str,
        host: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        port: int = SSH_PORT,
        gateway: Optional["SSHTarget"] = None,
        load_ssh_configs: bool = True,
        connect_timeout: int = 10,
    ) -> None:
        super().__init__(name)
        self.host = host
        self.password = password
        connect_kwargs: Dict[str, object] = {}
        if password is not None:
            connect_kwargs.update(password=password, look_for_keys=False, allow_agent=False)
        self.connection = Connection(
            host,
            user=user,
            port=port,
            gateway=gateway.connection if gateway is not None else None,
            connect_timeout=connect_timeout,
            connect_kwargs=connect_kwargs,
            config=Config(overrides={"load_ssh_configs": load_ssh_configs}),
        )

    @property
    def user(self) -> str:
        return self.connection.user

    @property
    def needs_sudo(self) -> bool:
        return self.user != "root"

    def _execute(self, command: str, sudo: bool) -> CommandResult:
        try:
            if sudo:
                result = self.connection.sudo(
                    f"sh -c {shlex.quote(command)}",
                    password=self.password,
                    hide=True,
                    warn=True,
                    in_stream=False,
                )
            else:
                result = self.connection.run(command, hide=True, warn=True, in_stream=False)
        except (OSError, EOFError, SSHException) as exc:
            self.close()
            raise TargetUnreachable(f"Cannot reach {self.name} ({self.host}): {exc}") from exc
        return CommandResult(result.return_code, result.stdout, result.stderr)

    def close(self) -> None:
        self.connection.close()


class Inventory:
    """Registry of named targets, grouped by role.

    The guest is only known once the host play has started it, so the
    registry grows while a run is in progress.
    """

    def __init__(self) -> None:
        self._targets: Dict[str, Target] = {}
        self._groups: Dict[str, List[str]] = {}

    def add_host(self, name: str, target: Target, group: str) -> None:
        if name in self._targets:
            self._targets[name].close()
        self._targets[name] = target
        members = self._groups.setdefault(group, [])
        if name not in members:
            members.append(name)
        log("INFO", f"Added {name} to inventory group '{group}'")

    def get(self, name: str) -> Target:
        try:
            return self._targets[name]
        except KeyError:
            raise WorkflowError(f"Unknown target '{name}'") from None

    def group(self, group: str) -> List[Target]:
        return [self._targets[name] for name in self._groups.get(group, [])]

    def __contains__(self, name: object) -> bool:
        return name in self._targets

    def close(self) -> None:
        for target in self._targets.values():
            target.close()


def build_host_target(cfg: TargetSettings) -> Target:
    if cfg.address in LOCAL_HOST_NAMES:
        return LocalTarget()
    return SSHTarget(cfg.address, cfg.address, user=cfg.user, password=cfg.password, port=cfg.port)


def build_guest_target(settings: Settings, host: Target) -> Target:
    """SSH target for the guest, tunnelled through the host when it is remote."""
    return SSHTarget(
        settings.guest_ip,
        settings.guest_ip,
        user="root",
        password=settings.guest_root_password,
        gateway=host if isinstance(host, SSHTarget) else None,
        load_ssh_configs=False,
    )
