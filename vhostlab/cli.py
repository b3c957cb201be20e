"""CLI entry points for vhost-user-lab."""

from __future__ import annotations

import argparse
import dataclasses
from typing import Callable, List, Optional

from vhostlab.config import load_settings, resolve_settings_path
from vhostlab.constants import (
    _SENSITIVE_FIELDS,
    GUEST_TMUX_SESSION,
    HOST_GROUP,
    HOST_TMUX_SESSION,
)
from vhostlab.exceptions import WorkflowError
from vhostlab.host import HugepageDecider
from vhostlab.models import Settings
from vhostlab.network import render_network_xml
from vhostlab.playbook import Playbook
from vhostlab.targets import Inventory, build_host_target
from vhostlab.testpmd import render_guest_script, render_host_script
from vhostlab.utils import has_controlling_tty, log
from vhostlab.vm import render_domain_xml
from vhostlab.workflow import RunStatus

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_REBOOT_REQUIRED = 2


def prompt_hugepages(ask: Callable[[str], str] = input) -> Optional[int]:
    """Ask the operator whether (and how many) 1 GiB hugepages to configure."""
    answer = ask(
        "Huge pages are not configured in the host system.\n"
        "Do you want to automatically configure hugepages for you? [yes / no] "
    )
    if answer.strip().lower() != "yes":
        return None
    raw = ask("How many hugepages would you want to configure (size = 1GiB)? ").strip()
    try:
        return int(raw)
    except ValueError:
        raise WorkflowError(f"Number of hugepages must be an integer (got '{raw}')")


def make_hugepage_decider(count: Optional[int]) -> HugepageDecider:
    if count is not None:
        return lambda: count
    if has_controlling_tty():
        return prompt_hugepages

    def _no_tty() -> Optional[int]:
        log("WARN", "No TTY to ask about hugepages; pass --hugepages N to configure them")
        return None

    return _no_tty


def _print_fields(obj, indent: str = "  ") -> None:
    for field in dataclasses.fields(obj):
        value = getattr(obj, field.name)
        if field.name in _SENSITIVE_FIELDS and value is not None:
            print(f"{indent}{field.name}: ********")
        elif dataclasses.is_dataclass(value):
            print(f"{indent}{field.name}:")
            _print_fields(value, indent + "  ")
        elif isinstance(value, tuple) and value and dataclasses.is_dataclass(value[0]):
            print(f"{indent}{field.name}:")
            for i, item in enumerate(value):
                print(f"{indent}  [{i}]:")
                _print_fields(item, indent + "    ")
        else:
            print(f"{indent}{field.name}: {value}")


def show_config(settings: Settings) -> None:
    """Print the resolved settings, masking credentials."""
    _print_fields(settings)


def show_rendered(settings: Settings) -> None:
    """Print everything the run would write to the targets."""
    for title, content in (
        ("Network XML", render_network_xml(settings)),
        ("Domain XML", render_domain_xml(settings)),
        ("Host testpmd script", render_host_script(settings)),
        ("Guest testpmd script", render_guest_script(settings)),
    ):
        log("INFO", f"=== {title} ===")
        print(content.rstrip(), flush=True)


def print_summary(settings: Settings) -> None:
    """Print how to reach the guest and both testpmd sessions."""
    lines: List[str] = [
        f"  Guest VM {settings.guest_name} is running. Console:",
        f"    $ virsh console {settings.guest_name}",
        "  Host testpmd tmux session:",
        f"    $ sudo tmux attach-session -t {HOST_TMUX_SESSION}",
        "  Guest testpmd tmux session:",
        f"    $ ssh root@{settings.guest_ip} -t -- tmux attach -t {GUEST_TMUX_SESSION}",
    ]
    max_len = max(len(line) for line in lines)
    border_len = max_len + 2
    banner_colour = "\033[0;36m"
    reset = "\033[0m"
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)
    for line in lines:
        print(f"{banner_colour}{line}{reset}", flush=True)
    print(f"{banner_colour}{'=' * border_len}{reset}", flush=True)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Set up a vhost-user/DPDK host and guest")
    parser.add_argument("--settings", metavar="PATH", help="Settings file (default: vars/vhost-user_settings.yml)")
    parser.add_argument(
        "--hugepages",
        type=int,
        metavar="N",
        help="Configure N 1GiB hugepages without asking if the host has none",
    )
    parser.add_argument("--show-config", action="store_true", help="Show resolved settings and exit")
    parser.add_argument("--dry-run", action="store_true", help="Render XML and launch scripts, then exit")
    parser.add_argument("--host-only", action="store_true", help="Stop after the host play")
    args = parser.parse_args(argv)

    settings_path = resolve_settings_path(args.settings)
    try:
        settings = load_settings(settings_path)
    except WorkflowError as exc:
        log("ERROR", str(exc))
        return EXIT_FAILED

    if args.show_config:
        show_config(settings)
        return EXIT_OK

    if args.dry_run:
        log("INFO", f"Settings: {settings_path}")
        show_rendered(settings)
        log("INFO", "=== Dry-run complete (nothing executed) ===")
        return EXIT_OK

    inventory = Inventory()
    try:
        host = build_host_target(settings.host)
        inventory.add_host(host.name, host, HOST_GROUP)
        playbook = Playbook(settings, inventory, make_hugepage_decider(args.hugepages))
        result = playbook.run(host_only=args.host_only)
    except WorkflowError as exc:
        log("ERROR", str(exc))
        return EXIT_FAILED
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        import traceback

        traceback.print_exc()
        return EXIT_FAILED
    finally:
        inventory.close()

    if result.status == RunStatus.REBOOT_REQUIRED:
        log("WARN", result.message)
        return EXIT_REBOOT_REQUIRED
    if not args.host_only:
        print_summary(settings)
    return EXIT_OK
