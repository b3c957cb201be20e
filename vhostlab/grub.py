"""Kernel command-line handling for ``/etc/default/grub``."""

from __future__ import annotations

import re

from vhostlab.exceptions import WorkflowError

GRUB_CMDLINE_RE = re.compile(r'^GRUB_CMDLINE_LINUX="(.*)"[ \t\r]*$', re.MULTILINE)


def has_cmdline_options(grub_defaults: str, options: str) -> bool:
    """True if any GRUB_CMDLINE_LINUX line already carries ``options``."""
    return any(
        "GRUB_CMDLINE_LINUX" in line and options in line
        for line in grub_defaults.splitlines()
    )


def append_cmdline_options(grub_defaults: str, options: str) -> str:
    """Append ``options`` to the last ``GRUB_CMDLINE_LINUX="..."`` assignment."""
    matches = list(GRUB_CMDLINE_RE.finditer(grub_defaults))
    if not matches:
        raise WorkflowError('No GRUB_CMDLINE_LINUX="..." line to extend in the grub defaults')
    last = matches[-1]
    current = last.group(1)
    updated = f"{current} {options}" if current else options
    # Anything after the closing quote (trailing blanks, CR) is left as is
    return grub_defaults[: last.start(1)] + updated + grub_defaults[last.end(1):]
