"""The full vhost-user setup: host play, then one guest play per registered guest."""

from __future__ import annotations

from typing import Optional

from vhostlab.constants import GUEST_GROUP, HOST_GROUP
from vhostlab.exceptions import WorkflowError
from vhostlab.guest import GuestSetup
from vhostlab.host import GuestFactory, HostSetup, HugepageDecider
from vhostlab.models import Settings
from vhostlab.targets import Inventory, build_guest_target
from vhostlab.workflow import RunResult, RunStatus, Workflow


def _decline() -> Optional[int]:
    return None


class Playbook:
    def __init__(
        self,
        settings: Settings,
        inventory: Inventory,
        hugepage_decider: HugepageDecider = _decline,
        guest_factory: GuestFactory = build_guest_target,
    ) -> None:
        self.settings = settings
        self.inventory = inventory
        self.hugepage_decider = hugepage_decider
        self.guest_factory = guest_factory

    def host_setup(self) -> HostSetup:
        hosts = self.inventory.group(HOST_GROUP)
        if not hosts:
            raise WorkflowError(f"No target registered in group '{HOST_GROUP}'")
        return HostSetup(
            self.settings,
            hosts[0],
            self.inventory,
            self.hugepage_decider,
            self.guest_factory,
        )

    def run(self, host_only: bool = False) -> RunResult:
        result = Workflow("Vhost-User Setup", self.host_setup().steps()).run()
        if result.status != RunStatus.COMPLETED or host_only:
            return result
        for guest in self.inventory.group(GUEST_GROUP):
            guest_result = Workflow("Vhost-User Guest Setup", GuestSetup(self.settings, guest).steps()).run()
            result.steps.extend(guest_result.steps)
        return result
