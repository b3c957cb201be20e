"""Base image acquisition and guest disk preparation for vhost-user-lab."""

from __future__ import annotations

import shlex

from vhostlab.constants import BASE_IMAGE_MODE, LIBVIRT_URI
from vhostlab.models import Settings
from vhostlab.utils import log


class DiskImages:
    def __init__(self, settings: Settings, target) -> None:
        self.settings = settings
        self.target = target

    def base_image_missing(self) -> bool:
        present = self.target.path_exists(self.settings.base_image_file)
        if present:
            log("INFO", f"Using cached image: {self.settings.base_image_file}")
        return not present

    def download_base_image(self) -> None:
        # No checksum is published alongside the image; a truncated download
        # is only noticed when qemu-img reads it.
        self.target.download(
            self.settings.remote_base_file,
            self.settings.base_image_file,
            mode=BASE_IMAGE_MODE,
            sudo=True,
        )
        log("SUCCESS", f"Base image stored at {self.settings.base_image_file}")

    def create_overlay(self) -> None:
        cmd = [
            "qemu-img",
            "create",
            "-f",
            "qcow2",
            "-F",
            "qcow2",
            "-b",
            self.settings.base_image_file,
            self.settings.vm_image_file,
            self.settings.vm_disk_size,
        ]
        self.target.run(shlex.join(cmd), sudo=True)
        log("INFO", f"Created {self.settings.vm_image_file} backed by {self.settings.base_image_file}")

    def customize(self) -> None:
        cmd = [
            "virt-sysprep",
            "--root-password",
            f"password:{self.settings.guest_root_password}",
            "--uninstall",
            "cloud-init",
            "--selinux-relabel",
            "-a",
            self.settings.vm_image_file,
            "--hostname",
            self.settings.guest_name,
        ]
        self.target.run(shlex.join(cmd), sudo=True, env={"LIBVIRT_DEFAULT_URI": LIBVIRT_URI})
        log("SUCCESS", f"Prepared image {self.settings.vm_image_file}")
