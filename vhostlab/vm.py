"""Guest domain definition and lifecycle for vhost-user-lab."""

from __future__ import annotations

from xml.etree.ElementTree import Element, SubElement, tostring

from vhostlab.constants import DOMAIN_XML_PATH
from vhostlab.models import Settings
from vhostlab.utils import log, virsh


def render_domain_xml(settings: Settings) -> str:
    """Render the libvirt domain for the vhost-user guest.

    vhost-user needs the guest RAM to be shared with the backend process,
    so memory is backed by 1 GiB hugepages with shared access and exposed
    through a single NUMA cell.
    """
    domain = Element("domain", type="kvm")

    SubElement(domain, "name").text = settings.guest_name
    mem = SubElement(domain, "memory", unit="MiB")
    mem.text = str(settings.guest_memory_mb)
    current = SubElement(domain, "currentMemory", unit="MiB")
    current.text = str(settings.guest_memory_mb)

    backing = SubElement(domain, "memoryBacking")
    hugepages = SubElement(backing, "hugepages")
    SubElement(hugepages, "page", size="1", unit="G")
    SubElement(backing, "access", mode="shared")

    vcpu = SubElement(domain, "vcpu", placement="static")
    vcpu.text = str(settings.guest_cpus)

    # <os>
    os_el = SubElement(domain, "os")
    os_type = SubElement(os_el, "type", arch="x86_64", machine=settings.machine_type)
    os_type.text = "hvm"
    SubElement(os_el, "boot", dev="hd")

    features_el = SubElement(domain, "features")
    for feature in ("acpi", "apic", "pae"):
        SubElement(features_el, feature)

    cpu = SubElement(domain, "cpu", mode="host-passthrough")
    numa = SubElement(cpu, "numa")
    SubElement(
        numa,
        "cell",
        id="0",
        cpus=f"0-{settings.guest_cpus - 1}",
        memory=str(settings.guest_memory_mb),
        unit="MiB",
        memAccess="shared",
    )

    SubElement(domain, "on_poweroff").text = "destroy"
    SubElement(domain, "on_reboot").text = "restart"
    SubElement(domain, "on_crash").text = "destroy"

    devices = SubElement(domain, "devices")

    # Must be the overlay written by disk preparation
    disk = SubElement(devices, "disk", type="file", device="disk")
    SubElement(disk, "driver", name="qemu", type="qcow2")
    SubElement(disk, "source", file=settings.vm_image_file)
    SubElement(disk, "target", dev="vda", bus="virtio")

    mgmt = SubElement(devices, "interface", type="network")
    SubElement(mgmt, "mac", address=settings.guest_mac)
    SubElement(mgmt, "source", network=settings.network.name)
    SubElement(mgmt, "model", type="virtio")

    for iface in settings.vhost_ifaces:
        vhost = SubElement(devices, "interface", type="vhostuser")
        SubElement(vhost, "source", type="unix", path=iface.path, mode="client")
        SubElement(vhost, "model", type="virtio")
        SubElement(vhost, "driver", queues="1")
        SubElement(vhost, "address", **iface.pci_addr.xml_attributes())

    serial = SubElement(devices, "serial", type="pty")
    SubElement(serial, "target", port="0")
    console = SubElement(devices, "console", type="pty")
    SubElement(console, "target", type="serial", port="0")

    from xml.dom.minidom import parseString

    raw = tostring(domain, encoding="unicode")
    return parseString(raw).toprettyxml(indent="  ").split("\n", 1)[1].rstrip()


class GuestVM:
    def __init__(self, settings: Settings, target) -> None:
        self.settings = settings
        self.target = target
        self.name = settings.guest_name

    def destroy(self) -> None:
        virsh(self.target, "destroy", self.name)
        log("INFO", f"Destroyed running domain {self.name}")

    def undefine(self) -> None:
        virsh(self.target, "undefine", self.name)
        log("INFO", f"Undefined domain {self.name}")

    def define(self) -> None:
        self.target.write_text(DOMAIN_XML_PATH, render_domain_xml(self.settings))
        virsh(self.target, "define", DOMAIN_XML_PATH)
        virsh(self.target, "autostart", "--disable", self.name)
        log("SUCCESS", f"Defined domain {self.name}")

    def start(self) -> None:
        virsh(self.target, "start", self.name)
        log("SUCCESS", f"Domain {self.name} started")
