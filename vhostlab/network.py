"""Virtual network XML generation and lifecycle for vhost-user-lab."""

from __future__ import annotations

from xml.etree.ElementTree import Element, SubElement, tostring

from vhostlab.constants import NETWORK_XML_PATH
from vhostlab.models import Settings
from vhostlab.utils import log, virsh


def _element_to_str(root: Element) -> str:
    """Serialize an ElementTree element to a pretty-printed XML string without declaration."""
    from xml.dom.minidom import parseString

    raw = tostring(root, encoding="unicode")
    return parseString(raw).documentElement.toprettyxml(indent="  ").strip()


def render_network_xml(settings: Settings) -> str:
    """Render the NAT network the guest's management NIC attaches to.

    The DHCP host entry pins the guest to ``guest_ip`` so the address is
    known before the guest boots.
    """
    net = settings.network
    network = Element("network")
    SubElement(network, "name").text = net.name
    SubElement(network, "forward", mode="nat")
    SubElement(network, "bridge", name=net.bridge, stp="on", delay="0")
    ip_el = SubElement(network, "ip", address=net.address, netmask=net.netmask)
    dhcp = SubElement(ip_el, "dhcp")
    SubElement(dhcp, "range", start=net.dhcp_start, end=net.dhcp_end)
    SubElement(dhcp, "host", mac=settings.guest_mac, name=settings.guest_name, ip=settings.guest_ip)
    return _element_to_str(network)


class VirtualNetwork:
    def __init__(self, settings: Settings, target) -> None:
        self.settings = settings
        self.target = target
        self.name = settings.network.name

    def remove(self) -> None:
        # An inactive network cannot be destroyed but can still be undefined.
        result = virsh(self.target, "net-destroy", self.name, check=False)
        if not result.ok:
            log("DEBUG", f"net-destroy {self.name}: {result.stderr.strip()}")
        virsh(self.target, "net-undefine", self.name)
        log("INFO", f"Removed network {self.name}")

    def define(self) -> None:
        self.target.write_text(NETWORK_XML_PATH, render_network_xml(self.settings))
        virsh(self.target, "net-define", NETWORK_XML_PATH)
        log("SUCCESS", f"Defined network {self.name}")

    def start(self) -> None:
        virsh(self.target, "net-start", self.name)
        log("SUCCESS", f"Network {self.name} started")
