"""Settings file loading and validation for vhost-user-lab."""

from __future__ import annotations

import ipaddress
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from vhostlab.constants import (
    DEFAULT_DISK_SIZE,
    DEFAULT_SETTINGS_PATH,
    GUEST_PACKAGES,
    HOST_PACKAGES,
    MAC_ADDRESS_RE,
    REBOOT_TIMEOUT,
)
from vhostlab.exceptions import SettingsError, WorkflowError
from vhostlab.models import (
    DEFAULT_GUEST_TESTPMD,
    DEFAULT_HOST_TESTPMD,
    NetworkSettings,
    PciAddress,
    Settings,
    TargetSettings,
    TestpmdSettings,
    VhostInterface,
)
from vhostlab.utils import deterministic_mac, get_env, validate_disk_size

REQUIRED_KEYS = (
    "base_image_file",
    "remote_base_file",
    "vm_image_file",
    "guest_name",
    "guest_root_password",
    "guest_ip",
    "guest_cmdline_options",
    "vhost_ifaces",
)

# Largest value of each PCI address segment
_PCI_LIMITS = (("domain", 0xFFFF), ("bus", 0xFF), ("slot", 0x1F), ("function", 0x7))


def resolve_settings_path(cli_value: Optional[str] = None) -> Path:
    if cli_value:
        return Path(cli_value)
    env_value = get_env("VHOSTLAB_SETTINGS")
    if env_value:
        return Path(env_value)
    return DEFAULT_SETTINGS_PATH


def _require_str(data: Mapping[str, Any], key: str, where: str = "settings") -> str:
    value = data.get(key)
    if value is None or str(value).strip() == "":
        raise SettingsError(f"'{key}' is required in {where}")
    return str(value).strip()


def _parse_int(data: Mapping[str, Any], key: str, default: int, min_val: int = 1) -> int:
    raw = data.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise SettingsError(f"{key} must be an integer (got '{raw}')")
    if value < min_val:
        raise SettingsError(f"{key} must be >= {min_val} (got {value})")
    return value


def parse_pci_address(raw: Any, where: str) -> PciAddress:
    """Build a PciAddress from ``{domain, bus, slot, function}`` hex segments."""
    if not isinstance(raw, Mapping):
        raise SettingsError(f"{where}.pci_addr must be a mapping with domain, bus, slot and function")
    values: List[int] = []
    for name, limit in _PCI_LIMITS:
        if name not in raw:
            raise SettingsError(f"{where}.pci_addr.{name} is required")
        # Unquoted YAML scalars such as 0x10 or 010 arrive already converted
        # to int and can no longer be read as hex digits.
        if not isinstance(raw[name], str):
            raise SettingsError(
                f"{where}.pci_addr.{name} must be a quoted hex string, e.g. {name}: \"10\" (got {raw[name]!r})"
            )
        text = raw[name].strip().lower()
        if text.startswith("0x"):
            text = text[2:]
        try:
            value = int(text, 16)
        except ValueError:
            raise SettingsError(f"{where}.pci_addr.{name} must be hexadecimal (got '{raw[name]}')")
        if not 0 <= value <= limit:
            raise SettingsError(f"{where}.pci_addr.{name} must be <= {limit:#x} (got {value:#x})")
        values.append(value)
    return PciAddress(*values)


def parse_vhost_ifaces(raw: Any) -> Tuple[VhostInterface, ...]:
    if not isinstance(raw, list) or not raw:
        raise SettingsError("vhost_ifaces must be a non-empty list")
    ifaces: List[VhostInterface] = []
    seen_paths = set()
    seen_addrs = set()
    for idx, item in enumerate(raw):
        where = f"vhost_ifaces[{idx}]"
        if not isinstance(item, Mapping):
            raise SettingsError(f"{where} must be a mapping with 'path' and 'pci_addr'")
        path = _require_str(item, "path", where)
        if not path.startswith("/"):
            raise SettingsError(f"{where}.path must be absolute (got '{path}')")
        pci_addr = parse_pci_address(item.get("pci_addr"), where)
        if path in seen_paths:
            raise SettingsError(f"{where}.path '{path}' is used more than once")
        if pci_addr in seen_addrs:
            raise SettingsError(f"{where}.pci_addr {pci_addr} is used more than once")
        seen_paths.add(path)
        seen_addrs.add(pci_addr)
        ifaces.append(VhostInterface(path=path, pci_addr=pci_addr))
    return tuple(ifaces)


def _parse_testpmd(raw: Any, default: TestpmdSettings, where: str) -> TestpmdSettings:
    if raw is None:
        return default
    if not isinstance(raw, Mapping):
        raise SettingsError(f"{where} must be a mapping")
    extra = raw.get("extra_args", default.extra_args)
    if isinstance(extra, str):
        extra = extra.split()
    return TestpmdSettings(
        lcores=str(raw.get("lcores", default.lcores)),
        memory_channels=_parse_int(raw, "memory_channels", default.memory_channels),
        forward_mode=str(raw.get("forward_mode", default.forward_mode)),
        socket_mem=str(raw["socket_mem"]) if raw.get("socket_mem") is not None else default.socket_mem,
        file_prefix=str(raw["file_prefix"]) if raw.get("file_prefix") is not None else default.file_prefix,
        extra_args=tuple(str(arg) for arg in extra),
    )


def _parse_packages(raw: Any, default: Tuple[str, ...], where: str) -> Tuple[str, ...]:
    if raw is None:
        return default
    if not isinstance(raw, list) or not all(isinstance(p, str) and p for p in raw):
        raise SettingsError(f"{where} must be a list of package names")
    return tuple(raw)


def _parse_section(raw: Any, where: str) -> Dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise SettingsError(f"{where} must be a mapping")
    return dict(raw)


def _parse_ip(value: str, key: str) -> str:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        raise SettingsError(f"{key} must be an IP address (got '{value}')")
    return value


def parse_settings(data: Mapping[str, Any]) -> Settings:
    if not isinstance(data, Mapping):
        raise SettingsError("Settings file must contain a mapping at the top level")
    missing = [key for key in REQUIRED_KEYS if data.get(key) in (None, "")]
    if missing:
        raise SettingsError(f"Missing required settings: {', '.join(missing)}")

    guest_name = _require_str(data, "guest_name")
    guest_ip = _parse_ip(_require_str(data, "guest_ip"), "guest_ip")

    guest_mac = str(data.get("guest_mac") or deterministic_mac(guest_name)).strip().lower()
    if not MAC_ADDRESS_RE.match(guest_mac):
        raise SettingsError(f"guest_mac must look like 52:54:00:xx:xx:xx (got '{guest_mac}')")

    memory_mb = _parse_int(data, "guest_memory_mb", 4096, min_val=1024)
    if memory_mb % 1024:
        raise SettingsError(f"guest_memory_mb must be a multiple of 1024 to fit 1 GiB hugepages (got {memory_mb})")

    try:
        disk_size = validate_disk_size(str(data.get("vm_disk_size", DEFAULT_DISK_SIZE)))
    except WorkflowError as exc:
        raise SettingsError(str(exc)) from exc

    network_raw = _parse_section(data.get("network"), "network")
    net_defaults = NetworkSettings()
    network = NetworkSettings(
        name=str(network_raw.get("name", net_defaults.name)),
        bridge=str(network_raw.get("bridge", net_defaults.bridge)),
        address=_parse_ip(str(network_raw.get("address", net_defaults.address)), "network.address"),
        netmask=str(network_raw.get("netmask", net_defaults.netmask)),
        dhcp_start=_parse_ip(str(network_raw.get("dhcp_start", net_defaults.dhcp_start)), "network.dhcp_start"),
        dhcp_end=_parse_ip(str(network_raw.get("dhcp_end", net_defaults.dhcp_end)), "network.dhcp_end"),
    )
    try:
        subnet = ipaddress.ip_network(f"{network.address}/{network.netmask}", strict=False)
    except ValueError:
        raise SettingsError(f"network.netmask is invalid (got '{network.netmask}')")
    if ipaddress.ip_address(guest_ip) not in subnet:
        raise SettingsError(f"guest_ip {guest_ip} is outside network {subnet}")

    host_raw = _parse_section(data.get("host"), "host")
    host = TargetSettings(
        address=str(host_raw.get("address", "localhost")).strip(),
        user=str(host_raw["user"]) if host_raw.get("user") else None,
        password=str(host_raw["password"]) if host_raw.get("password") is not None else None,
        port=_parse_int(host_raw, "port", 22),
    )

    testpmd_raw = _parse_section(data.get("testpmd"), "testpmd")
    host_testpmd = _parse_testpmd(testpmd_raw.get("host"), DEFAULT_HOST_TESTPMD, "testpmd.host")
    guest_testpmd = _parse_testpmd(testpmd_raw.get("guest"), DEFAULT_GUEST_TESTPMD, "testpmd.guest")

    reboot_timeout = _parse_int(data, "reboot_timeout", int(REBOOT_TIMEOUT))

    return Settings(
        base_image_file=_require_str(data, "base_image_file"),
        remote_base_file=_require_str(data, "remote_base_file"),
        vm_image_file=_require_str(data, "vm_image_file"),
        guest_name=guest_name,
        guest_root_password=str(data["guest_root_password"]),
        guest_ip=guest_ip,
        guest_mac=guest_mac,
        guest_cmdline_options=_require_str(data, "guest_cmdline_options"),
        vhost_ifaces=parse_vhost_ifaces(data.get("vhost_ifaces")),
        guest_memory_mb=memory_mb,
        guest_cpus=_parse_int(data, "guest_cpus", 4),
        vm_disk_size=disk_size,
        machine_type=str(data.get("machine_type", "pc")),
        network=network,
        host=host,
        host_testpmd=host_testpmd,
        guest_testpmd=guest_testpmd,
        host_packages=_parse_packages(data.get("host_packages"), HOST_PACKAGES, "host_packages"),
        guest_packages=_parse_packages(data.get("guest_packages"), GUEST_PACKAGES, "guest_packages"),
        reboot_timeout=float(reboot_timeout),
    )


def load_settings(path: Path) -> Settings:
    if not path.exists():
        raise SettingsError(f"Settings file missing: {path}")
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise SettingsError(f"Invalid YAML in {path}: {exc}") from exc
    return parse_settings(data or {})
