"""vhost-user-lab package."""

__all__ = [
    "cli",
    "config",
    "constants",
    "exceptions",
    "grub",
    "guest",
    "host",
    "image",
    "models",
    "network",
    "playbook",
    "targets",
    "testpmd",
    "utils",
    "vm",
    "workflow",
]
