"""
Distro Setup
------------

Provisioning for Fedora, Arch/Manjaro, Ubuntu/Debian and openSUSE desktops,
plus a kernel build helper for arm64 Android devices.
"""

APP_NAME: str = "Distro Setup"
VERSION: str = "2.0.0"

__all__ = ["APP_NAME", "VERSION"]
