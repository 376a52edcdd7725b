"""
Provisioning steps.

Each step takes the SetupContext and either returns a short message for
the summary, raises StepSkipped when the host is already in the desired
state (or the step does not apply to it), or raises on failure.
build_steps puts them in the order the run performs them.
"""

import logging
import os
import re
from functools import partial
from typing import Callable, List, Optional

from distro_setup.command import command_exists
from distro_setup.config import SetupContext
from distro_setup.desktop import extension_enabled, get_applier, install_gnome_extension
from distro_setup.errors import SetupError, StepSkipped, UnsupportedDistroError
from distro_setup.git import git_config_get, git_config_set, read_identity
from distro_setup.pkg import Dnf, PackageManager
from distro_setup.probe import Desktop, Distro
from distro_setup.sequencer import Criticality, ProvisioningStep
from distro_setup.session import SessionHandle, as_user, find_session_bus

logger = logging.getLogger("distro_setup")


# ----------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------
def package_manager_or_skip(ctx: SetupContext, what: str) -> PackageManager:
    if ctx.package_manager is None:
        logger.warning(f"{what} not supported for {ctx.distro.value}.")
        raise StepSkipped(f"{what} not supported for {ctx.distro.value}")
    return ctx.package_manager


def require_package_manager(ctx: SetupContext) -> PackageManager:
    if ctx.package_manager is None:
        raise UnsupportedDistroError(f"Cannot install packages on {ctx.distro.value}: no package manager support.")
    return ctx.package_manager


def require_fedora(ctx: SetupContext) -> Dnf:
    if ctx.distro is not Distro.FEDORA or not isinstance(ctx.package_manager, Dnf):
        raise StepSkipped("Fedora only")
    return ctx.package_manager


def require_desktop(ctx: SetupContext, desktop: Desktop) -> None:
    if ctx.desktop is not desktop:
        raise StepSkipped(f"{desktop.value.upper()} only")


def session_for(ctx: SetupContext) -> Optional[SessionHandle]:
    """The desktop session handle, looked up once per run."""
    if not ctx.session_probed:
        ctx.session = find_session_bus(ctx.user, run=ctx.run)
        ctx.session_probed = True
    return ctx.session


def require_session(ctx: SetupContext) -> SessionHandle:
    handle = session_for(ctx)
    if handle is None:
        logger.warning(f"No active graphical session for {ctx.user}; skipping desktop changes.")
        raise StepSkipped(f"No active desktop session for {ctx.user}")
    return handle


# ----------------------------------------------------------------
# System
# ----------------------------------------------------------------
def check_root(ctx: SetupContext) -> str:
    if os.geteuid() != 0:
        raise SetupError("Must run as root (try: sudo distro-setup).")
    return f"Running as root for {ctx.user}"


def optimize_package_manager(ctx: SetupContext) -> str:
    pm = package_manager_or_skip(ctx, "Package manager optimization")
    if not pm.optimize():
        raise StepSkipped(f"{pm.name} already optimized")
    return f"{pm.name} configured for parallel downloads"


def upgrade_system(ctx: SetupContext) -> str:
    pm = package_manager_or_skip(ctx, "System upgrade")
    pm.upgrade()
    return "System packages upgraded"


def enable_third_party_repos(ctx: SetupContext) -> str:
    dnf = require_fedora(ctx)
    release = dnf.release_version()
    wanted = [ctx.config.FEDORA_WORKSTATION_REPOS] + [
        url.format(release=release) for url in ctx.config.RPMFUSION_URLS
    ]
    if not dnf.install(wanted):
        raise StepSkipped("Third-party repositories already enabled")
    return "Fedora third-party repositories and RPM Fusion enabled"


def install_dev_tools(ctx: SetupContext) -> str:
    pm = require_package_manager(ctx)
    packages = ctx.config.DEV_PACKAGES[pm.name]
    installed = pm.install(packages, refresh=True)
    if not installed:
        raise StepSkipped("Git and development tools already installed")
    return f"Installed {', '.join(installed)}"


def configure_git(ctx: SetupContext) -> str:
    """Read the Git identity of the desktop user; prompt only for what is missing."""
    if not command_exists("git"):
        raise StepSkipped("git is not installed")
    run = as_user(ctx.user, ctx.run)
    key = ctx.config.GERRIT_CONFIG_KEY
    identity = read_identity(run, key)
    changed = False

    if not identity.complete:
        identity.name = ctx.prompter.ask_required("Enter Git user.name")
        identity.email = ctx.prompter.ask_required("Enter Git user.email")
        git_config_set("user.name", identity.name, run)
        git_config_set("user.email", identity.email, run)
        changed = True

    if not identity.gerrit_username:
        gerrit = ctx.prompter.ask("Enter your LineageOS Gerrit username (blank to skip): ")
        if gerrit:
            git_config_set(key, gerrit, run)
            identity.gerrit_username = git_config_get(key, run) or gerrit
            changed = True

    ctx.identity = identity
    ctx.note("git", f"name : {identity.name}")
    ctx.note("git", f"email: {identity.email}")
    ctx.note("git", f"Gerrit: {identity.gerrit_username or 'not set'}")
    if not changed:
        raise StepSkipped("Git already configured")
    return f"Git configured for {identity}"


def install_vscode(ctx: SetupContext) -> str:
    dnf = require_fedora(ctx)
    if dnf.is_installed("code"):
        raise StepSkipped("Visual Studio Code already installed")
    ctx.run(["rpm", "--import", ctx.config.MICROSOFT_KEY_URL])
    repo_file = ctx.config.VSCODE_REPO_FILE
    if not repo_file.exists() or repo_file.read_text() != ctx.config.VSCODE_REPO_CONTENT:
        repo_file.write_text(ctx.config.VSCODE_REPO_CONTENT)
    dnf.install(["code"])
    return "Visual Studio Code installed"


def flatpak_installed(app: str, ctx: SetupContext) -> bool:
    result = ctx.run(["flatpak", "info", app], capture_output=True, check=False)
    return result.returncode == 0


def install_flatpak_apps(ctx: SetupContext) -> str:
    pm = require_package_manager(ctx)
    pm.install(["flatpak"])
    ctx.run(["flatpak", "remote-add", "--if-not-exists", "flathub", ctx.config.FLATHUB_URL])

    apps = list(ctx.config.FLATPAK_APPS)
    if ctx.desktop is Desktop.GNOME:
        apps += ctx.config.GNOME_FLATPAK_APPS
    missing = [app for app in apps if not flatpak_installed(app, ctx)]
    if not missing:
        raise StepSkipped(f"Flatpak apps already installed: {', '.join(apps)}")
    ctx.run(["flatpak", "install", "-y", "--noninteractive", "flathub", *missing], timeout=None)
    return f"Installed Flatpak apps: {', '.join(missing)}"


def remove_firefox(ctx: SetupContext) -> str:
    pm = package_manager_or_skip(ctx, "Package removal")
    removed = pm.remove(ctx.config.UNWANTED_PACKAGES)
    if not removed:
        raise StepSkipped(f"Not installed: {', '.join(ctx.config.UNWANTED_PACKAGES)}")
    return f"Removed {', '.join(removed)}"


def debloat_gnome(ctx: SetupContext) -> str:
    require_desktop(ctx, Desktop.GNOME)
    pm = package_manager_or_skip(ctx, "Package removal")
    office = pm.installed_matching(ctx.config.OFFICE_SUITE_PATTERN)
    removed = pm.remove(office + ctx.config.GNOME_BLOAT)
    if not removed:
        raise StepSkipped("No GNOME bloat or LibreOffice packages installed")
    return f"Removed {len(removed)} packages: {', '.join(removed)}"


# ----------------------------------------------------------------
# Desktop
# ----------------------------------------------------------------
def install_blur_my_shell(ctx: SetupContext) -> str:
    require_desktop(ctx, Desktop.GNOME)
    handle = require_session(ctx)
    uuid = ctx.config.BLUR_MY_SHELL_UUID
    if extension_enabled(uuid, handle, ctx.run):
        raise StepSkipped("Blur My Shell already enabled")
    if install_gnome_extension(ctx.config.BLUR_MY_SHELL_REPO, uuid, handle, ctx.run):
        return "Blur My Shell installed and enabled"
    return "Blur My Shell installed; enable it after logging in again"


def apply_desktop_preferences(ctx: SetupContext) -> str:
    if ctx.desktop is Desktop.OTHER:
        raise StepSkipped("No preference mapping for this desktop environment")
    handle = require_session(ctx)
    applier = get_applier(ctx.desktop, handle, ctx.config.PREFERENCES, ctx.run)
    changed = applier.apply()
    for label in changed:
        ctx.note("desktop", label)
    if not changed:
        raise StepSkipped(f"{ctx.desktop.value.upper()} preferences already applied")
    return f"Applied: {', '.join(changed)}"


# ----------------------------------------------------------------
# Firewall
# ----------------------------------------------------------------
def setup_firewall(ctx: SetupContext) -> str:
    if not command_exists("firewall-cmd"):
        logger.warning("firewalld not installed or not supported.")
        raise StepSkipped("firewalld not installed")

    changes: List[str] = []
    active = ctx.run(["systemctl", "is-active", "firewalld"], capture_output=True, check=False)
    enabled = ctx.run(["systemctl", "is-enabled", "firewalld"], capture_output=True, check=False)
    if (active.stdout or "").strip() != "active" or (enabled.stdout or "").strip() != "enabled":
        ctx.run(["systemctl", "enable", "--now", "firewalld"])
        changes.append("firewalld enabled")

    zone = ctx.config.FIREWALL_ZONE
    current = ctx.run(["firewall-cmd", "--get-default-zone"], capture_output=True).stdout.strip()
    if current != zone:
        ctx.run(["firewall-cmd", f"--set-default-zone={zone}"])
        ctx.run(["firewall-cmd", "--reload"])
        changes.append(f"default zone {zone}")

    if not changes:
        raise StepSkipped(f"Firewall already active with default zone {zone}")
    return "Firewall configured: " + ", ".join(changes)


# ----------------------------------------------------------------
# Optional Fedora tweaks
# ----------------------------------------------------------------
def install_cachy_kernel(ctx: SetupContext) -> str:
    dnf = require_fedora(ctx)
    if all(dnf.is_installed(p) for p in ctx.config.CACHY_KERNEL_PACKAGES):
        raise StepSkipped("CachyOS kernel already installed")
    if not ctx.prompter.confirm("Do you want to install the CachyOS kernel?", default=False):
        raise StepSkipped("Declined")

    dnf.enable_copr(ctx.config.CACHY_KERNEL_COPR)
    dnf.install(ctx.config.CACHY_KERNEL_PACKAGES)
    ctx.run(["setsebool", "-P", "domain_kernel_load_modules", "on"])
    dnf.enable_copr(ctx.config.CACHY_ADDONS_COPR)
    addons = [p for p in ctx.config.CACHY_ADDONS_PACKAGES if not dnf.is_installed(p)]
    if addons:
        ctx.run(["dnf", "install", "-y", "--allowerasing", *addons], timeout=None)
    ctx.run(["dracut", "-f"], timeout=None)
    ctx.note("tweaks", "CachyOS kernel installed")
    return "CachyOS LTO kernel installed and performance tweaks applied"


def parse_multiplier(raw: str, default: str) -> str:
    """Accept plain decimals such as 2 or 3.3; the value lands verbatim in zram-generator.conf."""
    raw = raw.strip()
    if not re.fullmatch(r"[0-9]+(\.[0-9]+)?", raw):
        logger.warning(f"Invalid ZRAM multiplier '{raw}', using {default}.")
        return default
    if float(raw) <= 0:
        logger.warning(f"ZRAM multiplier must be positive, using {default}.")
        return default
    return raw


def configure_zram(ctx: SetupContext) -> str:
    require_fedora(ctx)
    conf = ctx.config.ZRAM_CONF
    if not ctx.prompter.confirm("Do you want to configure ZRAM?", default=False):
        raise StepSkipped("Declined")
    if not conf.is_file():
        logger.warning("ZRAM config not found.")
        raise StepSkipped(f"ZRAM config {conf} not found")

    default = ctx.config.ZRAM_DEFAULT_MULTIPLIER
    multiplier = parse_multiplier(
        ctx.prompter.ask_with_default("Enter ZRAM multiplier (e.g., 3.3 for ram*3.3)", default), default
    )
    line = f"zram-size = ram*{multiplier}"
    content = conf.read_text()
    new_content, count = re.subn(r"^zram-size\s*=.*$", line, content, flags=re.MULTILINE)
    if count == 0:
        new_content = content.rstrip("\n") + f"\n{line}\n"
    if new_content == content:
        raise StepSkipped(f"ZRAM size already ram*{multiplier}")
    conf.write_text(new_content)
    ctx.note("tweaks", f"ZRAM size set to ram*{multiplier}")
    return f"ZRAM size set to ram*{multiplier}"


def set_legacy_crypto_policy(ctx: SetupContext) -> str:
    require_fedora(ctx)
    current = ctx.run(["update-crypto-policies", "--show"], capture_output=True, check=False)
    if (current.stdout or "").strip() == "LEGACY":
        raise StepSkipped("Crypto policy already LEGACY")
    if not ctx.prompter.confirm("Do you want to set legacy crypto policies? (Not recommended)", default=False):
        raise StepSkipped("Declined")
    ctx.run(["update-crypto-policies", "--set", "LEGACY"])
    ctx.note("tweaks", "Legacy crypto policy applied")
    return "Crypto policies set to LEGACY"


# ----------------------------------------------------------------
# Step list
# ----------------------------------------------------------------
def _step(
    ctx: SetupContext,
    func: Callable[[SetupContext], str],
    description: str,
    criticality: Criticality = Criticality.RECOVERABLE,
    interactive: bool = False,
) -> ProvisioningStep:
    return ProvisioningStep(
        name=func.__name__,
        action=partial(func, ctx),
        criticality=criticality,
        description=description,
        interactive=interactive,
    )


def build_steps(ctx: SetupContext) -> List[ProvisioningStep]:
    return [
        _step(ctx, check_root, "Check root privileges", Criticality.FATAL),
        _step(ctx, optimize_package_manager, "Optimize package manager"),
        _step(ctx, upgrade_system, "Upgrade system packages"),
        _step(ctx, enable_third_party_repos, "Enable third-party repositories"),
        _step(ctx, install_dev_tools, "Install Git and development tools"),
        _step(ctx, configure_git, "Configure Git identity", Criticality.FATAL, interactive=True),
        _step(ctx, install_vscode, "Install Visual Studio Code"),
        _step(ctx, install_flatpak_apps, "Install Flatpak apps"),
        _step(ctx, remove_firefox, "Remove Firefox"),
        _step(ctx, debloat_gnome, "Remove GNOME bloat apps and LibreOffice"),
        _step(ctx, install_blur_my_shell, "Install Blur My Shell extension"),
        _step(ctx, apply_desktop_preferences, "Apply desktop preferences"),
        _step(ctx, setup_firewall, "Set up firewall"),
        _step(ctx, install_cachy_kernel, "Install CachyOS kernel", interactive=True),
        _step(ctx, configure_zram, "Configure ZRAM", interactive=True),
        _step(ctx, set_legacy_crypto_policy, "Set legacy crypto policy", interactive=True),
    ]
