#!/usr/bin/env python3
"""
Distro Setup
------------

Provisions a freshly installed Fedora, Arch/Manjaro, Ubuntu/Debian or
openSUSE desktop: package manager tuning, system upgrade, third-party
repositories, Git and development tools, Flatpak apps, debloating,
desktop preferences for GNOME and KDE, the firewall and a few optional
Fedora tweaks.

Run with sudo from inside the desktop session you want to configure.
"""

import argparse
import logging
import signal
import sys
import time
from pathlib import Path
from typing import Any, List, Optional

from rich.traceback import install as install_rich_traceback

from distro_setup import APP_NAME, VERSION
from distro_setup.command import run_command
from distro_setup.config import Config, SetupContext
from distro_setup.desktop import kde_logout
from distro_setup.errors import FatalStepError
from distro_setup.logger import setup_logger
from distro_setup.pkg import get_package_manager
from distro_setup.probe import Desktop, detect_desktop, detect_distro, detect_target_user
from distro_setup.prompts import Prompter
from distro_setup.sequencer import RunReport, Sequencer
from distro_setup.steps import build_steps
from distro_setup.summary import print_summary
from distro_setup.ui import console, create_header, print_error, print_success, print_warning

install_rich_traceback(show_locals=False)


def build_context(config: Config, prompter: Optional[Prompter] = None, run=run_command) -> SetupContext:
    """Probe the host once and bundle everything the steps need."""
    logger = logging.getLogger("distro_setup")
    distro = detect_distro()
    desktop = detect_desktop()
    user = detect_target_user(run=run)
    logger.info(f"Detected distro: {distro.value}, desktop: {desktop.value}, user: {user}")
    return SetupContext(
        config=config,
        distro=distro,
        desktop=desktop,
        user=user,
        prompter=prompter or Prompter(),
        package_manager=get_package_manager(distro, run=run),
        run=run,
    )


def offer_kde_logout(ctx: SetupContext) -> None:
    """KDE only picks up look-and-feel and KWin changes in a new session."""
    if ctx.desktop is not Desktop.KDE or not ctx.notes.get("desktop") or ctx.session is None:
        return
    if ctx.prompter.confirm("Log out now to apply KDE changes?", default=False):
        kde_logout(ctx.session, ctx.run)
    else:
        print_warning("Log out and back in for the KDE changes to take effect.")


def provision(ctx: SetupContext, sequencer: Optional[Sequencer] = None) -> RunReport:
    """Run every step. Raises FatalStepError when a fatal step fails."""
    sequencer = sequencer or Sequencer()
    return sequencer.run(build_steps(ctx))


def signal_handler(signum: int, frame: Any) -> None:
    logger = logging.getLogger("distro_setup")
    logger.error(f"Interrupted by signal {signum}. Partial changes are left in place.")
    exit_code = 128 + signum
    if signum == signal.SIGINT:
        exit_code = 130
    elif signum == signal.SIGTERM:
        exit_code = 143
    sys.exit(exit_code)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="distro-setup", description=f"{APP_NAME} v{VERSION}")
    parser.add_argument("--log-file", type=Path, help="Where to write the run log (default: ./distro-setup.log)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    config = Config()
    if args.log_file:
        config.LOG_FILE = args.log_file

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger = setup_logger(config.LOG_FILE)
    console.print(create_header(subtitle="Linux desktop provisioning"))
    logger.info(f"Starting {APP_NAME} v{VERSION}...")
    logger.info(f"Log file: {config.LOG_FILE}")

    start = time.monotonic()
    ctx = build_context(config)
    sequencer = Sequencer(logger)
    try:
        provision(ctx, sequencer)
    except FatalStepError as e:
        logger.critical(str(e))
        print_summary(sequencer.report, ctx.notes, config.LOG_FILE, time.monotonic() - start)
        print_error(f"{APP_NAME} aborted: {e}")
        sys.exit(1)

    print_summary(sequencer.report, ctx.notes, config.LOG_FILE, time.monotonic() - start)
    if sequencer.report.ok:
        print_success(f"{APP_NAME} completed successfully.")
    else:
        print_warning(f"{APP_NAME} finished with recoverable errors; see the summary above.")
    offer_kde_logout(ctx)


if __name__ == "__main__":
    main()
