#!/usr/bin/env python3
"""
Kernel Build
------------

Builds an arm64 Android kernel with the Greenforce clang toolchain and
packages the resulting Image into an AnyKernel3 flashable zip.

Every stage is fatal: the first failure stops the build.
Run from the directory that should hold the sources and the zip.
"""

import argparse
import fnmatch
import logging
import os
import re
import shutil
import signal
import sys
import tarfile
import time
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.box import ROUNDED
from rich.panel import Panel
from rich.table import Table
from rich.traceback import install as install_rich_traceback

from distro_setup import VERSION
from distro_setup.command import DOWNLOAD_TIMEOUT, Runner, download_file, run_command
from distro_setup.errors import (
    ArtifactNotFoundError,
    BuildCancelled,
    FatalStepError,
    StepSkipped,
    ToolchainError,
    UnsupportedDistroError,
)
from distro_setup.logger import setup_logger
from distro_setup.pkg import PackageManager, get_package_manager
from distro_setup.probe import Distro, detect_distro, logical_cores
from distro_setup.prompts import Prompter, normalize_defconfig
from distro_setup.sequencer import Criticality, ProvisioningStep, RunReport, Sequencer
from distro_setup.summary import format_elapsed, print_summary
from distro_setup.ui import NordColors, console, create_header, print_error, print_section, print_warning

install_rich_traceback(show_locals=False)

logger = logging.getLogger("distro_setup")

TOOLCHAIN_URL_ENV = "TOOLCHAIN_URL"


# ----------------------------------------------------------------
# Configuration
# ----------------------------------------------------------------
@dataclass
class KernelConfig:
    """Fixed settings of the kernel build tool."""

    LOG_FILE: Path = field(default_factory=lambda: Path.cwd() / "kernel-build.log")

    CLANG_REPO: str = "greenforce-project/greenforce_clang"
    CLANG_BRANCH: str = "main"
    ANYKERNEL3_GIT: str = "https://github.com/mayuresh2543/AnyKernel3.git"
    ANYKERNEL3_BRANCH: str = "stone"
    ZIP_FORMAT: str = "Vertex-stone-%Y%m%d-%H%M.zip"
    ZIP_EXCLUDES: List[str] = field(default_factory=lambda: ["*.git*", "*.md", "*.placeholder"])

    REQUIRED_TOOLS: List[str] = field(
        default_factory=lambda: ["clang", "ld.lld", "llvm-ar", "llvm-nm", "llvm-strip", "llvm-objcopy", "llvm-objdump"]
    )
    BUILD_USER: str = "android-build"
    BUILD_HOST: str = "localhost"
    IMAGE_PATH: str = "arch/arm64/boot/Image"

    # Build dependencies per package-manager family
    DEPENDENCIES: Dict[str, List[str]] = field(
        default_factory=lambda: {
            "apt": [
                "git", "curl", "tar", "unzip", "make", "zip", "bc", "flex", "bison", "libssl-dev",
                "libelf-dev", "libncurses-dev", "rsync", "python3", "lz4", "pigz", "wget",
            ],
            "dnf": [
                "git", "curl", "tar", "unzip", "make", "zip", "bc", "flex", "bison", "openssl-devel",
                "openssl-devel-engine", "elfutils-libelf-devel", "ncurses-devel", "rsync", "python3",
                "lz4", "pigz", "wget",
            ],
            "pacman": [
                "git", "curl", "tar", "unzip", "make", "zip", "bc", "flex", "bison", "openssl",
                "elfutils", "ncurses", "rsync", "python", "lz4", "pigz", "wget",
            ],
        }
    )

    @property
    def resolver_url(self) -> str:
        return f"https://raw.githubusercontent.com/{self.CLANG_REPO}/{self.CLANG_BRANCH}/get_latest_url.sh"


@dataclass
class BuildConfig:
    kernel_repo: str
    kernel_branch: str
    kernel_dir_name: str
    defconfig: str
    jobs: int


# ----------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------
def parse_latest_url(script: str) -> Optional[str]:
    """
    Pull a literal LATEST_URL assignment out of the resolver script.

    The script is read, never sourced. Values built from command
    substitution or variables cannot be resolved this way.
    """
    for match in re.finditer(r"^\s*(?:export\s+)?LATEST_URL=(.*)$", script, flags=re.MULTILINE):
        value = match.group(1).strip().strip("\"'")
        if re.fullmatch(r"https?://\S+", value) and "$" not in value:
            return value
    return None


def dependency_commands(pm: PackageManager, missing: List[str]) -> List[List[str]]:
    if pm.name == "apt":
        return [pm.refresh_command(), ["apt", "install", "-y", *missing]]
    if pm.name == "dnf":
        return [["dnf", "install", "-y", *missing, "@development-tools"]]
    if pm.name == "pacman":
        return [["pacman", "-Syu", "--noconfirm", *missing]]
    raise UnsupportedDistroError(f"No kernel build dependencies known for {pm.name}")


def build_environment(clang_dir: Path, config: KernelConfig, base: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    env = dict(os.environ if base is None else base)
    env.update(
        {
            "PATH": f"{clang_dir / 'bin'}{os.pathsep}{env.get('PATH', '')}",
            "ARCH": "arm64",
            "SUBARCH": "arm64",
            "LLVM": "1",
            "LLVM_IAS": "1",
            "CC": "clang",
            "LD": "ld.lld",
            "AR": "llvm-ar",
            "NM": "llvm-nm",
            "STRIP": "llvm-strip",
            "OBJCOPY": "llvm-objcopy",
            "OBJDUMP": "llvm-objdump",
            "CLANG_TRIPLE": "aarch64-linux-gnu-",
            "CROSS_COMPILE": "aarch64-linux-gnu-",
            "KBUILD_BUILD_USER": config.BUILD_USER,
            "KBUILD_BUILD_HOST": config.BUILD_HOST,
            "SOURCE_DATE_EPOCH": str(int(time.time())),
            "BUILD_REPRODUCIBLE": "1",
        }
    )
    return env


def excluded(relative: str, patterns: List[str]) -> bool:
    return any(fnmatch.fnmatch(relative, p) for p in patterns)


def create_flashable_zip(source_dir: Path, zip_path: Path, excludes: List[str]) -> List[str]:
    """Zip the contents of source_dir at maximum compression. Returns the archived names."""
    names: List[str] = []
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
        for path in sorted(source_dir.rglob("*")):
            relative = path.relative_to(source_dir).as_posix()
            if path.is_dir() or excluded(relative, excludes):
                continue
            archive.write(path, relative)
            names.append(relative)
    return names


# ----------------------------------------------------------------
# Build pipeline
# ----------------------------------------------------------------
class KernelBuild:
    """One kernel build rooted at base_dir; each stage is a method."""

    def __init__(
        self,
        base_dir: Optional[Path] = None,
        config: Optional[KernelConfig] = None,
        prompter: Optional[Prompter] = None,
        run: Runner = run_command,
        distro: Optional[Distro] = None,
        cores: Optional[int] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        self.base_dir = Path.cwd() if base_dir is None else Path(base_dir)
        self.config = config or KernelConfig()
        self.prompter = prompter or Prompter()
        self.run = run
        self.distro = distro
        self.cores = cores or logical_cores()
        self.environ = dict(os.environ if environ is None else environ)
        self.build: Optional[BuildConfig] = None
        self.zip_name = datetime.now().strftime(self.config.ZIP_FORMAT)
        self.start_time = time.monotonic()
        self.zip_path: Optional[Path] = None

    @property
    def output_dir(self) -> Path:
        return self.base_dir / "out"

    @property
    def clang_dir(self) -> Path:
        return self.base_dir / "clang"

    @property
    def anykernel_dir(self) -> Path:
        return self.base_dir / "AnyKernel3"

    @property
    def kernel_dir(self) -> Path:
        assert self.build is not None
        return self.base_dir / self.build.kernel_dir_name

    @property
    def image_path(self) -> Path:
        return self.output_dir / self.config.IMAGE_PATH

    # -- stages ---------------------------------------------------------------

    def read_input(self) -> str:
        print_section("Stone Kernel Build Configuration")
        ask = self.prompter
        repo = ask.ask_required("Kernel repository URL")
        branch = ask.ask_required("Kernel branch (e.g., 15.0)")
        dir_name = ask.ask_required("Kernel directory name (e.g., my_kernel)")
        defconfig = normalize_defconfig(ask.ask_required("Kernel defconfig name (e.g., stone)"))
        jobs = ask.ask_jobs(self.cores)
        self.build = BuildConfig(repo, branch, dir_name, defconfig, jobs)
        return f"{defconfig} from {repo} ({branch}), {jobs} jobs"

    def install_dependencies(self) -> str:
        if os.geteuid() != 0:
            print_warning("Skipping dependency check: not running as root or with sudo.")
            raise StepSkipped("Not running as root")
        distro = self.distro or detect_distro()
        pm = get_package_manager(distro, self.run)
        if pm is None or pm.name not in self.config.DEPENDENCIES:
            raise UnsupportedDistroError(f"Unsupported distro: {distro.value}")

        missing = [p for p in self.config.DEPENDENCIES[pm.name] if not pm.is_installed(p)]
        if not missing:
            raise StepSkipped("All dependencies are already satisfied")
        logger.info(f"Installing missing packages: {' '.join(missing)}")
        for cmd in dependency_commands(pm, missing):
            self.run(cmd, timeout=None)
        return f"Installed {' '.join(missing)}"

    def overview_rows(self) -> List[List[str]]:
        assert self.build is not None
        cfg = self.config
        return [
            ["Kernel Repository", self.build.kernel_repo],
            ["Kernel Branch", self.build.kernel_branch],
            ["Kernel Directory", str(self.kernel_dir)],
            ["Defconfig", self.build.defconfig],
            ["Clang Repo", cfg.CLANG_REPO],
            ["Clang Branch", cfg.CLANG_BRANCH],
            ["Clang Directory", str(self.clang_dir)],
            ["AnyKernel3 Repo", cfg.ANYKERNEL3_GIT],
            ["AnyKernel3 Branch", cfg.ANYKERNEL3_BRANCH],
            ["AnyKernel3 Dir", str(self.anykernel_dir)],
            ["Output Directory", str(self.output_dir)],
            ["ZIP Output Name", self.zip_name],
            ["Build User/Host", f"{cfg.BUILD_USER}@{cfg.BUILD_HOST}"],
            ["Cores Used", f"{self.build.jobs} / {self.cores}"],
        ]

    def confirm_overview(self) -> str:
        table = Table(
            show_header=False,
            box=ROUNDED,
            border_style=NordColors.FROST_3,
            title=f"[bold {NordColors.FROST_2}]Build Overview[/]",
        )
        table.add_column("Setting", style=f"bold {NordColors.FROST_2}")
        table.add_column("Value", style=NordColors.SNOW_STORM_1)
        for row in self.overview_rows():
            table.add_row(*row)
        console.print(table)
        if not self.prompter.confirm("Proceed with build?", default=False):
            raise BuildCancelled("Build cancelled.")
        return "Confirmed"

    def resolve_toolchain_url(self) -> str:
        override = self.environ.get(TOOLCHAIN_URL_ENV)
        if override:
            logger.info(f"Using toolchain URL from {TOOLCHAIN_URL_ENV}: {override}")
            return override
        script = self.clang_dir / "get_latest_url.sh"
        download_file(self.config.resolver_url, script, run=self.run)
        try:
            url = parse_latest_url(script.read_text())
        finally:
            script.unlink()
        if not url:
            raise ToolchainError(
                f"LATEST_URL not found in {self.config.resolver_url}; set {TOOLCHAIN_URL_ENV} to the tarball URL."
            )
        return url

    def verify_toolchain(self) -> None:
        bin_dir = self.clang_dir / "bin"
        for tool in self.config.REQUIRED_TOOLS:
            path = bin_dir / tool
            if not (path.is_file() and os.access(path, os.X_OK)):
                raise ToolchainError(f"{tool} not found in Clang toolchain ({path}).")

    def fetch_toolchain(self) -> str:
        shutil.rmtree(self.output_dir, ignore_errors=True)
        shutil.rmtree(self.anykernel_dir, ignore_errors=True)
        self.output_dir.mkdir(parents=True)
        self.clang_dir.mkdir(parents=True, exist_ok=True)

        url = self.resolve_toolchain_url()
        tarball = self.clang_dir / "Clang.tar.gz"
        logger.info(f"Downloading Clang from {url}")
        download_file(url, tarball, run=self.run, timeout=DOWNLOAD_TIMEOUT)
        try:
            with tarfile.open(tarball) as archive:
                archive.extractall(self.clang_dir, filter="data")
        except tarfile.TarError as e:
            raise ToolchainError(f"Could not extract {tarball}: {e}") from e
        finally:
            tarball.unlink(missing_ok=True)

        self.verify_toolchain()
        return f"Toolchain ready in {self.clang_dir}"

    def clone_kernel(self) -> str:
        assert self.build is not None
        if self.kernel_dir.exists():
            logger.warning(f"Kernel directory '{self.kernel_dir}' already exists. Removing to avoid conflicts.")
            shutil.rmtree(self.kernel_dir)
        self.run(
            ["git", "clone", "--depth=1", "-b", self.build.kernel_branch, self.build.kernel_repo, str(self.kernel_dir)],
            timeout=None,
        )
        return "Kernel source ready"

    def clone_anykernel(self) -> str:
        self.run(
            [
                "git", "clone", "--depth=1", self.config.ANYKERNEL3_GIT,
                "-b", self.config.ANYKERNEL3_BRANCH, str(self.anykernel_dir),
            ],
            timeout=None,
        )
        return "AnyKernel3 ready"

    def compile_kernel(self) -> str:
        assert self.build is not None
        env = build_environment(self.clang_dir, self.config, self.environ)
        out = f"O={self.output_dir}"

        def make(*args: str) -> None:
            self.run(["make", out, *args], cwd=self.kernel_dir, env=env, timeout=None)

        make("distclean", "mrproper")
        make(self.build.defconfig)
        make(
            f"-j{self.build.jobs}",
            "LOCALVERSION=",
            f"KBUILD_BUILD_USER={self.config.BUILD_USER}",
            f"KBUILD_BUILD_HOST={self.config.BUILD_HOST}",
        )
        return f"Compiled with {self.build.jobs} jobs"

    def locate_artifact(self) -> str:
        if not self.image_path.is_file():
            raise ArtifactNotFoundError(f"Kernel image not found (path: {self.image_path})")
        return str(self.image_path)

    def package(self) -> str:
        shutil.copy2(self.image_path, self.anykernel_dir / self.image_path.name)
        self.zip_path = self.base_dir / self.zip_name
        names = create_flashable_zip(self.anykernel_dir, self.zip_path, self.config.ZIP_EXCLUDES)
        return f"{self.zip_name} ({len(names)} files)"

    def report(self) -> str:
        assert self.build is not None
        duration = format_elapsed(time.monotonic() - self.start_time)
        console.print(
            Panel(
                f"[bold]Flashable ZIP  [/]: {self.zip_name}\n"
                f"[bold]Location       [/]: {self.zip_path}\n"
                f"[bold]Cores Utilized [/]: {self.build.jobs}\n"
                f"[bold]Build Duration [/]: {duration}",
                title=f"[bold {NordColors.GREEN}]Build Completed Successfully![/]",
                border_style=NordColors.GREEN,
                padding=(1, 2),
            )
        )
        return f"Built in {duration}"

    def steps(self) -> List[ProvisioningStep]:
        stages = [
            (self.read_input, "User input", True),
            (self.install_dependencies, "Dependency check", False),
            (self.confirm_overview, "Build overview", True),
            (self.fetch_toolchain, "Download Clang toolchain", False),
            (self.clone_kernel, "Clone kernel source", True),
            (self.clone_anykernel, "Clone AnyKernel3", True),
            (self.compile_kernel, "Kernel compilation", True),
            (self.locate_artifact, "Locate kernel image", False),
            (self.package, "Create flashable zip", False),
            (self.report, "Completion", True),
        ]
        return [
            ProvisioningStep(
                name=func.__name__,
                action=func,
                criticality=Criticality.FATAL,
                description=description,
                interactive=interactive,
            )
            for func, description, interactive in stages
        ]

    def run_all(self, sequencer: Optional[Sequencer] = None) -> RunReport:
        """Run every stage in order. Raises FatalStepError on the first failure."""
        sequencer = sequencer or Sequencer()
        return sequencer.run(self.steps())


# ----------------------------------------------------------------
# Entry point
# ----------------------------------------------------------------
def signal_handler(signum: int, frame: Any) -> None:
    logger.error(f"Build interrupted by signal {signum}.")
    sys.exit(130 if signum == signal.SIGINT else 143 if signum == signal.SIGTERM else 128 + signum)


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="kernel-build", description=f"Kernel Build v{VERSION}")
    parser.add_argument("--log-file", type=Path, help="Where to write the build log (default: ./kernel-build.log)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    args = parser.parse_args(argv)

    config = KernelConfig()
    if args.log_file:
        config.LOG_FILE = args.log_file

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    setup_logger(config.LOG_FILE)
    console.print(create_header("Kernel Build", "Stone kernel build"))
    if os.geteuid() != 0:
        print_warning("To automatically install missing packages, run this tool with sudo.")

    build = KernelBuild(config=config)
    sequencer = Sequencer(logger)
    try:
        build.run_all(sequencer)
    except FatalStepError as e:
        print_summary(sequencer.report, log_file=config.LOG_FILE, title="Kernel Build")
        if isinstance(e.cause, BuildCancelled):
            print_error("Build cancelled.")
        else:
            print_error(str(e))
        sys.exit(1)
    print_summary(sequencer.report, log_file=config.LOG_FILE, title="Kernel Build")


if __name__ == "__main__":
    main()
