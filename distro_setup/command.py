# ----------------------------------------------------------------
# Command Execution Utilities
# ----------------------------------------------------------------
import logging
import shutil
import subprocess
import urllib.request
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

OPERATION_TIMEOUT: int = 300  # 5 minutes default timeout for operations
DOWNLOAD_TIMEOUT: int = 900

# Signature shared by run_command and the fakes used in tests.
Runner = Callable[..., subprocess.CompletedProcess]


def run_command(
    cmd: List[str],
    capture_output: bool = False,
    text: bool = True,
    check: bool = True,
    timeout: Optional[int] = OPERATION_TIMEOUT,
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[Dict[str, str]] = None,
) -> subprocess.CompletedProcess:
    """Run a system command, logging it and re-raising failures after logging them."""
    logger = logging.getLogger("distro_setup")
    cmd_str = " ".join(str(c) for c in cmd)
    logger.debug(f"Running command: {cmd_str}" + (f" in {cwd}" if cwd else ""))
    try:
        result = subprocess.run(
            [str(c) for c in cmd],
            capture_output=capture_output,
            text=text,
            check=check,
            timeout=timeout,
            cwd=cwd,
            env=env,
            errors="replace" if text else None,
        )
        if capture_output:
            if result.stdout and result.stdout.strip():
                logger.debug(f"Cmd stdout: {result.stdout.strip()}")
            if result.stderr and result.stderr.strip():
                logger.debug(f"Cmd stderr: {result.stderr.strip()}")
        return result
    except subprocess.TimeoutExpired as e:
        logger.error(f"Command timed out after {timeout} seconds: {cmd_str}")
        raise TimeoutError(f"Command '{cmd_str}' timed out after {timeout} seconds.") from e
    except FileNotFoundError:
        logger.error(f"Command not found: {cmd[0]}. Ensure it is installed and in PATH.")
        raise
    except subprocess.CalledProcessError as e:
        error_msg = f"Command '{cmd_str}' failed with code {e.returncode}."
        if e.stderr:
            error_msg += f"\nStderr: {e.stderr.strip()}"
        logger.error(error_msg)
        raise


def command_exists(cmd: str) -> bool:
    """Check if a command exists in the system path."""
    exists = shutil.which(cmd) is not None
    logging.getLogger("distro_setup").debug(f"Command '{cmd}' found: {exists}")
    return exists


def download_file(
    url: str,
    dest: Union[str, Path],
    run: Runner = run_command,
    timeout: int = DOWNLOAD_TIMEOUT,
) -> Path:
    """
    Download a file from the given URL to the destination.
    Uses wget or curl when available and urllib otherwise.
    """
    dest = Path(dest)
    logger = logging.getLogger("distro_setup")
    logger.info(f"Downloading {url} to {dest}...")

    try:
        if command_exists("wget"):
            run(["wget", "-q", url, "-O", str(dest)], timeout=timeout)
        elif command_exists("curl"):
            run(["curl", "-fsSL", "-o", str(dest), url], timeout=timeout)
        else:
            with urllib.request.urlopen(url, timeout=timeout) as response, dest.open("wb") as out:
                shutil.copyfileobj(response, out)
    except Exception as e:
        logger.error(f"Download failed: {e}")
        if dest.exists():
            dest.unlink()
        raise

    if not dest.is_file():
        raise FileNotFoundError(f"Download of {url} produced no file at {dest}")
    logger.info(f"Download complete: {dest}")
    return dest
