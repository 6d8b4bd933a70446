#!/usr/bin/env python3
"""
Nmap Setup Utility
--------------------------------------------------

Unattended provisioning for Debian/Ubuntu hosts that brings the system up to
date and installs the nmap network scanner.

Steps:
  • Verify root privileges and an apt-based system
  • Refresh the package index and upgrade installed packages
  • Install nmap, or upgrade it in place when an update is pending
  • Verify the nmap executable is on PATH and report its version

Every message is written to the console and appended to
/var/log/<script-name>.log. Set DEBUG=true to trace each command to stderr.

Usage:
  sudo python3 nmap_setup.py

Exit codes: 0 success, 1 failure, 130 interrupted.

Version: 1.0.0
"""

import logging
import os
import shlex
import shutil
import signal
import subprocess
import sys
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

import click
import pyfiglet
from rich.console import Console
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text
from rich.traceback import Traceback
from rich.traceback import install as install_rich_traceback


# ----------------------------------------------------------------
# Configuration & Constants
# ----------------------------------------------------------------
class AppConfig:
    """Global application configuration."""

    VERSION: str = "1.0.0"
    APP_NAME: str = "Nmap Setup"
    APP_SUBTITLE: str = "Debian/Ubuntu Provisioning Utility"

    PACKAGES: List[str] = ["nmap"]

    LOG_DIR: str = "/var/log"
    OS_RELEASE: str = "/etc/os-release"

    APT_COMMAND: str = "apt"
    APT_ENV: Dict[str, str] = {"DEBIAN_FRONTEND": "noninteractive"}

    VERSION_TIMEOUT: int = 30  # seconds
    UNKNOWN_VERSION: str = "version unknown"
    DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"


# ----------------------------------------------------------------
# Nord-Themed Colors and Rich Console
# ----------------------------------------------------------------
class NordColors:
    """Nord color palette for consistent theming throughout the application."""

    # Snow Storm (light text)
    SNOW_STORM_1: str = "#D8DEE9"
    SNOW_STORM_2: str = "#E5E9F0"

    # Frost (blue accents)
    FROST_1: str = "#8FBCBB"
    FROST_2: str = "#88C0D0"
    FROST_3: str = "#81A1C1"
    FROST_4: str = "#5E81AC"

    # Aurora (other accents)
    RED: str = "#BF616A"
    YELLOW: str = "#EBCB8B"
    GREEN: str = "#A3BE8C"
    PURPLE: str = "#B48EAD"


console: Console = Console(highlight=False)
error_console: Console = Console(stderr=True, highlight=False)


# ----------------------------------------------------------------
# Custom Exceptions
# ----------------------------------------------------------------
class SetupError(Exception):
    """Base exception for setup errors."""

    pass


class PreconditionError(SetupError):
    """Raised when the host is not fit for provisioning (not root, no apt)."""

    pass


class StepFailed(SetupError):
    """Raised when a step has reported failure and the run must stop."""

    pass


class SetupInterrupted(SetupError):
    """Raised when an interrupt signal cancelled the run."""

    pass


class ExitCode(IntEnum):
    SUCCESS = 0
    FAILURE = 1
    INTERRUPTED = 130


class Stage(Enum):
    START = "start"
    CHECKED = "checked"
    UPDATED = "updated"
    INSTALLED = "installed"
    VERIFIED = "verified"
    DONE = "done"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


# ----------------------------------------------------------------
# Logging
# ----------------------------------------------------------------
SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LEVEL_TAGS: Dict[int, str] = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    SUCCESS: "OK",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
}

LEVEL_STYLES: Dict[int, str] = {
    logging.DEBUG: f"{NordColors.PURPLE}",
    logging.INFO: f"bold {NordColors.FROST_3}",
    SUCCESS: f"bold {NordColors.GREEN}",
    logging.WARNING: f"bold {NordColors.YELLOW}",
    logging.ERROR: f"bold {NordColors.RED}",
}


def level_tag(levelno: int) -> str:
    return LEVEL_TAGS.get(levelno, logging.getLevelName(levelno))


class LineFormatter(logging.Formatter):
    """Render records as ``[LEVEL] YYYY-MM-DD HH:MM:SS message``."""

    def __init__(self) -> None:
        super().__init__(
            fmt="[%(tag)s] %(asctime)s %(message)s", datefmt=AppConfig.DATE_FORMAT
        )

    def format(self, record: logging.LogRecord) -> str:
        record.tag = level_tag(record.levelno)
        return super().format(record)


class ConsoleHandler(logging.Handler):
    """
    Print records to the terminal with a colored level tag.

    Errors and debug traces go to stderr, everything else to stdout.
    """

    def __init__(
        self,
        level: int = logging.NOTSET,
        out: Optional[Console] = None,
        err: Optional[Console] = None,
    ) -> None:
        super().__init__(level)
        self.out = out or console
        self.err = err or error_console

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
            text = Text(line)
            text.stylize(
                LEVEL_STYLES.get(record.levelno, ""), 0, len(level_tag(record.levelno)) + 2
            )
            target = (
                self.err
                if record.levelno >= logging.ERROR or record.levelno == logging.DEBUG
                else self.out
            )
            target.print(text, soft_wrap=True, highlight=False)
        except Exception:
            self.handleError(record)


class AppendFileHandler(logging.Handler):
    """
    Append each record to the log file, opening and closing it per write.

    An unwritable log file is reported once on stderr, after which the file
    sink stays disabled for the rest of the process.
    """

    def __init__(self, path: str, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.path = path
        self.unavailable = False

    def emit(self, record: logging.LogRecord) -> None:
        if self.unavailable:
            return
        try:
            line = self.format(record)
            with open(self.path, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError as e:
            self.unavailable = True
            error_console.print(
                f"Cannot write log file {self.path}: {e.strerror or e}",
                style=NordColors.YELLOW,
                markup=False,
                highlight=False,
                soft_wrap=True,
            )
        except Exception:
            self.handleError(record)


class SetupLogger:
    """
    Logging capability handed to every setup step.

    Wraps a standard library logger so steps only see the four message
    kinds they need plus debug tracing.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def debug_enabled(self) -> bool:
        return self._logger.isEnabledFor(logging.DEBUG)

    def debug(self, message: str) -> None:
        self._logger.debug(message)

    def info(self, message: str) -> None:
        self._logger.info(message)

    def success(self, message: str) -> None:
        self._logger.log(SUCCESS, message)

    def warn(self, message: str) -> None:
        self._logger.warning(message)

    def error(self, message: str) -> None:
        self._logger.error(message)


def default_log_path(argv0: Optional[str] = None) -> str:
    """Log path named after the invoking script, e.g. /var/log/nmap_setup.log."""
    stem = Path(argv0 if argv0 is not None else sys.argv[0]).stem or "nmap_setup"
    return os.path.join(AppConfig.LOG_DIR, f"{stem}.log")


def setup_logging(log_file: str, debug: bool = False) -> SetupLogger:
    """
    Configure the console and log file sinks.

    Args:
        log_file: File every INFO-and-above line is appended to
        debug: Emit command traces to stderr

    Returns:
        The logger to pass to each step
    """
    level = logging.DEBUG if debug else logging.INFO
    logger = logging.getLogger("nmap_setup")
    logger.setLevel(level)
    logger.propagate = False

    # Reconfiguring replaces any sinks from an earlier call.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = LineFormatter()
    console_handler = ConsoleHandler(level)
    console_handler.setFormatter(formatter)
    file_handler = AppendFileHandler(log_file)
    file_handler.setFormatter(formatter)

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    logger.debug("Logging initialized: %s", log_file)
    return SetupLogger(logger)


# ----------------------------------------------------------------
# Console Helpers
# ----------------------------------------------------------------
def print_header() -> None:
    """Print the ASCII art banner inside a Nord-styled panel."""
    ascii_art = pyfiglet.figlet_format(AppConfig.APP_NAME, font="slant")
    colors = [
        NordColors.FROST_1,
        NordColors.FROST_2,
        NordColors.FROST_3,
        NordColors.FROST_4,
    ]

    banner = Text()
    lines = [line for line in ascii_art.split("\n") if line.strip()]
    for i, line in enumerate(lines):
        banner.append(line + "\n", style=f"bold {colors[i % len(colors)]}")

    console.print(
        Panel(
            banner,
            border_style=Style(color=NordColors.FROST_1),
            padding=(1, 2),
            title=f"[bold {NordColors.SNOW_STORM_2}]v{AppConfig.VERSION}[/]",
            title_align="right",
            subtitle=f"[bold {NordColors.SNOW_STORM_1}]{AppConfig.APP_SUBTITLE}[/]",
            subtitle_align="center",
        )
    )


def print_summary(versions: Dict[str, str]) -> None:
    """Print a table of the verified packages and their versions."""
    table = Table(
        title="Installation Summary",
        title_style=f"bold {NordColors.FROST_2}",
        border_style=NordColors.FROST_3,
        header_style=f"bold {NordColors.FROST_2}",
    )
    table.add_column("Package", style=f"bold {NordColors.SNOW_STORM_2}")
    table.add_column("Version", style=NordColors.SNOW_STORM_1)
    for name, version in versions.items():
        table.add_row(Text(name), Text(version))
    console.print(table)


# ----------------------------------------------------------------
# Command Execution Helper
# ----------------------------------------------------------------
def run_command(
    cmd: Sequence[str],
    capture_output: bool = True,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    log: Optional[SetupLogger] = None,
) -> subprocess.CompletedProcess:
    """
    Execute a command and return the CompletedProcess without raising on
    a non-zero exit status.

    Args:
        cmd: Command and arguments as a list
        capture_output: Capture stdout/stderr instead of streaming them
        env: Extra environment variables layered over os.environ
        timeout: Command timeout in seconds
        log: Logger receiving the debug trace of the command

    Returns:
        CompletedProcess instance; a missing executable yields return code 127
    """
    argv = list(cmd)
    if log is not None:
        log.debug("+ " + " ".join(shlex.quote(arg) for arg in argv))

    run_env = os.environ.copy()
    run_env.update(env or {})
    try:
        return subprocess.run(
            argv,
            check=False,
            text=True,
            errors="replace",
            capture_output=capture_output,
            env=run_env,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        return subprocess.CompletedProcess(argv, 127, stdout="", stderr=str(e))


# ----------------------------------------------------------------
# Package Manager
# ----------------------------------------------------------------
class PackageManager(Protocol):
    """Operations the setup steps need from the OS package manager."""

    def refresh_index(self) -> bool:
        ...

    def upgrade_all(self) -> bool:
        ...

    def is_installed(self, name: str) -> bool:
        ...

    def has_upgrade(self, name: str) -> bool:
        ...

    def install(self, name: str) -> bool:
        ...


class AptPackageManager:
    """PackageManager backed by apt and dpkg-query."""

    def __init__(self, log: Optional[SetupLogger] = None, apt: str = AppConfig.APT_COMMAND):
        self.log = log
        self.apt = apt

    def _apt(self, *args: str, capture_output: bool = False) -> subprocess.CompletedProcess:
        return run_command(
            [self.apt, *args],
            capture_output=capture_output,
            env=AppConfig.APT_ENV,
            log=self.log,
        )

    def refresh_index(self) -> bool:
        return self._apt("update", "-y").returncode == 0

    def upgrade_all(self) -> bool:
        return self._apt("upgrade", "-y").returncode == 0

    def install(self, name: str) -> bool:
        return self._apt("install", "-y", name).returncode == 0

    def is_installed(self, name: str) -> bool:
        result = run_command(["dpkg-query", "-W", "-f=${Status}", name], log=self.log)
        return result.returncode == 0 and "install ok installed" in result.stdout

    def has_upgrade(self, name: str) -> bool:
        result = self._apt("list", "--upgradable", capture_output=True)
        if result.returncode != 0:
            return False
        prefix = f"{name}/"
        return any(line.startswith(prefix) for line in result.stdout.splitlines())


# ----------------------------------------------------------------
# Cancellation & Signal Handling
# ----------------------------------------------------------------
class CancelToken:
    """Flag set by the signal handler and polled between steps."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise SetupInterrupted("Interrupted by signal")


def install_signal_handlers(
    token: CancelToken, log: SetupLogger
) -> Dict[int, Any]:
    """
    Route SIGINT and SIGTERM to the cancellation token.

    Returns:
        The previous handlers, for restore_signal_handlers()
    """

    def handle_interrupt(signum: int, frame: Optional[Any]) -> None:
        log.warn("Received interrupt signal, cleaning up...")
        token.cancel()

    previous: Dict[int, Any] = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, handle_interrupt)
        except (AttributeError, ValueError):
            pass
    return previous


def restore_signal_handlers(previous: Dict[int, Any]) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)


# ----------------------------------------------------------------
# Preflight Checks
# ----------------------------------------------------------------
def check_root(log: SetupLogger, script_name: Optional[str] = None) -> None:
    """
    Verify that the script is running with root privileges.

    Raises:
        PreconditionError: If the effective user is not root
    """
    if os.geteuid() != 0:
        name = script_name or Path(sys.argv[0]).name
        log.error("This script must be run with sudo or as root.")
        log.error(f"Usage: sudo {name}")
        raise PreconditionError("root privileges required")


def detect_os_description() -> str:
    """Describe the running distribution via lsb_release or /etc/os-release."""
    result = run_command(["lsb_release", "-ds"])
    description = (result.stdout or "").strip().strip('"')
    if result.returncode == 0 and description:
        return description

    try:
        with open(AppConfig.OS_RELEASE, encoding="utf-8") as fh:
            for line in fh:
                key, _, value = line.strip().partition("=")
                if key == "PRETTY_NAME" and value:
                    return value.strip().strip('"')
    except OSError:
        pass
    return "unknown Linux distribution"


def check_system(log: SetupLogger) -> None:
    """
    Verify that the host is Debian/Ubuntu based with the apt package manager.

    Raises:
        PreconditionError: If apt is not found on PATH
    """
    if shutil.which(AppConfig.APT_COMMAND) is None:
        log.error(
            "This script requires a Debian/Ubuntu-based system with apt package manager"
        )
        raise PreconditionError("apt not found")

    log.info(f"Detected {detect_os_description()}")


# ----------------------------------------------------------------
# Setup Steps
# ----------------------------------------------------------------
def update_system(
    log: SetupLogger, pm: PackageManager, token: Optional[CancelToken] = None
) -> bool:
    """
    Refresh the package index, then upgrade every installed package.

    Returns:
        bool: True if both steps succeeded, False otherwise
    """
    token = token or CancelToken()

    log.info("Updating package lists...")
    refreshed = pm.refresh_index()
    token.raise_if_cancelled()
    if not refreshed:
        log.error("Failed to update package lists")
        return False

    log.info("Upgrading installed packages...")
    upgraded = pm.upgrade_all()
    token.raise_if_cancelled()
    if not upgraded:
        log.error("Failed to upgrade packages")
        return False

    log.success("System update completed")
    return True


def install_packages(
    log: SetupLogger,
    pm: PackageManager,
    packages: Sequence[str],
    token: Optional[CancelToken] = None,
) -> bool:
    """
    Install missing packages and upgrade outdated ones, in order.

    The first failed install or upgrade stops the sequence; packages already
    handled are left in place.

    Returns:
        bool: True if every package was processed, False otherwise
    """
    token = token or CancelToken()

    if not packages:
        log.warn("No packages specified for installation")
        return True

    log.info(f"Processing {len(packages)} package(s): {' '.join(packages)}")

    for pkg in packages:
        token.raise_if_cancelled()
        log.info(f"Checking if {pkg} is installed...")

        installed = pm.is_installed(pkg)
        token.raise_if_cancelled()

        if installed:
            log.info(f"{pkg} is already installed")
            outdated = pm.has_upgrade(pkg)
            token.raise_if_cancelled()

            if not outdated:
                log.info(f"{pkg} is up to date, skipping")
                continue

            log.info(f"{pkg} has updates available, upgrading...")
            ok = pm.install(pkg)
            token.raise_if_cancelled()
            if not ok:
                log.error(f"Failed to upgrade {pkg}")
                return False
            log.success(f"{pkg} upgraded successfully")
        else:
            log.info(f"Installing {pkg}...")
            ok = pm.install(pkg)
            token.raise_if_cancelled()
            if not ok:
                log.error(f"Failed to install {pkg}")
                return False
            log.success(f"{pkg} installed successfully")

    log.success("All packages processed successfully")
    return True


def probe_version(executable: str, log: Optional[SetupLogger] = None) -> str:
    """Return the first line printed by ``<executable> --version``."""
    try:
        result = run_command(
            [executable, "--version"], timeout=AppConfig.VERSION_TIMEOUT, log=log
        )
    except (subprocess.TimeoutExpired, OSError, ValueError):
        return AppConfig.UNKNOWN_VERSION

    for line in (result.stdout or "").splitlines():
        if line.strip():
            return line.strip()
    return AppConfig.UNKNOWN_VERSION


def verify_installation(
    log: SetupLogger, packages: Sequence[str], token: Optional[CancelToken] = None
) -> Optional[Dict[str, str]]:
    """
    Check that each package provides a same-named executable on PATH.

    Returns:
        Mapping of package name to reported version, or None if any
        executable is missing
    """
    token = token or CancelToken()
    log.info("Verifying installation...")

    versions: Dict[str, str] = {}
    for pkg in packages:
        token.raise_if_cancelled()
        path = shutil.which(pkg)
        if path is None:
            log.error(f"{pkg} command not found after installation")
            return None

        version = probe_version(path, log)
        token.raise_if_cancelled()
        log.success(f"{pkg} is installed and available: {version}")
        versions[pkg] = version
    return versions


# ----------------------------------------------------------------
# Run Orchestration
# ----------------------------------------------------------------
class SetupRun:
    """
    Tracks the stage of a run and guarantees the closing log line.

    Used as a context manager: leaving the block always logs whether the run
    succeeded, based only on the final exit code.
    """

    def __init__(self, log: SetupLogger, token: Optional[CancelToken] = None) -> None:
        self.log = log
        self.token = token or CancelToken()
        self.stage = Stage.START
        self.exit_code = ExitCode.SUCCESS

    def advance(self, stage: Stage) -> None:
        self.log.debug(f"Stage {self.stage.name} -> {stage.name}")
        self.stage = stage

    def __enter__(self) -> "SetupRun":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        handled = exc_type is not None and self._record(exc_type, exc, tb)

        # A signal that arrived after the last checkpoint still ends the run.
        if self.token.cancelled and self.exit_code != ExitCode.INTERRUPTED:
            self.exit_code = ExitCode.INTERRUPTED
            self.advance(Stage.INTERRUPTED)

        self.finalize()
        return handled

    def _record(self, exc_type, exc, tb) -> bool:
        """Set the exit code for an exception; True if it is swallowed."""
        if issubclass(exc_type, SetupInterrupted):
            self.exit_code = ExitCode.INTERRUPTED
            self.advance(Stage.INTERRUPTED)
            return True
        if issubclass(exc_type, KeyboardInterrupt):
            self.log.warn("Received interrupt signal, cleaning up...")
            self.exit_code = ExitCode.INTERRUPTED
            self.advance(Stage.INTERRUPTED)
            return True
        if issubclass(exc_type, SetupError):
            self.exit_code = ExitCode.FAILURE
            self.advance(Stage.FAILED)
            return True
        if issubclass(exc_type, Exception):
            self.log.error(f"Unexpected error: {exc}")
            if self.log.debug_enabled:
                error_console.print(
                    Traceback.from_exception(exc_type, exc, tb, show_locals=True)
                )
            self.exit_code = ExitCode.FAILURE
            self.advance(Stage.FAILED)
            return True
        if issubclass(exc_type, SystemExit):
            self.exit_code = ExitCode.SUCCESS if not exc.code else ExitCode.FAILURE
        return False

    def finalize(self) -> None:
        if self.exit_code == ExitCode.SUCCESS:
            self.log.success("Script completed successfully")
        else:
            self.log.error(f"Script failed with exit code: {int(self.exit_code)}")


def run_setup(
    log: SetupLogger,
    pm: PackageManager,
    packages: Optional[Sequence[str]] = None,
    token: Optional[CancelToken] = None,
) -> ExitCode:
    """
    Run check, update, install, verify and report in sequence.

    Args:
        log: Logger handed to every step
        pm: Package manager the steps act through
        packages: Packages to install, defaults to AppConfig.PACKAGES
        token: Cancellation token set by the signal handlers

    Returns:
        The process exit code
    """
    packages = list(AppConfig.PACKAGES if packages is None else packages)
    token = token or CancelToken()

    with SetupRun(log, token) as run:
        log.info("Starting nmap installation script...")
        token.raise_if_cancelled()

        check_root(log)
        check_system(log)
        run.advance(Stage.CHECKED)
        token.raise_if_cancelled()

        if not update_system(log, pm, token):
            raise StepFailed("system update failed")
        run.advance(Stage.UPDATED)
        token.raise_if_cancelled()

        if not install_packages(log, pm, packages, token):
            raise StepFailed("package installation failed")
        run.advance(Stage.INSTALLED)
        token.raise_if_cancelled()

        versions = verify_installation(log, packages, token)
        if versions is None:
            raise StepFailed("verification failed")
        run.advance(Stage.VERIFIED)
        token.raise_if_cancelled()

        if versions:
            print_summary(versions)
        log.success("All tasks completed successfully!")
        for pkg in packages:
            log.info(f"You can now use {pkg}. Try: {pkg} --help")
        run.advance(Stage.DONE)

    return run.exit_code


# ----------------------------------------------------------------
# Main CLI Entry Point with Click
# ----------------------------------------------------------------
@click.command()
def main() -> None:
    """
    Nmap Setup - update a Debian/Ubuntu host and install nmap.

    Must be run as root. Set DEBUG=true to trace every command to stderr.
    """
    debug = os.environ.get("DEBUG", "") == "true"
    if debug:
        install_rich_traceback(show_locals=True)

    token = CancelToken()
    try:
        log = setup_logging(default_log_path(), debug=debug)
        previous = install_signal_handlers(token, log)
    except KeyboardInterrupt:
        # click would turn this into "Aborted!" with exit status 1.
        sys.exit(int(ExitCode.INTERRUPTED))
    try:
        print_header()
        exit_code = run_setup(log, AptPackageManager(log), AppConfig.PACKAGES, token)
        if token.cancelled and exit_code != ExitCode.INTERRUPTED:
            exit_code = ExitCode.INTERRUPTED
            log.error(f"Script failed with exit code: {int(exit_code)}")
    finally:
        restore_signal_handlers(previous)
    sys.exit(int(exit_code))


if __name__ == "__main__":
    main()
