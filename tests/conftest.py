"""Shared fixtures: an in-memory package manager and a recording logger."""

import re
from typing import Callable, Dict, List, Optional, Set, Tuple

import pytest

import nmap_setup

ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")
LINE_RE = re.compile(
    r"^\[(INFO|OK|WARN|ERROR|DEBUG)\] \d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} .+$"
)


def strip_ansi(text: str) -> str:
    return ANSI_RE.sub("", text)


class RecordingLogger:
    """Collects (level, message) pairs instead of writing anywhere."""

    def __init__(self) -> None:
        self.lines: List[Tuple[str, str]] = []
        self.debug_enabled = False

    def debug(self, message: str) -> None:
        self.lines.append(("debug", message))

    def info(self, message: str) -> None:
        self.lines.append(("info", message))

    def success(self, message: str) -> None:
        self.lines.append(("success", message))

    def warn(self, message: str) -> None:
        self.lines.append(("warn", message))

    def error(self, message: str) -> None:
        self.lines.append(("error", message))

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [msg for lvl, msg in self.lines if level is None or lvl == level]


class FakePackageManager:
    """
    In-memory package database.

    ``installed`` maps package name to installed state, ``upgradable`` lists
    packages with a pending update and ``broken`` lists packages whose
    install call fails. Every call is journaled in ``calls``.
    """

    def __init__(
        self,
        installed: Optional[Set[str]] = None,
        upgradable: Optional[Set[str]] = None,
        broken: Optional[Set[str]] = None,
        refresh_ok: bool = True,
        upgrade_ok: bool = True,
    ) -> None:
        self.installed = set(installed or ())
        self.upgradable = set(upgradable or ())
        self.broken = set(broken or ())
        self.refresh_ok = refresh_ok
        self.upgrade_ok = upgrade_ok
        self.calls: List[Tuple[str, ...]] = []
        self.hooks: Dict[str, Callable[[], None]] = {}

    def _hook(self, name: str) -> None:
        hook = self.hooks.get(name)
        if hook is not None:
            hook()

    def refresh_index(self) -> bool:
        self.calls.append(("refresh_index",))
        self._hook("refresh_index")
        return self.refresh_ok

    def upgrade_all(self) -> bool:
        self.calls.append(("upgrade_all",))
        self._hook("upgrade_all")
        return self.upgrade_ok

    def is_installed(self, name: str) -> bool:
        self.calls.append(("is_installed", name))
        self._hook("is_installed")
        return name in self.installed

    def has_upgrade(self, name: str) -> bool:
        self.calls.append(("has_upgrade", name))
        self._hook("has_upgrade")
        return name in self.upgradable

    def install(self, name: str) -> bool:
        self.calls.append(("install", name))
        self._hook("install")
        if name in self.broken:
            return False
        self.installed.add(name)
        self.upgradable.discard(name)
        return True

    @property
    def mutations(self) -> List[Tuple[str, ...]]:
        return [
            call
            for call in self.calls
            if call[0] in ("refresh_index", "upgrade_all", "install")
        ]


@pytest.fixture
def log() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def pm() -> FakePackageManager:
    return FakePackageManager()


@pytest.fixture
def as_root(monkeypatch):
    monkeypatch.setattr(nmap_setup.os, "geteuid", lambda: 0)


@pytest.fixture
def host(monkeypatch):
    """
    Fake PATH lookup: ``host.add(name)`` makes ``shutil.which(name)`` resolve.

    apt is present by default; the OS description is fixed.
    """

    class Host:
        def __init__(self) -> None:
            self.commands: Set[str] = {"apt"}

        def add(self, name: str) -> None:
            self.commands.add(name)

        def remove(self, name: str) -> None:
            self.commands.discard(name)

        def which(self, name: str) -> Optional[str]:
            return f"/usr/bin/{name}" if name in self.commands else None

    fake = Host()
    monkeypatch.setattr(nmap_setup.shutil, "which", fake.which)
    monkeypatch.setattr(
        nmap_setup, "detect_os_description", lambda: "Debian GNU/Linux 13 (trixie)"
    )
    return fake
