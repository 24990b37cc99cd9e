from __future__ import annotations

import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from .diagnostics import ToolchainError, fail


INSTALL_ROOTS = (
    "/usr/lib/jvm",
    "/usr/java",
    "/opt/java",
    "/Library/Java/JavaVirtualMachines",
    "~/Library/Java/JavaVirtualMachines",
    "~/.sdkman/candidates/java",
    "~/.gradle/jdks",
    "~/.jdks",
    "~/.asdf/installs/java",
)

_RELEASE_VERSION = re.compile(r'^JAVA_VERSION="?([^"\s]+)"?', re.MULTILINE)


@dataclass(frozen=True)
class JavaToolchain:
    home: Path
    executable: Path
    version: str

    @property
    def major(self) -> int:
        return parse_major(self.version)

    def to_dict(self) -> Dict[str, str]:
        return {
            "home": str(self.home),
            "executable": str(self.executable),
            "version": self.version,
        }


def parse_major(version: str) -> int:
    """Return the language version of a JDK version string ("1.8.0_392" is 8)."""
    parts = re.split(r"[._+\-]", version.strip())
    if not parts or not parts[0].isdigit():
        raise ValueError(f"Unrecognized Java version: {version!r}")
    if parts[0] == "1" and len(parts) > 1 and parts[1].isdigit():
        return int(parts[1])
    return int(parts[0])


def read_release_version(home: Path) -> Optional[str]:
    release = home / "release"
    if not release.is_file():
        return None
    try:
        content = release.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    match = _RELEASE_VERSION.search(content)
    return match.group(1) if match else None


def launcher_path(home: Path) -> Path:
    name = "java.exe" if sys.platform.startswith("win") else "java"
    return home / "bin" / name


def inspect_home(home: Path) -> Optional[JavaToolchain]:
    # macOS bundles keep the JDK under Contents/Home
    if (home / "Contents" / "Home").is_dir():
        home = home / "Contents" / "Home"
    version = read_release_version(home)
    if version is None:
        return None
    executable = launcher_path(home)
    if not (executable.is_file() and os.access(executable, os.X_OK)):
        return None
    return JavaToolchain(home=home.absolute(), executable=executable.absolute(), version=version)


def candidate_homes(
    version: int,
    *,
    java_home: Optional[str] = None,
    search_paths: Sequence[str] = (),
    environ: Optional[Mapping[str, str]] = None,
    install_roots: Optional[Iterable[str]] = None,
) -> Iterator[Path]:
    env = os.environ if environ is None else environ
    seen: set = set()

    def _once(path: Path) -> Iterator[Path]:
        key = str(path)
        if key not in seen:
            seen.add(key)
            yield path

    if java_home:
        yield from _once(Path(java_home).expanduser())
    for var in (
        f"JAVA{version}_HOME",
        f"JAVA_HOME_{version}_X64",
        f"JAVA_HOME_{version}_ARM64",
        "JAVA_HOME",
    ):
        value = env.get(var)
        if value:
            yield from _once(Path(value).expanduser())
    roots: List[str] = list(search_paths)
    roots.extend(INSTALL_ROOTS if install_roots is None else install_roots)
    for root in roots:
        root_path = Path(root).expanduser()
        if not root_path.is_dir():
            continue
        if (root_path / "release").is_file():
            yield from _once(root_path)
            continue
        for child in sorted(root_path.iterdir(), reverse=True):
            if child.is_dir():
                yield from _once(child)


def resolve_toolchain(
    version: int,
    *,
    java_home: Optional[str] = None,
    search_paths: Sequence[str] = (),
    environ: Optional[Mapping[str, str]] = None,
    install_roots: Optional[Iterable[str]] = None,
) -> JavaToolchain:
    """Find a JDK whose language version equals `version`.

    Candidates are an explicit home, the JAVA*_HOME variables, then the
    configured search paths and the usual installation roots. The first
    match wins; the ambient `java` on PATH is never used.
    """
    inspected: List[str] = []
    for home in candidate_homes(
        version,
        java_home=java_home,
        search_paths=search_paths,
        environ=environ,
        install_roots=install_roots,
    ):
        toolchain = inspect_home(home)
        if toolchain is None:
            continue
        try:
            major = toolchain.major
        except ValueError:
            continue
        inspected.append(f"{toolchain.home} ({toolchain.version})")
        if major == version:
            return toolchain
    raise fail(
        "E-TOOLCHAIN-NOT-FOUND",
        f"No Java {version} toolchain found",
        location="toolchain.version",
        hints=[
            "Set toolchain.java_home, JAVA_HOME, or JAVA%d_HOME" % version,
            *(f"inspected: {entry}" for entry in inspected),
        ],
        error_cls=ToolchainError,
    )
