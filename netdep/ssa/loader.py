"""Package loading: Go source directories -> ``Program``.

The whole project is parsed once so that calls from a service into shared
packages elsewhere in the module can be followed. ``Loader`` caches that
program per project directory; ``load`` then selects the packages that live
under one service directory.
"""

from __future__ import annotations

import logging
import os
from collections import defaultdict
from pathlib import Path

from netdep.core.errors import LoadError
from netdep.ssa.builder import ProgramBuilder
from netdep.ssa.ir import Package, Program
from netdep.ssa.parsing import GoSource, new_go_parser, parse_go_file, walk_go_files

logger = logging.getLogger(__name__)


def read_module_path(project_dir: Path) -> str:
    """Module path declared in ``go.mod``, or the directory name without one."""
    go_mod = project_dir / "go.mod"
    if go_mod.is_file():
        for line in go_mod.read_text(encoding="utf-8", errors="replace").splitlines():
            parts = line.split()
            if len(parts) >= 2 and parts[0] == "module":
                return parts[1].strip('"')
    return project_dir.resolve().name or "main"


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
        return True
    except ValueError:
        return False


class Loader:
    """Builds and caches the IR of one project."""

    def __init__(self, project_dir: str | Path) -> None:
        self.project_dir = Path(project_dir)
        self.module_path = read_module_path(self.project_dir)
        self._program: Program | None = None
        self._extra_roots: list[Path] = []

    def _package_path(self, directory: Path) -> str:
        if _is_within(directory, self.project_dir):
            relative = directory.resolve().relative_to(self.project_dir.resolve()).as_posix()
        else:
            relative = directory.resolve().as_posix().lstrip("/")
        if relative in ("", "."):
            return self.module_path
        return f"{self.module_path}/{relative}"

    def _collect(self, roots: list[Path]) -> dict[Path, list[GoSource]]:
        parser = new_go_parser()
        by_directory: dict[Path, list[GoSource]] = defaultdict(list)
        seen: set[Path] = set()
        for root in roots:
            for path in walk_go_files(root):
                resolved = path.resolve()
                if resolved in seen:
                    continue
                seen.add(resolved)
                try:
                    source = parse_go_file(parser, path)
                except OSError as e:
                    logger.warning("go_file_unreadable path=%s error=%s", path, e)
                    continue
                by_directory[resolved.parent].append(source)
        return by_directory

    def program(self, service_dir: str | Path | None = None) -> Program:
        """The project's program, also covering ``service_dir`` if it lies outside."""
        if service_dir is not None:
            service_path = Path(service_dir)
            if not _is_within(service_path, self.project_dir) and service_path.resolve() not in (
                r.resolve() for r in self._extra_roots
            ):
                self._extra_roots.append(service_path)
                self._program = None

        if self._program is not None:
            return self._program

        program = Program(root=str(self.project_dir.resolve()), module_path=self.module_path)
        builder = ProgramBuilder(program)
        for directory, files in sorted(self._collect([self.project_dir, *self._extra_roots]).items()):
            # the package clause of the first file names the package
            name = files[0].package_name or directory.name
            foreign = [f.path for f in files if f.package_name and f.package_name != name]
            if foreign:
                logger.warning("skipped_foreign_package_files dir=%s files=%s", directory, foreign)
                files = [f for f in files if not f.package_name or f.package_name == name]
            package = Package(path=self._package_path(directory), name=name, directory=str(directory))
            builder.add_package(package, files)

        self._program = builder.build()
        logger.info("loaded_program root=%s packages=%d", self.project_dir, len(program.packages))
        return self._program

    def load(self, service_dir: str | Path) -> tuple[Program, list[Package]]:
        """Return the program and the clean packages under ``service_dir``.

        Raises:
            LoadError: If every package under the service failed to parse
        """
        program = self.program(service_dir)
        service_root = Path(service_dir).resolve()
        packages = sorted(
            (p for p in program.packages.values() if _is_within(Path(p.directory), service_root)),
            key=lambda p: p.path,
        )

        clean: list[Package] = []
        for package in packages:
            if package.has_errors:
                for error in package.errors:
                    logger.warning("package_has_errors package=%s error=%s", package.path, error)
                continue
            clean.append(package)

        if packages and not clean:
            raise LoadError(str(service_dir), "no usable packages found")
        return program, clean


def load(project_dir: str | Path, service_dir: str | Path) -> tuple[Program, list[Package]]:
    """Load the packages of one service; see ``Loader.load``."""
    return Loader(project_dir).load(service_dir)


def relative_file_name(filename: str, service_name: str, project_root: str, service_dir: str = "") -> str:
    """Display name of a source file, e.g. ``service-1/main.go``.

    Files below ``service_dir`` are named from the service root. Otherwise the
    path below the project root is cut after its first ``/<service>/``
    segment, so a nested directory sharing the service name stays in the
    name. Other files below the project root are shown relative to it.
    """
    normalized = filename.replace("\\", "/")
    marker = f"/{service_name}/"
    service_root = service_dir.replace("\\", "/").rstrip("/")
    if service_root and normalized.startswith(f"{service_root}/"):
        return f"{service_name}/{normalized[len(service_root) + 1 :]}"

    root = project_root.replace("\\", "/").rstrip("/")
    if root and normalized.startswith(f"{root}/"):
        relative = normalized[len(root) :]
        index = relative.find(marker)
        if index != -1:
            return f"{service_name}/{relative[index + len(marker):]}"
        return relative[1:]

    index = normalized.rfind(marker)
    if index != -1:
        return f"{service_name}/{normalized[index + len(marker):]}"
    return os.path.basename(normalized)
