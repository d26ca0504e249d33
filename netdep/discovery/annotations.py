"""``//netdep:`` annotations: scanning, parsing and the unresolved-target fallback.

An annotation sits on the line above a call the resolver cannot follow::

    //netdep:client url=http://orders:8080/orders targetSvc=orders
    resp, err := client.Do(req)

    //netdep:endpoint url=/orders
    mux.HandleFunc(route, handler)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from netdep.core.errors import AnnotationError
from netdep.core.types import CallTarget
from netdep.discovery.registry import AnnotationMap
from netdep.ssa.loader import relative_file_name
from netdep.ssa.parsing import iter_descendants, new_go_parser, parse_go_file, walk_go_files

logger = logging.getLogger(__name__)

ANNOTATION_PREFIX = "//netdep:"
ANNOTATION_KINDS = ("client", "endpoint")


@dataclass
class Annotation:
    """A parsed annotation."""

    kind: str  # "client" or "endpoint"
    url: str = ""
    target_service: str | None = None

    def apply(self, target: CallTarget) -> None:
        """Fill in what resolution could not find; only a URL marks the target resolved."""
        if self.url:
            target.request_location = self.url
            target.is_resolved = True
        if self.kind == "client" and self.target_service:
            target.target_service = self.target_service


def parse_annotation(text: str) -> Annotation:
    """Parse the text after ``netdep:``, e.g. ``client url=http://a:80/x targetSvc=a``.

    Raises:
        AnnotationError: If the kind is unknown or a parameter is not key=value
    """
    parts = text.split()
    if not parts:
        raise AnnotationError(text, "empty annotation")
    kind = parts[0]
    if kind not in ANNOTATION_KINDS:
        raise AnnotationError(text, f"unknown kind {kind!r}, expected one of {ANNOTATION_KINDS}")

    annotation = Annotation(kind=kind)
    for part in parts[1:]:
        key, sep, value = part.partition("=")
        if not sep:
            raise AnnotationError(text, f"expected key=value, got {part!r}")
        if key == "url":
            annotation.url = value
        elif key == "targetSvc" and kind == "client":
            annotation.target_service = value
        else:
            logger.debug("annotation_key_ignored key=%s annotation=%s", key, text)
    return annotation


def load_annotations(
    service_dir: str | Path,
    service_name: str,
    annotations: AnnotationMap | None = None,
) -> AnnotationMap:
    """Collect the annotations of every Go file under a service directory.

    Args:
        service_dir: Directory of the service
        service_name: Key under which the annotations are stored
        annotations: Map to add to; a new one is created if omitted

    Returns:
        annotations[service_name][(file, line)] = text after "netdep:"
    """
    if annotations is None:
        annotations = {}
    found = annotations.setdefault(service_name, {})

    parser = new_go_parser()
    root = os.path.abspath(service_dir)
    for path in walk_go_files(Path(service_dir)):
        try:
            source = parse_go_file(parser, path)
        except OSError as e:
            logger.warning("annotation_scan_failed path=%s error=%s", path, e)
            continue
        file_name = relative_file_name(source.path, service_name, "", root)
        for comment in iter_descendants(source.root, "comment"):
            text = source.text(comment)
            if text.startswith(ANNOTATION_PREFIX):
                found[(file_name, source.line(comment))] = text[len(ANNOTATION_PREFIX) :]

    return annotations


def apply_annotations(targets: list[CallTarget], annotations: AnnotationMap) -> int:
    """Resolve unresolved targets from the annotation on the line above a trace entry.

    Trace entries are tried from the innermost outwards; the first annotation
    found wins. Resolved targets are left untouched.

    Returns:
        Number of targets an annotation was applied to
    """
    applied = 0
    for target in targets:
        if target.is_resolved:
            continue
        service_annotations = annotations.get(target.service_name)
        if not service_annotations:
            continue
        for position in reversed(target.trace):
            text = service_annotations.get((position.file_name.replace("\\", "/"), position.line - 1))
            if text is None:
                continue
            try:
                parse_annotation(text).apply(target)
                applied += 1
            except AnnotationError as e:
                logger.warning("invalid_annotation position=%s error=%s", position, e)
            break
    return applied


def describe_annotations(annotations: AnnotationMap) -> str:
    """Human-readable listing of the discovered annotations, for verbose output."""
    entries = [
        (service, file_name, line, value)
        for service, by_position in annotations.items()
        for (file_name, line), value in by_position.items()
    ]
    if not entries:
        return ""
    lines = ["Discovered annotations:", ""]
    for service, file_name, line, value in sorted(entries):
        lines.append(f"Service name: {service}")
        lines.append(f"Position: {file_name}:{line}")
        lines.append(f"Value: {value}")
        lines.append("")
    return "\n".join(lines)


def annotation_suggestions(targets: list[CallTarget]) -> list[str]:
    """One hint per unresolved target on where to add an annotation."""
    return [
        f"{target.location} couldn't be resolved. Add an annotation above it in the format "
        f'"//netdep:client ..." or "//netdep:endpoint ..."'
        for target in targets
        if not target.is_resolved
    ]
