"""Message-bus (NATS) producer/consumer discovery by syntax tree inspection.

No IR is needed: a call ``x.<Method>(..., pkg.<Name>Subject, ...)`` whose
method name contains ``NotifyMsg`` publishes to the subject, one containing
``Subscribe`` consumes it. Calls without a ``...Subject`` selector argument
are dropped.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import tree_sitter

from netdep.config import NATS_PROTOCOL
from netdep.ssa.loader import relative_file_name
from netdep.ssa.parsing import GoSource, iter_all, named_children, new_go_parser, parse_go_file, walk_go_files

logger = logging.getLogger(__name__)

PRODUCER_MARKER = "NotifyMsg"
CONSUMER_MARKER = "Subscribe"
SUBJECT_MARKER = "Subject"


@dataclass
class NatsCall:
    """One producer or consumer call site."""

    communication: str
    method_name: str
    subject: str
    service_name: str
    file_name: str
    line: int

    @property
    def location(self) -> str:
        return f"{self.file_name}:{self.line}"


def find_subject(source: GoSource, args_node: tree_sitter.Node | None) -> str:
    """Field name of the first ``pkg.<Name>Subject`` selector argument, or ''."""
    for arg in named_children(args_node):
        if arg.type != "selector_expression":
            continue
        name = source.text(arg.child_by_field_name("field"))
        if SUBJECT_MARKER in name:
            return name
    return ""


def scan_file(
    source: GoSource, service_name: str, service_dir: str = ""
) -> tuple[list[NatsCall], list[NatsCall]]:
    """Return (consumers, producers) found in one parsed file."""
    consumers: list[NatsCall] = []
    producers: list[NatsCall] = []
    file_name = relative_file_name(source.path, service_name, "", service_dir)

    for call in iter_all(source.root, "call_expression"):
        function = call.child_by_field_name("function")
        if function is None or function.type != "selector_expression":
            continue
        field_node = function.child_by_field_name("field")
        method = source.text(field_node)

        if PRODUCER_MARKER in method:
            bucket = producers
        elif CONSUMER_MARKER in method:
            bucket = consumers
        else:
            continue

        subject = find_subject(source, call.child_by_field_name("arguments"))
        if not subject:
            continue
        bucket.append(
            NatsCall(
                communication=NATS_PROTOCOL,
                method_name=method,
                subject=subject,
                service_name=service_name,
                file_name=file_name,
                line=source.line(field_node),
            )
        )
    return consumers, producers


def scan_service(service_dir: str | Path, service_name: str) -> tuple[list[NatsCall], list[NatsCall]]:
    """Return (consumers, producers) of one service directory."""
    consumers: list[NatsCall] = []
    producers: list[NatsCall] = []
    parser = new_go_parser()
    root = os.path.abspath(service_dir)
    for path in walk_go_files(Path(service_dir)):
        try:
            source = parse_go_file(parser, path)
        except OSError as e:
            logger.warning("nats_scan_failed path=%s error=%s", path, e)
            continue
        if source.has_error:
            logger.warning("nats_scan_skipped_unparsable path=%s", path)
            continue
        file_consumers, file_producers = scan_file(source, service_name, root)
        consumers.extend(file_consumers)
        producers.extend(file_producers)
    return consumers, producers


def find_nats_calls(service_paths: list[Path]) -> tuple[list[NatsCall], list[NatsCall]]:
    """Return (consumers, producers) across all services, named by directory."""
    consumers: list[NatsCall] = []
    producers: list[NatsCall] = []
    for service_path in service_paths:
        service_consumers, service_producers = scan_service(service_path, service_path.name)
        consumers.extend(service_consumers)
        producers.extend(service_producers)
    return consumers, producers
