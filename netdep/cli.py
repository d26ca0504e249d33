"""netdep command line: scan a project and print its service dependencies."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Sequence

from netdep import __version__
from netdep.boundary.output import write_output
from netdep.core.errors import NetDepError
from netdep.pipeline import RunConfig, run

PROG = "netdep"
SHORT_DESCRIPTION = "Scan and report dependencies between microservices"
LONG_DESCRIPTION = (
    "Outputs network-communication-based dependencies of services within a "
    "microservice architecture Go project. Output is an adjacency list of "
    "service dependencies in a JSON format."
)
MANPAGE_NAME = f"{PROG}.1"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROG, description=f"{SHORT_DESCRIPTION}. {LONG_DESCRIPTION}")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-p",
        "--project-directory",
        default="./",
        help="path to the project directory (default: %(default)s)",
    )
    parser.add_argument(
        "-s",
        "--service-directory",
        default="./svc",
        help="path to the directory holding one subdirectory per service (default: %(default)s)",
    )
    parser.add_argument(
        "-e",
        "--environment-variables",
        default=None,
        help="file of SERVICE.VAR=VALUE lines, or a YAML mapping of service to variables",
    )
    parser.add_argument(
        "-c",
        "--servicecalls-directory",
        default=None,
        help="path to the servicecalls package declaring each service's interfaces in <service>-service.go files",
    )
    parser.add_argument(
        "-o",
        "--output-filename",
        default=None,
        help="write the JSON to this file instead of stdout",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="log unresolved calls, discovered annotations and unused services",
    )
    parser.add_argument(
        "--shallow",
        action="store_true",
        help="skip loading and walking the Go packages of each service",
    )

    subparsers = parser.add_subparsers(dest="command")
    manpage_parser = subparsers.add_parser("manpage", help="Generate a manpage entry for netdep")
    manpage_parser.add_argument(
        "-d",
        "--directory",
        default=".",
        help=f"directory to write {MANPAGE_NAME} to (default: %(default)s)",
    )
    return parser


def render_manpage(parser: argparse.ArgumentParser) -> str:
    """Roff source of the netdep(1) page, built from the parser's options."""
    lines = [
        f'.TH "{PROG.upper()}" "1" "{date.today():%b %Y}" "{PROG} {__version__}" "User Commands"',
        ".SH NAME",
        f"{PROG} \\- {SHORT_DESCRIPTION}",
        ".SH SYNOPSIS",
        f"\\fB{PROG}\\fP [OPTIONS]",
        ".br",
        f"\\fB{PROG} manpage\\fP [\\-d DIRECTORY]",
        ".SH DESCRIPTION",
        LONG_DESCRIPTION,
        ".SH OPTIONS",
    ]
    for action in parser._actions:
        if not action.option_strings or action.help in (None, argparse.SUPPRESS):
            continue
        flags = ", ".join(f"\\fB{_roff_escape(flag)}\\fP" for flag in action.option_strings)
        if action.nargs != 0:
            flags += f" \\fI{action.dest.upper()}\\fP"
        lines.extend([".TP", flags, action.help % {"default": action.default, "prog": PROG}])
    lines.extend(
        [
            ".SH EXIT STATUS",
            "0 on success, 1 on invalid paths, missing services or unusable packages.",
        ]
    )
    return "\n".join(lines) + "\n"


def _roff_escape(text: str) -> str:
    return text.replace("-", "\\-")


def write_manpage(parser: argparse.ArgumentParser, directory: str | Path) -> Path:
    target = Path(directory) / MANPAGE_NAME
    target.write_text(render_manpage(parser), encoding="utf-8")
    return target


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        if args.command == "manpage":
            target = write_manpage(parser, args.directory)
            print(f"successfully generated manpage entry: {target}")
            return 0

        config = RunConfig(
            project_dir=args.project_directory,
            service_dir=args.service_directory,
            env_file=args.environment_variables,
            output_filename=args.output_filename,
            servicecalls_dir=args.servicecalls_directory,
            verbose=args.verbose,
            shallow=args.shallow,
        )
        output = run(config)
        if config.output_filename:
            write_output(output, config.output_filename)
            print(f"Successfully analysed, the dependencies have been output to {config.output_filename}")
        else:
            print("Successfully analysed, here is the list of dependencies:")
            print(output)
    except (NetDepError, OSError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
