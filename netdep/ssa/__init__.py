"""Go source loading and the IR the discovery stage walks."""

from netdep.ssa.ir import (
    BasicBlock,
    Call,
    Function,
    Package,
    Program,
)
from netdep.ssa.loader import Loader, load, relative_file_name

__all__ = [
    "BasicBlock",
    "Call",
    "Function",
    "Loader",
    "Package",
    "Program",
    "load",
    "relative_file_name",
]
