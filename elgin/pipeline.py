"""Source-to-text entry points.
"""

import logging
from typing import Optional, Union

from .emit import emit_module
from .ir import Module
from .lang.c import parse
from .lower import lower_program

logger = logging.getLogger(__name__)


def compile_c(code: Union[str, bytes], workers: Optional[int] = None) -> Module:
    """Parse and lower C code.

    :raises ParsingError: if tree-sitter could not parse the code.
    :raises CompilationError: if any function could not be lowered.
    """
    if isinstance(code, str):
        code = bytes(code, "utf8")
    program = parse(code)
    logger.debug("Parsed %d function declaration(s)", len(program.functions))
    return lower_program(program, workers=workers)


def translate(code: Union[str, bytes], workers: Optional[int] = None) -> str:
    """Compile C code to LLVM-like text."""
    return emit_module(compile_c(code, workers=workers))
