"""Render lowered modules as LLVM-like text.
"""

from .ir import BasicBlock, Function, Module
from .types import type_repr

# Column at which block headers list their predecessors.
PREDECESSOR_COLUMN = 50


def emit_module(module: Module) -> str:
    """Render a module: external declarations first, then each function in program order.

    Emitting does not modify the module, so emitting the same module twice gives the same text.
    """
    sections = []
    if module.declarations:
        sections.append("\n".join(repr(signature) for signature in module.declarations))
    for function in module:
        sections.append(emit_function(function))
    return "\n\n".join(sections) + "\n"


def emit_function(function: Function) -> str:
    parameters = ", ".join(f"{p.type} {p!r}" for p in function.parameters)
    lines = [f"define {type_repr(function.return_type)} @{function.name}({parameters}) {{"]
    for i, basic_block in enumerate(function):
        if i > 0:
            lines.append("")
        lines.append(block_header(function, basic_block))
        for instruction in basic_block:
            lines.append(f"  {instruction!r}")
    lines.append("}")
    return "\n".join(lines)


def block_header(function: Function, basic_block: BasicBlock) -> str:
    header = f"{basic_block.label}:"
    if basic_block.label == function.entry_label:
        return header
    predecessors = ", ".join(f"%{p.label}" for p in basic_block.predecessors)
    return header.ljust(PREDECESSOR_COLUMN) + f"; preds = {predecessors}"
