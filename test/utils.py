"""
"""

import unittest
from typing import List, Optional

from elgin.emit import PREDECESSOR_COLUMN
from elgin.errors import CompilationError
from elgin.ir import BasicBlock, Function, Module
from elgin.lang.c import parse
from elgin.lower import lower_program


def block_header(label: int, predecessors: List[int]) -> str:
    """The emitted header line of a non-entry block."""
    return f"{label}:".ljust(PREDECESSOR_COLUMN) + "; preds = " + ", ".join(f"%{p}" for p in predecessors)


class TestLowering(unittest.TestCase):
    def compile(self, code: str, workers: Optional[int] = None) -> Module:
        return lower_program(parse(bytes(code, "utf8")), workers=workers)

    def lower(self, code: str) -> Function:
        """Lower code and return the last function it defines."""
        return self.compile(code).functions[-1]

    def diagnostics(self, code: str) -> CompilationError:
        with self.assertRaises(CompilationError) as context:
            self.compile(code)
        return context.exception

    def assertContentsEqual(self, basic_block: BasicBlock, comparison: List[str]):
        """Determine if a basic block has the same contents as the specified list of printed instructions.

        Values compare by identity, so separately built instructions never compare equal to lowered ones.
        Comparing printed forms checks opcodes, operand types and numbering all at once.
        """
        actual = [repr(instruction) for instruction in basic_block]
        assert actual == comparison, "\n".join(actual)

    def assertLabels(self, function: Function, labels: List[int]):
        assert [b.label for b in function] == labels, [b.label for b in function]
