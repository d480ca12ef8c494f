"""Function-local numbering of temporaries and block labels.
"""

from .ir import BasicBlock, Parameter, Value
from .types import Type


class NameAllocator:
    """Hands out %N names. Values and labels share one counter, so every name in a function is
    unique and names increase in the order lowering asks for them. A number is never handed out
    twice, even if the block or value it named is later discarded.

    :param start: the first number to hand out.
    """
    def __init__(self, start: int = 0):
        self.counter = start

    def _next(self) -> int:
        number = self.counter
        self.counter += 1
        return number

    def next_value(self) -> int:
        return self._next()

    def next_label(self) -> int:
        return self._next()

    def value(self, type: Type) -> Value:
        return Value(self.next_value(), type)

    def parameter(self, type: Type, name: str) -> Parameter:
        return Parameter(self.next_value(), type, name)

    def block(self) -> BasicBlock:
        return BasicBlock(self.next_label())
