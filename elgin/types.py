"""Types understood by the lowering engine: fixed-width integers, fixed-size arrays and pointers.
"""

from abc import ABC
from typing import Optional


class Type(ABC):
    def __eq__(self, other):
        return type(self) == type(other) and self.key() == other.key()

    def __hash__(self):
        return hash((type(self).__name__, self.key()))

    def key(self):
        raise NotImplementedError()


class IntType(Type):
    def __init__(self, bits: int):
        assert bits > 0, "Integer types must have a positive width."
        self.bits = bits

    def key(self):
        return self.bits

    def __repr__(self):
        return f"i{self.bits}"


class ArrayType(Type):
    """An array whose length is known at compile time.

    :param length: the number of elements.
    :param element: the type of each element. May itself be an ArrayType.
    """
    def __init__(self, length: int, element: Type):
        assert length >= 0, "Array lengths must be non-negative."
        self.length = length
        self.element = element

    def key(self):
        return (self.length, self.element)

    def __repr__(self):
        return f"[{self.length} x {self.element}]"


class PointerType(Type):
    """The address of a Slot or of an array element."""
    def __init__(self, pointee: Type):
        self.pointee = pointee

    def key(self):
        return self.pointee

    def __repr__(self):
        return f"{self.pointee}*"


I1 = IntType(1)
I8 = IntType(8)
I16 = IntType(16)
I32 = IntType(32)
I64 = IntType(64)

# Integer literals without any other type information are given this type.
DEFAULT_INT_TYPE = I32


def decay(param_type: Type) -> Type:
    """Arrays are passed by reference: an array-typed parameter is really a pointer to that array."""
    if isinstance(param_type, ArrayType):
        return PointerType(param_type)
    return param_type


def type_repr(t: Optional[Type]) -> str:
    """Textual name of a return type, where None means the function returns nothing."""
    return "void" if t is None else repr(t)


def wrap(value: int, bits: int) -> int:
    """Reduce value to a signed integer of the given width. i1 values stay 0 or 1."""
    value &= (1 << bits) - 1
    if bits > 1 and value >> (bits - 1):
        value -= 1 << bits
    return value
