"""A reference interpreter for lowered modules, used to check that lowering preserves meaning.
"""

import logging
from typing import Callable, Dict, List, Optional

from .ir import (AllocateSlot, BinaryArithmetic, Branch, Call, Compare, Constant, ElementAddress, Function, Load,
                 Module, Operand, Return, Store, Value)
from .types import I32, ArrayType, IntType, PointerType, Type, wrap

logger = logging.getLogger(__name__)

# Give up on programs that run longer than this many instructions.
MAX_STEPS = 1_000_000


class InterpreterError(Exception):
    pass


def cells(t: Type) -> int:
    """Number of scalar storage cells a value of type t occupies."""
    if isinstance(t, ArrayType):
        return t.length * cells(t.element)
    return 1


class Pointer:
    """The address of a cell in a block of storage.

    :param storage: the cells of the whole allocation.
    :param offset: the index of the first cell this pointer addresses.
    :param type: the type of what this pointer points to.
    """
    def __init__(self, storage: list, offset: int, type: Type):
        self.storage = storage
        self.offset = offset
        self.type = type

    def element(self, index: int) -> 'Pointer':
        assert isinstance(self.type, ArrayType)
        if index < 0 or index >= self.type.length:
            raise InterpreterError(f"Index {index} is out of bounds for {self.type}.")
        return Pointer(self.storage, self.offset + index * cells(self.type.element), self.type.element)

    def load(self):
        return self.storage[self.offset]

    def store(self, value):
        self.storage[self.offset] = value

    def __repr__(self):
        return f"Pointer({self.type}* +{self.offset})"


class Interpreter:
    """Executes functions of a lowered module.

    :param module: the module to run.
    :param externals: Python implementations of functions the module declares but does not define.
    """
    def __init__(self, module: Module, externals: Optional[Dict[str, Callable]] = None):
        self.module = module
        self.externals = externals if externals is not None else {}
        self.steps = 0

    def allocate_array(self, values: List[int], element_type: Type = I32) -> Pointer:
        """Allocate an array holding values and return a pointer to it, suitable for passing to a function
        that takes an array parameter.
        """
        return Pointer(list(values), 0, ArrayType(len(values), element_type))

    def read_array(self, pointer: Pointer) -> list:
        return pointer.storage[pointer.offset:pointer.offset + cells(pointer.type)]

    def call(self, name: str, *arguments):
        function = self.module.function(name)
        if function is None:
            if name in self.externals:
                return self.externals[name](*arguments)
            raise InterpreterError(f"No definition of {name}.")
        if len(arguments) != len(function.parameters):
            raise InterpreterError(f"{name} takes {len(function.parameters)} argument(s) but {len(arguments)} were given.")
        return self.run(function, list(arguments))

    def run(self, function: Function, arguments: list):
        env: Dict[Value, object] = {}
        for parameter, argument in zip(function.parameters, arguments):
            env[parameter] = argument

        def read(operand: Operand):
            if isinstance(operand, Constant):
                return operand.value
            if operand not in env:
                raise InterpreterError(f"{operand} is read before it is defined in {function.name}.")
            return env[operand]

        basic_block = function.entry_block
        while True:
            for instruction in basic_block:
                self.steps += 1
                if self.steps > MAX_STEPS:
                    raise InterpreterError(f"Gave up after {MAX_STEPS} instructions.")

                if isinstance(instruction, AllocateSlot):
                    slot_type = instruction.slot.type
                    fill = None if isinstance(slot_type, PointerType) else 0
                    env[instruction.result] = Pointer([fill] * cells(slot_type), 0, slot_type)
                elif isinstance(instruction, Load):
                    env[instruction.result] = read(instruction.address).load()
                elif isinstance(instruction, Store):
                    read(instruction.address).store(read(instruction.value))
                elif isinstance(instruction, ElementAddress):
                    env[instruction.result] = read(instruction.base).element(read(instruction.index))
                elif isinstance(instruction, BinaryArithmetic):
                    lhs, rhs = (read(o) for o in instruction.operands)
                    env[instruction.result] = wrap(arithmetic(instruction.op, lhs, rhs), instruction.result.type.bits)
                elif isinstance(instruction, Compare):
                    lhs, rhs = (read(o) for o in instruction.operands)
                    env[instruction.result] = int(compare(instruction.op, lhs, rhs))
                elif isinstance(instruction, Call):
                    result = self.call(instruction.callee, *(read(a) for a in instruction.operands))
                    if instruction.result is not None:
                        if isinstance(instruction.result.type, IntType):
                            result = wrap(result, instruction.result.type.bits)
                        env[instruction.result] = result
                elif isinstance(instruction, Branch):
                    if instruction.condition is None:
                        target = instruction.targets[0]
                    else:
                        target = instruction.targets[0] if read(instruction.condition) else instruction.targets[1]
                    basic_block = function.block(target)
                    if basic_block is None:
                        raise InterpreterError(f"Branch to missing block %{target} in {function.name}.")
                    break
                elif isinstance(instruction, Return):
                    return None if instruction.value is None else read(instruction.value)
                else:
                    raise NotImplementedError(f"Cannot interpret {instruction.op}.")
            else:
                raise InterpreterError(f"Block %{basic_block.label} of {function.name} has no terminator.")


def arithmetic(op: str, lhs: int, rhs: int) -> int:
    if op == "add":
        return lhs + rhs
    elif op == "sub":
        return lhs - rhs
    elif op == "mul":
        return lhs * rhs
    elif op in ("sdiv", "srem"):
        if rhs == 0:
            raise InterpreterError("Division by zero.")
        # Signed division truncates toward zero.
        quotient = abs(lhs) // abs(rhs)
        if (lhs < 0) != (rhs < 0):
            quotient = -quotient
        return quotient if op == "sdiv" else lhs - rhs * quotient
    elif op == "and":
        return lhs & rhs
    elif op == "or":
        return lhs | rhs
    elif op == "xor":
        return lhs ^ rhs
    elif op == "shl":
        return lhs << rhs
    elif op == "ashr":
        return lhs >> rhs
    raise NotImplementedError(f"Unknown arithmetic opcode {op}.")


def compare(op: str, lhs: int, rhs: int) -> bool:
    if op == "eq":
        return lhs == rhs
    elif op == "ne":
        return lhs != rhs
    elif op == "slt":
        return lhs < rhs
    elif op == "sle":
        return lhs <= rhs
    elif op == "sgt":
        return lhs > rhs
    elif op == "sge":
        return lhs >= rhs
    raise NotImplementedError(f"Unknown comparison opcode {op}.")
