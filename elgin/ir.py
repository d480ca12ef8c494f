"""The block-structured intermediate representation produced by lowering.
"""

from abc import ABC
from typing import Dict, Iterator, List, Optional, Union

from .errors import UnreachableTerminatorConflict
from .syntax import Node
from .types import I1, ArrayType, PointerType, Type, type_repr

#
# Values
#
class Constant:
    """An integer literal. Constants are never produced by an instruction."""
    def __init__(self, value: int, type: Type):
        self.value = value
        self.type = type

    def __repr__(self):
        return str(self.value)

    def __eq__(self, other):
        return isinstance(other, Constant) and self.value == other.value and self.type == other.type

    def __hash__(self):
        return hash((self.value, self.type))

class Value:
    """The single-assignment result of an instruction, named %number."""
    def __init__(self, number: int, type: Type):
        self.number = number
        self.type = type

    def __repr__(self):
        return f"%{self.number}"

    def __eq__(self, other):
        return id(self) == id(other)

    def __hash__(self):
        return id(self)

class Parameter(Value):
    """An incoming function argument. Defined on entry to the function."""
    def __init__(self, number: int, type: Type, name: str):
        super().__init__(number, type)
        self.name = name

Operand = Union[Constant, Value]

def typed(operand: Operand) -> str:
    return f"{operand.type} {operand!r}"

#
# Slots
#
class Slot:
    """Named, mutable, addressable storage for one source-level variable.

    :param id: index of this slot in its function's slot arena.
    :param name: the source-level name.
    :param type: the declared type of the variable (not the type of its address).
    """
    def __init__(self, id: int, name: str, type: Type):
        self.id = id
        self.name = name
        self.type = type
        self.address: Optional[Value] = None # set when the slot's alloca is emitted.

    def __repr__(self):
        return f"Slot({self.id}, {self.name}: {self.type})"

    def __eq__(self, other):
        return id(self) == id(other)

    def __hash__(self):
        return id(self)

#
# Instructions
#
ALLOCA_OP = "alloca"
LOAD_OP = "load"
STORE_OP = "store"
ELEMENT_ADDRESS_OP = "getelementptr"
CALL_OP = "call"
BRANCH_OP = "br"
RETURN_OP = "ret"

# Source operator -> instruction opcode.
ARITHMETIC_OPS = {
    "+": "add",
    "-": "sub",
    "*": "mul",
    "/": "sdiv",
    "%": "srem",
    "&": "and",
    "|": "or",
    "^": "xor",
    "<<": "shl",
    ">>": "ashr",
}
COMPARE_OPS = {
    "==": "eq",
    "!=": "ne",
    "<": "slt",
    "<=": "sle",
    ">": "sgt",
    ">=": "sge",
}

class Instruction(ABC):
    """A single unit of computation in a basic block.

    :param op: the opcode.
    :param result: the Value this instruction defines, or None if it defines nothing.
    :param operands: the Values and Constants this instruction reads.
    :param node: the syntax node this instruction was lowered from, if any.
    """
    is_terminator = False

    def __init__(self, op: str, result: Optional[Value], operands: List[Operand], node: Optional[Node] = None):
        self.op = op
        self.result = result
        self.operands = operands
        self.node = node

    def __repr__(self):
        body = f"{self.op} " + ", ".join(typed(o) for o in self.operands)
        if self.result is None:
            return body
        return f"{self.result} = {body}"

class AllocateSlot(Instruction):
    def __init__(self, result: Value, slot: Slot, node: Optional[Node] = None):
        super().__init__(ALLOCA_OP, result, [], node)
        self.slot = slot

    def __repr__(self):
        return f"{self.result} = {self.op} {self.slot.type}"

class Load(Instruction):
    def __init__(self, result: Value, address: Value, node: Optional[Node] = None):
        super().__init__(LOAD_OP, result, [address], node)

    @property
    def address(self) -> Value:
        return self.operands[0]

    def __repr__(self):
        return f"{self.result} = {self.op} {self.result.type}, {typed(self.address)}"

class Store(Instruction):
    def __init__(self, value: Operand, address: Value, node: Optional[Node] = None):
        super().__init__(STORE_OP, None, [value, address], node)

    @property
    def value(self) -> Operand:
        return self.operands[0]

    @property
    def address(self) -> Value:
        return self.operands[1]

class ElementAddress(Instruction):
    """Address of element ``index`` of the array that ``base`` points to."""
    def __init__(self, result: Value, base: Value, index: Operand, node: Optional[Node] = None):
        assert isinstance(base.type, PointerType) and isinstance(base.type.pointee, ArrayType)
        super().__init__(ELEMENT_ADDRESS_OP, result, [base, index], node)

    @property
    def base(self) -> Value:
        return self.operands[0]

    @property
    def index(self) -> Operand:
        return self.operands[1]

    def __repr__(self):
        array_type = self.base.type.pointee
        return f"{self.result} = {self.op} {array_type}, {typed(self.base)}, {self.index.type} 0, {typed(self.index)}"

class BinaryArithmetic(Instruction):
    def __init__(self, op: str, result: Value, lhs: Operand, rhs: Operand, node: Optional[Node] = None):
        assert op in ARITHMETIC_OPS.values(), f"{op} is not an arithmetic opcode."
        super().__init__(op, result, [lhs, rhs], node)

    def __repr__(self):
        lhs, rhs = self.operands
        return f"{self.result} = {self.op} {lhs.type} {lhs!r}, {rhs!r}"

class Compare(Instruction):
    def __init__(self, op: str, result: Value, lhs: Operand, rhs: Operand, node: Optional[Node] = None):
        assert op in COMPARE_OPS.values(), f"{op} is not a comparison opcode."
        assert result.type == I1
        super().__init__(op, result, [lhs, rhs], node)

    def __repr__(self):
        lhs, rhs = self.operands
        return f"{self.result} = icmp {self.op} {lhs.type} {lhs!r}, {rhs!r}"

class Call(Instruction):
    """A call to a function named in the signature table.

    :param result: None when the callee returns nothing.
    """
    def __init__(self, callee: str, result: Optional[Value], arguments: List[Operand], return_type: Optional[Type], node: Optional[Node] = None):
        super().__init__(CALL_OP, result, arguments, node)
        self.callee = callee
        self.return_type = return_type

    def __repr__(self):
        call = f"{self.op} {type_repr(self.return_type)} @{self.callee}(" + ", ".join(typed(a) for a in self.operands) + ")"
        if self.result is None:
            return call
        return f"{self.result} = {call}"

class Branch(Instruction):
    """Unconditional (one target) or conditional (condition plus two targets) transfer of control.

    Targets are block labels rather than block objects, so a branch can name a block that does not exist.
    The validator reports such branches.
    """
    is_terminator = True

    def __init__(self, targets: List[int], condition: Optional[Operand] = None, node: Optional[Node] = None):
        if condition is None:
            assert len(targets) == 1, "An unconditional branch has exactly one target."
        else:
            assert len(targets) == 2, "A conditional branch has exactly two targets."
        super().__init__(BRANCH_OP, None, [] if condition is None else [condition], node)
        self.targets = targets

    @property
    def condition(self) -> Optional[Operand]:
        return self.operands[0] if self.operands else None

    def __repr__(self):
        labels = ", ".join(f"label %{t}" for t in self.targets)
        if self.condition is None:
            return f"{self.op} {labels}"
        return f"{self.op} {typed(self.condition)}, {labels}"

class Return(Instruction):
    is_terminator = True

    def __init__(self, value: Optional[Operand] = None, node: Optional[Node] = None):
        super().__init__(RETURN_OP, None, [] if value is None else [value], node)

    @property
    def value(self) -> Optional[Operand]:
        return self.operands[0] if self.operands else None

    def __repr__(self):
        if self.value is None:
            return f"{self.op} void"
        return f"{self.op} {typed(self.value)}"

#
# Basic Blocks
#
class BasicBlock:
    def __init__(self, label: int):
        self.label = label
        self.instructions: List[Instruction] = []
        # Derived by elgin.cfg.build_cfg; lowering never writes this.
        self.predecessors: List['BasicBlock'] = []

    @property
    def terminator(self) -> Optional[Instruction]:
        if self.instructions and self.instructions[-1].is_terminator:
            return self.instructions[-1]
        return None

    @property
    def is_terminated(self) -> bool:
        return self.terminator is not None

    def successor_labels(self) -> List[int]:
        """Labels this block's terminator can transfer control to, without duplicates."""
        terminator = self.terminator
        if not isinstance(terminator, Branch):
            return []
        labels = []
        for target in terminator.targets:
            if target not in labels:
                labels.append(target)
        return labels

    def append(self, instruction: Instruction):
        """Add an instruction to the end of this block.

        Nothing may follow a terminator; an attempt to do so is a lowering defect.
        """
        if self.is_terminated:
            raise UnreachableTerminatorConflict(
                f"Block %{self.label} already ends in '{self.terminator!r}'; cannot append '{instruction!r}'.",
                None if instruction.node is None else instruction.node.location)
        self.instructions.append(instruction)

    def __iter__(self) -> Iterator[Instruction]:
        """Iterate over the instructions in the basic block in order.
        """
        for instruction in self.instructions:
            yield instruction

    def __len__(self):
        return len(self.instructions)

    def __repr__(self):
        predecessors = ", ".join([f"%{p.label}" for p in self.predecessors])
        instructions = "\n".join([repr(instruction) for instruction in self])
        return f"{self.label}: (predecessors: {predecessors})\n{instructions}"

    def __eq__(self, other):
        return id(self) == id(other)

    def __hash__(self):
        return id(self)

#
# Functions and modules
#
class Signature:
    def __init__(self, name: str, parameter_types: List[Type], return_type: Optional[Type]):
        self.name = name
        self.parameter_types = parameter_types
        self.return_type = return_type

    def __repr__(self):
        return f"declare {type_repr(self.return_type)} @{self.name}(" + ", ".join(repr(t) for t in self.parameter_types) + ")"

class Function:
    def __init__(self, name: str, parameters: List[Parameter], return_type: Optional[Type], entry_label: int):
        """Initialize an empty Function. Blocks are added in the order lowering starts them;
        the entry block is always the first.
        """
        self.name = name
        self.parameters = parameters
        self.return_type = return_type
        self.entry_label = entry_label
        self.basic_blocks: List[BasicBlock] = []
        self.slots: List[Slot] = []
        self._label2block: Dict[int, BasicBlock] = {}

    @property
    def entry_block(self) -> BasicBlock:
        return self._label2block[self.entry_label]

    @property
    def signature(self) -> Signature:
        return Signature(self.name, [p.type for p in self.parameters], self.return_type)

    def add_block(self, block: BasicBlock):
        assert block.label not in self._label2block, f"Block %{block.label} was already added to {self.name}."
        assert len(self.basic_blocks) > 0 or block.label == self.entry_label, "The entry block must be added first."
        self.basic_blocks.append(block)
        self._label2block[block.label] = block

    def block(self, label: int) -> Optional[BasicBlock]:
        return self._label2block.get(label)

    def __contains__(self, label: int):
        return label in self._label2block

    def __iter__(self) -> Iterator[BasicBlock]:
        """Iterate over the function's basic blocks in insertion order. The first block is the entry block.
        """
        for block in self.basic_blocks:
            yield block

    def __repr__(self) -> str:
        declaration = f"function {self.name}(" + ", ".join([f"{p.type} {p!r}" for p in self.parameters]) + ")\n"
        return declaration + "\n\n".join(repr(b) for b in self.basic_blocks)

class Module:
    def __init__(self, declarations: List[Signature], functions: List[Function]):
        self.declarations = declarations
        self.functions = functions

    def function(self, name: str) -> Optional[Function]:
        for function in self.functions:
            if function.name == name:
                return function
        return None

    def __iter__(self) -> Iterator[Function]:
        for function in self.functions:
            yield function
