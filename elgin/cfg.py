"""Control-flow graph construction and structural validation of lowered functions.
"""

from queue import Queue
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Set, Tuple, TypeVar

from .errors import (DanglingBlockReference, LoweringError, MissingTerminator, StructuralError, UnknownIdentifier,
                     UnreachableBlock, UnreachableTerminatorConflict, UseBeforeDefinition)
from .ir import BasicBlock, Branch, Call, Function, Parameter, Value

if TYPE_CHECKING:
    from .lower import SignatureTable


def build_cfg(function: Function):
    """Recompute every block's predecessors from the branch targets of the function's terminators.

    Predecessors are listed in the order they first appear in the function, without duplicates. Branches to
    labels that name no block are ignored here; validate() reports them.
    """
    for basic_block in function:
        basic_block.predecessors = []
    for basic_block in function:
        for label in basic_block.successor_labels():
            successor = function.block(label)
            if successor is not None and basic_block not in successor.predecessors:
                successor.predecessors.append(basic_block)


def successors(function: Function, basic_block: BasicBlock) -> List[BasicBlock]:
    return [function.block(label) for label in basic_block.successor_labels() if label in function]


def postorder_traversal(function: Function, basic_block: BasicBlock, ordering: List[BasicBlock], encountered: Set[BasicBlock]) -> List[BasicBlock]:
    # Ensure we don't record the same block twice and don't get stuck in a loop.
    if basic_block in encountered:
        return ordering
    encountered.add(basic_block)

    for successor in reversed(successors(function, basic_block)):
        postorder_traversal(function, successor, ordering, encountered)

    ordering.append(basic_block)
    return ordering # Built in place; returned for the convenience of the original caller.


def reachable_blocks(function: Function) -> Set[BasicBlock]:
    return set(postorder_traversal(function, function.entry_block, [], set()))


#### Generic forward dataflow analysis

T = TypeVar("T") # Lattice element T

def dataflow(function: Function,
             transfer_fn: Callable[[List[T], BasicBlock], List[T]], # The output List[T] MUST NOT alias the input List[T].
             meet: Callable[[T, T], T],
             start: List[T],
             top: T
            ) -> Dict[BasicBlock, List[T]]:
    """Solve a forward dataflow problem over the blocks reachable from the entry block.

    Requires predecessors to be up to date (see build_cfg).

    :returns: the input state of each reachable block.
    """
    assert len(start) == len(function.basic_blocks), "The entry state must have one element for each basic block in the function."
    top_vector = [top] * len(start)

    ordering = postorder_traversal(function, function.entry_block, [], set())
    ordering.reverse() # Reverse postorder converges fastest for forward problems.
    worklist = Queue()
    for item in ordering:
        worklist.put(item)

    in_states: Dict[BasicBlock, List[T]] = {}
    out_states: Dict[BasicBlock, List[T]] = {}
    for basic_block in function:
        if basic_block == function.entry_block:
            out_states[basic_block] = transfer_fn(start, basic_block)
        else:
            out_states[basic_block] = transfer_fn(top_vector, basic_block)

    while not worklist.empty():
        current = worklist.get()

        if current == function.entry_block:
            block_in = start
        else:
            block_in = top_vector
            for predecessor in current.predecessors:
                block_in = [meet(l, r) for l, r in zip(block_in, out_states[predecessor])]

        in_states[current] = block_in
        block_out = transfer_fn(block_in, current)

        if block_out != out_states[current]:
            for successor in successors(function, current):
                worklist.put(successor)

        out_states[current] = block_out

    return in_states


class Dominance:
    # Convention: True -> dominates, False -> does not dominate.
    def __init__(self, function: Function):
        bb2idx = {}
        for i, basic_block in enumerate(function):
            bb2idx[basic_block] = i

        def transfer(in_state: List[bool], bb: BasicBlock) -> List[bool]:
            out_state = in_state.copy()
            out_state[bb2idx[bb]] = True
            return out_state

        def meet(l: bool, r: bool) -> bool:
            return l and r

        self.strict_dominance_info: Dict[BasicBlock, List[bool]] = dataflow(
            function, transfer, meet, [False] * len(function.basic_blocks), True
        )
        self.bb2idx = bb2idx
        self.function = function

    def strictly_dominates(self, x: BasicBlock, y: BasicBlock) -> bool:
        """Returns true if x sdom y.
        Precondition: x and y are blocks of this function that are reachable from its entry block.
        """
        assert x in self.strict_dominance_info, f"Block %{x.label} is not reachable in {self.function.name}."
        assert y in self.strict_dominance_info, f"Block %{y.label} is not reachable in {self.function.name}."
        return self.strict_dominance_info[y][self.bb2idx[x]]

    def dominates(self, x: BasicBlock, y: BasicBlock) -> bool:
        """returns true if x dom y
        """
        if x == y:
            return True
        return self.strictly_dominates(x, y)


#### Validation

def validate(function: Function, signatures: Optional['SignatureTable'] = None) -> List[LoweringError]:
    """Build the CFG of a fully lowered function and check that it is well formed:

    - every block ends in exactly one terminator, and nothing follows it;
    - every branch names a block of the function;
    - every block other than the entry block is reachable from the entry block;
    - every Value is defined once, and each use is dominated by its definition;
    - every call names a function in ``signatures`` (if given).

    :returns: the problems found. An empty list means the function is well formed.
    """
    errors: List[LoweringError] = []

    for basic_block in function:
        terminators = [i for i, instruction in enumerate(basic_block) if instruction.is_terminator]
        if len(terminators) == 0:
            errors.append(MissingTerminator(f"Block %{basic_block.label} of {function.name} does not end in a branch or return."))
        elif len(terminators) > 1 or terminators[0] != len(basic_block) - 1:
            errors.append(UnreachableTerminatorConflict(f"Block %{basic_block.label} of {function.name} has instructions after its terminator."))

        for instruction in basic_block:
            if isinstance(instruction, Branch):
                for target in instruction.targets:
                    if target not in function:
                        errors.append(DanglingBlockReference(f"'{instruction!r}' in block %{basic_block.label} of {function.name} names a block that does not exist."))
            elif isinstance(instruction, Call) and signatures is not None and instruction.callee not in signatures:
                errors.append(UnknownIdentifier(f"{function.name} calls {instruction.callee}, which is not declared."))

    if errors:
        # Reachability and dominance are meaningless until every block has a well-formed terminator.
        return errors

    build_cfg(function)
    reachable = reachable_blocks(function)
    for basic_block in function.basic_blocks[1:]:
        if basic_block not in reachable:
            errors.append(UnreachableBlock(f"Block %{basic_block.label} of {function.name} cannot be reached from the entry block."))

    errors.extend(check_definitions(function, reachable))
    return errors


def check_definitions(function: Function, reachable: Set[BasicBlock]) -> List[StructuralError]:
    errors: List[StructuralError] = []
    definitions: Dict[Value, Tuple[BasicBlock, int]] = {}
    for basic_block in function:
        for position, instruction in enumerate(basic_block):
            if instruction.result is None:
                continue
            if instruction.result in definitions:
                errors.append(UseBeforeDefinition(f"{instruction.result} is defined more than once in {function.name}."))
            definitions[instruction.result] = (basic_block, position)

    dominance = Dominance(function)
    parameters = set(function.parameters)
    for basic_block in function:
        if basic_block not in reachable:
            continue
        for position, instruction in enumerate(basic_block):
            for operand in instruction.operands:
                if not isinstance(operand, Value) or (isinstance(operand, Parameter) and operand in parameters):
                    continue
                if operand not in definitions:
                    errors.append(UseBeforeDefinition(f"'{instruction!r}' in block %{basic_block.label} of {function.name} uses {operand}, which is never defined."))
                    continue
                def_block, def_position = definitions[operand]
                if def_block == basic_block:
                    defined_before = def_position < position
                else:
                    defined_before = def_block in reachable and dominance.dominates(def_block, basic_block)
                if not defined_before:
                    errors.append(UseBeforeDefinition(f"'{instruction!r}' in block %{basic_block.label} of {function.name} uses {operand} before it is defined."))
    return errors
