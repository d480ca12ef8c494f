"""Lower syntax trees into block-structured IR.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from . import syntax
from .allocator import NameAllocator
from .cfg import validate
from .errors import (ArityMismatch, CompilationError, Diagnostic, DuplicateDeclaration, LoopControlError,
                     LoweringError, TypeMismatch, UnknownIdentifier)
from .ir import (ARITHMETIC_OPS, COMPARE_OPS, AllocateSlot, BasicBlock, BinaryArithmetic, Branch, Call, Compare,
                 Constant, ElementAddress, Function, Load, Module, Operand, Return, Signature, Slot, Store, Value)
from .scope import SymbolTable
from .types import DEFAULT_INT_TYPE, I1, ArrayType, IntType, PointerType, Type, decay, wrap

logger = logging.getLogger(__name__)


class SignatureTable:
    """Signatures of every top-level function, collected before any body is lowered so that calls can refer
    to functions defined later in the program (including mutually recursive ones).

    The table is frozen before lowering starts and is then shared, read-only, by every function being lowered.
    """
    def __init__(self):
        self._signatures: Mapping[str, Signature] = {}
        self.frozen = False

    def declare(self, signature: Signature, location: Optional[syntax.Location] = None):
        assert not self.frozen, "The signature table cannot change once lowering has started."
        if signature.name in self._signatures:
            earlier = self._signatures[signature.name]
            if earlier.parameter_types != signature.parameter_types or earlier.return_type != signature.return_type:
                raise DuplicateDeclaration(f"'{signature!r}' conflicts with the earlier '{earlier!r}'.", location)
            raise DuplicateDeclaration(f"Function {signature.name} was already declared.", location)
        self._signatures[signature.name] = signature

    def freeze(self) -> 'SignatureTable':
        self._signatures = MappingProxyType(dict(self._signatures))
        self.frozen = True
        return self

    def lookup(self, name: str, location: Optional[syntax.Location] = None) -> Signature:
        if name not in self._signatures:
            raise UnknownIdentifier(f"Function {name} is not declared.", location)
        return self._signatures[name]

    def __contains__(self, name: str):
        return name in self._signatures

    def __iter__(self) -> Iterator[Signature]:
        for signature in self._signatures.values():
            yield signature

    def __len__(self):
        return len(self._signatures)


def constant(value: int, type: IntType) -> Constant:
    """A literal of the given type. Values that do not fit wrap around, as they do when stored."""
    return Constant(wrap(value, type.bits), type)


def signature_of(declaration: syntax.FunctionDecl) -> Signature:
    return Signature(declaration.name, [decay(p.type) for p in declaration.params], declaration.return_type)


def build_signature_table(program: syntax.Program) -> Tuple[SignatureTable, List[Diagnostic]]:
    """First pass: collect the signature of every top-level declaration and definition, then freeze the table.

    :returns: the frozen table and a DuplicateDeclaration diagnostic for each name declared more than once.
    """
    table = SignatureTable()
    diagnostics = []
    for declaration in program.functions:
        try:
            table.declare(signature_of(declaration), declaration.location)
        except DuplicateDeclaration as error:
            diagnostics.append(Diagnostic(declaration.name, error))
    return table.freeze(), diagnostics


# Lowering walks the syntax tree recursively while keeping a cursor, self.block, which is the block that new
# (non-terminator) instructions are appended to. Control-flow statements end the current block with a branch,
# start new blocks, and move the cursor into them:
#
#   if:     [current] -br-> then ... -br-> merge        while:  [current] -br-> header -br-> body ... -br-> header
#                     \-br-> else ... -br-/                                          \-br-> exit
#
# An arm that already ended in a return (or break/continue) gets no branch to the merge block, and a merge
# block that no edge reaches is never started. Once the cursor's block has a terminator, the rest of the
# statements in that list cannot execute and are dropped. The enclosing loops' header and exit labels are kept
# on a stack so that break and continue know where to go.
#
# Block labels and temporaries are numbered by one NameAllocator in the order lowering requests them.
# Blocks are allocated (numbered) when a statement needs them, but only added to the function when the cursor
# first moves into them, so the function's block order is the order in which lowering started each block.

class FunctionLowering:
    """Lowers the body of one function definition.

    :param declaration: the function definition.
    :param signatures: the frozen signature table of the whole program.
    """
    def __init__(self, declaration: syntax.FunctionDecl, signatures: SignatureTable):
        assert declaration.is_definition, f"{declaration.name} has no body to lower."
        self.declaration = declaration
        self.signatures = signatures
        self.allocator = NameAllocator()
        self.diagnostics: List[LoweringError] = []
        self.loop_targets: List[Tuple[int, int]] = [] # (header label, exit label) of each enclosing loop.

        parameters = [self.allocator.parameter(decay(p.type), p.name) for p in declaration.params]
        entry = self.allocator.block()
        self.function = Function(declaration.name, parameters, declaration.return_type, entry.label)
        self.symbols = SymbolTable(self.function.slots)
        self.block: BasicBlock = entry
        self.function.add_block(entry)

    def lower(self) -> Function:
        # Parameters are copied into slots so that they can be assigned to like any other variable.
        # Parameters and the outermost statements of the body share one scope.
        for parameter, param in zip(self.function.parameters, self.declaration.params):
            try:
                slot = self.declare(param.name, parameter.type, param)
            except LoweringError as error:
                self.report(error)
                continue
            self.emit(Store(parameter, slot.address, param))

        self.lower_statements(self.declaration.body)

        # Falling off the end of a function that returns nothing is an implicit return. For other functions the
        # block is left unterminated and the validator reports it.
        if not self.block.is_terminated and self.function.return_type is None:
            self.emit(Return(None, self.declaration))
        return self.function

    #
    # Bookkeeping
    #
    def report(self, error: LoweringError):
        logger.debug("%s: %s: %s", self.function.name, error.kind, error)
        self.diagnostics.append(error)

    def emit(self, instruction) -> Optional[Value]:
        self.block.append(instruction)
        return instruction.result

    def new_value(self, type: Type) -> Value:
        return self.allocator.value(type)

    def position_at(self, block: BasicBlock):
        self.function.add_block(block)
        self.block = block

    def declare(self, name: str, type: Type, node: syntax.Node) -> Slot:
        slot = self.symbols.declare_variable(name, type, node.location)
        slot.address = self.new_value(PointerType(type))
        self.emit(AllocateSlot(slot.address, slot, node))
        return slot

    #
    # Statements
    #
    def lower_statements(self, statements: List[syntax.Statement]):
        for i, statement in enumerate(statements):
            if self.block.is_terminated:
                logger.debug("%s: dropping %d unreachable statement(s) after '%r' in block %%%d",
                             self.function.name, len(statements) - i, self.block.terminator, self.block.label)
                return
            try:
                self.lower_statement(statement)
            except LoweringError as error:
                # The function will not be emitted, but lowering continues so that later statements are checked too.
                self.report(error)

    def lower_statement(self, statement: syntax.Statement):
        if isinstance(statement, syntax.Declaration):
            self.lower_declaration(statement)
        elif isinstance(statement, syntax.Assignment):
            self.lower_assignment(statement)
        elif isinstance(statement, syntax.If):
            self.lower_if(statement)
        elif isinstance(statement, syntax.While):
            self.lower_while(statement)
        elif isinstance(statement, syntax.Return):
            self.lower_return(statement)
        elif isinstance(statement, syntax.Break) or isinstance(statement, syntax.Continue):
            self.lower_loop_control(statement)
        elif isinstance(statement, syntax.Block):
            with self.symbols.scope():
                self.lower_statements(statement.statements)
        elif isinstance(statement, syntax.ExpressionStatement):
            self.lower_expression(statement.expression)
        else:
            raise NotImplementedError(f"No code for lowering statements of type {type(statement).__name__}")

    def lower_declaration(self, declaration: syntax.Declaration):
        slot = self.declare(declaration.name, declaration.type, declaration)
        initializer = declaration.initializer
        if initializer is None:
            return

        if isinstance(initializer, list):
            # int a[3] = {1, 2, 3}; stores each element in turn.
            if not isinstance(slot.type, ArrayType) or not isinstance(slot.type.element, IntType):
                raise TypeMismatch(f"An initializer list cannot initialize {declaration.name} of type {slot.type}.", declaration.location)
            if len(initializer) > slot.type.length:
                raise TypeMismatch(f"Too many initializers for {declaration.name} of type {slot.type}.", declaration.location)
            for i, element in enumerate(initializer):
                value = self.lower_operand(element, slot.type.element)
                address = self.emit(ElementAddress(self.new_value(PointerType(slot.type.element)), slot.address, Constant(i, DEFAULT_INT_TYPE), element))
                self.emit(Store(value, address, element))
            return

        if isinstance(slot.type, ArrayType):
            raise TypeMismatch(f"Array {declaration.name} must be initialized with an initializer list.", declaration.location)
        value = self.lower_operand(initializer, slot.type)
        self.emit(Store(value, slot.address, declaration))

    def lower_assignment(self, assignment: syntax.Assignment):
        target_type = self.static_type(assignment.target)
        if isinstance(target_type, ArrayType):
            raise TypeMismatch(f"Cannot assign to an array of type {target_type}.", assignment.location)
        if assignment.op is not None:
            self.lower_compound_assignment(assignment, target_type)
            return
        value = self.lower_operand(assignment.value, target_type)
        address = self.lower_address(assignment.target)
        self.emit(Store(value, address, assignment))

    def lower_compound_assignment(self, assignment: syntax.Assignment, target_type: Type):
        # a[i] += v computes the element address once, so the index is evaluated once.
        if not isinstance(target_type, IntType):
            raise TypeMismatch(f"Cannot apply '{assignment.op}=' to a value of type {target_type}.", assignment.location)
        address = self.lower_address(assignment.target)
        current = self.emit(Load(self.new_value(target_type), address, assignment.target))
        value = self.lower_operand(assignment.value, target_type)
        result = self.emit(BinaryArithmetic(ARITHMETIC_OPS[assignment.op], self.new_value(target_type), current, value, assignment))
        self.emit(Store(result, address, assignment))

    def lower_if(self, statement: syntax.If):
        then_block = self.allocator.block()
        else_block = self.allocator.block() if statement.else_body is not None else None
        merge_block = self.allocator.block()

        condition = self.lower_condition(statement.condition)
        false_block = else_block if else_block is not None else merge_block
        self.emit(Branch([then_block.label, false_block.label], condition, statement))

        # Without an else arm the false edge goes straight to the merge block.
        merge_reached = else_block is None
        for arm_block, body in ((then_block, statement.then_body), (else_block, statement.else_body)):
            if arm_block is None:
                continue
            self.position_at(arm_block)
            with self.symbols.scope():
                self.lower_statements(body)
            if not self.block.is_terminated:
                self.emit(Branch([merge_block.label], node=statement))
                merge_reached = True

        if merge_reached:
            self.position_at(merge_block)
        # Otherwise both arms always terminate. The cursor stays on a terminated block, so whatever follows
        # the if statement is dropped as unreachable.

    def lower_while(self, statement: syntax.While):
        header = self.allocator.block()
        body = self.allocator.block()
        exit_block = self.allocator.block()

        self.emit(Branch([header.label], node=statement))

        # The condition is evaluated in the header, so it is re-evaluated on every iteration.
        self.position_at(header)
        condition = self.lower_condition(statement.condition)
        self.emit(Branch([body.label, exit_block.label], condition, statement))

        self.position_at(body)
        self.loop_targets.append((header.label, exit_block.label))
        try:
            with self.symbols.scope():
                self.lower_statements(statement.body)
        finally:
            self.loop_targets.pop()
        if not self.block.is_terminated:
            self.emit(Branch([header.label], node=statement))

        self.position_at(exit_block)

    def lower_return(self, statement: syntax.Return):
        return_type = self.function.return_type
        if statement.value is None:
            if return_type is not None:
                raise TypeMismatch(f"{self.function.name} must return a value of type {return_type}.", statement.location)
            self.emit(Return(None, statement))
            return

        if return_type is None:
            raise TypeMismatch(f"{self.function.name} does not return a value.", statement.location)
        value = self.lower_operand(statement.value, return_type)
        self.emit(Return(value, statement))

    def lower_loop_control(self, statement: syntax.Statement):
        keyword = "break" if isinstance(statement, syntax.Break) else "continue"
        if not self.loop_targets:
            raise LoopControlError(f"'{keyword}' outside of a loop.", statement.location)
        header, exit_label = self.loop_targets[-1]
        self.emit(Branch([exit_label if keyword == "break" else header], node=statement))

    #
    # Expressions
    #
    def lower_expression(self, expression: syntax.Expression, expected: Optional[Type] = None) -> Optional[Operand]:
        """Lower an expression and return the Value or Constant holding its result, or None for a call to a
        function that returns nothing.

        :param expected: the type the surrounding context expects. Only used to type integer literals.
        """
        if isinstance(expression, syntax.IntegerLiteral):
            if expression.type is not None:
                literal_type = expression.type
            else:
                literal_type = expected if isinstance(expected, IntType) else DEFAULT_INT_TYPE
            return constant(expression.value, literal_type)
        elif isinstance(expression, syntax.Identifier):
            slot = self.symbols.resolve(expression.name, expression.location)
            if isinstance(slot.type, ArrayType):
                return slot.address # Arrays are used by address.
            return self.emit(Load(self.new_value(slot.type), slot.address, expression))
        elif isinstance(expression, syntax.Index):
            address = self.lower_element_address(expression)
            element_type = address.type.pointee
            if isinstance(element_type, ArrayType):
                return address # a[i] of an array of arrays is itself an array.
            return self.emit(Load(self.new_value(element_type), address, expression))
        elif isinstance(expression, syntax.BinaryOp):
            lhs, rhs = self.lower_operands(expression, expected)
            return self.emit(BinaryArithmetic(ARITHMETIC_OPS[expression.op], self.new_value(lhs.type), lhs, rhs, expression))
        elif isinstance(expression, syntax.Comparison):
            lhs, rhs = self.lower_operands(expression, None)
            return self.emit(Compare(COMPARE_OPS[expression.op], self.new_value(I1), lhs, rhs, expression))
        elif isinstance(expression, syntax.Call):
            return self.lower_call(expression)
        else:
            raise NotImplementedError(f"No code for lowering expressions of type {type(expression).__name__}")

    def lower_value(self, expression: syntax.Expression, expected: Optional[Type] = None) -> Operand:
        value = self.lower_expression(expression, expected)
        if value is None:
            raise TypeMismatch("A call to a function that returns nothing cannot be used as a value.", expression.location)
        return value

    def lower_operand(self, expression: syntax.Expression, expected: Type) -> Operand:
        """Lower an expression whose result must have type ``expected``."""
        value = self.lower_value(expression, expected)
        if value.type != expected:
            raise TypeMismatch(f"Expected a value of type {expected} but found {value.type}.", expression.location)
        return value

    def lower_operands(self, expression, expected: Optional[Type]) -> Tuple[Operand, Operand]:
        """Lower the left operand, then the right operand, of a binary operation or comparison."""
        lhs = self.lower_value(expression.left, expected)
        rhs = self.lower_value(expression.right, lhs.type if isinstance(lhs, Value) else expected)
        # Literals take the type of the operand they are combined with.
        if isinstance(lhs, Constant) and isinstance(rhs, Value) and isinstance(rhs.type, IntType):
            lhs = constant(lhs.value, rhs.type)
        elif isinstance(rhs, Constant) and isinstance(lhs, Value) and isinstance(lhs.type, IntType):
            rhs = constant(rhs.value, lhs.type)
        if not isinstance(lhs.type, IntType) or lhs.type != rhs.type:
            raise TypeMismatch(f"Operands of '{expression.op}' must be integers of the same type, not {lhs.type} and {rhs.type}.", expression.location)
        return lhs, rhs

    def lower_condition(self, expression: syntax.Expression) -> Value:
        """Lower a branch condition to an i1 Value produced by an instruction.

        Integers that are not already i1 comparison results (including literals, as in while (1)) are compared
        against zero, so a branch is never made on a bare constant.
        """
        condition = self.lower_value(expression)
        if not isinstance(condition.type, IntType):
            raise TypeMismatch(f"A condition must be an integer, not {condition.type}.", expression.location)
        if isinstance(condition, Value) and condition.type == I1:
            return condition
        return self.emit(Compare(COMPARE_OPS["!="], self.new_value(I1), condition, Constant(0, condition.type), expression))

    def lower_call(self, call: syntax.Call) -> Optional[Value]:
        signature = self.signatures.lookup(call.callee, call.location)
        if len(call.arguments) != len(signature.parameter_types):
            raise ArityMismatch(f"{call.callee} takes {len(signature.parameter_types)} argument(s) but {len(call.arguments)} were given.", call.location)

        arguments = []
        for i, (argument, parameter_type) in enumerate(zip(call.arguments, signature.parameter_types)):
            value = self.lower_value(argument, parameter_type)
            if value.type != parameter_type:
                raise ArityMismatch(f"Argument {i} of {call.callee} must have type {parameter_type}, not {value.type}.", argument.location)
            arguments.append(value)

        result = None if signature.return_type is None else self.new_value(signature.return_type)
        self.emit(Call(call.callee, result, arguments, signature.return_type, call))
        return result

    #
    # Addresses
    #
    def lower_address(self, target: syntax.Expression) -> Value:
        """The address an assignment to ``target`` stores to."""
        if isinstance(target, syntax.Identifier):
            return self.symbols.resolve(target.name, target.location).address
        elif isinstance(target, syntax.Index):
            return self.lower_element_address(target)
        raise TypeMismatch("Only variables and array elements can be assigned to.", target.location)

    def lower_element_address(self, expression: syntax.Index) -> Value:
        base = self.lower_array_base(expression.array)
        array_type: ArrayType = base.type.pointee
        index = self.lower_value(expression.index, DEFAULT_INT_TYPE)
        if not isinstance(index.type, IntType):
            raise TypeMismatch(f"An array index must be an integer, not {index.type}.", expression.index.location)
        return self.emit(ElementAddress(self.new_value(PointerType(array_type.element)), base, index, expression))

    def lower_array_base(self, expression: syntax.Expression) -> Value:
        """A pointer to the array that ``expression`` names."""
        if isinstance(expression, syntax.Identifier):
            slot = self.symbols.resolve(expression.name, expression.location)
            if isinstance(slot.type, ArrayType):
                return slot.address
            if isinstance(slot.type, PointerType) and isinstance(slot.type.pointee, ArrayType):
                # An array parameter: the slot holds the array's address.
                return self.emit(Load(self.new_value(slot.type), slot.address, expression))
            raise TypeMismatch(f"{expression.name} of type {slot.type} is not an array.", expression.location)
        elif isinstance(expression, syntax.Index):
            address = self.lower_element_address(expression)
            if isinstance(address.type.pointee, ArrayType):
                return address
            raise TypeMismatch(f"An element of type {address.type.pointee} is not an array.", expression.location)
        raise TypeMismatch("Only variables and array elements can be indexed.", expression.location)

    def static_type(self, target: syntax.Expression) -> Type:
        """The type of the storage ``target`` names, determined without emitting any instructions."""
        if isinstance(target, syntax.Identifier):
            return self.symbols.resolve(target.name, target.location).type
        elif isinstance(target, syntax.Index):
            array_type = self.static_type(target.array)
            if isinstance(array_type, PointerType):
                array_type = array_type.pointee
            if not isinstance(array_type, ArrayType):
                raise TypeMismatch(f"A value of type {array_type} is not an array.", target.location)
            return array_type.element
        raise TypeMismatch("Only variables and array elements can be assigned to.", target.location)


class LoweredFunction:
    def __init__(self, function: Function, diagnostics: List[Diagnostic]):
        self.function = function
        self.diagnostics = diagnostics

    @property
    def ok(self) -> bool:
        return len(self.diagnostics) == 0


def lower_function(declaration: syntax.FunctionDecl, signatures: SignatureTable) -> LoweredFunction:
    """Lower one function definition and, if lowering reported nothing, build and validate its CFG.
    """
    lowering = FunctionLowering(declaration, signatures)
    function = lowering.lower()
    diagnostics = [Diagnostic(declaration.name, error) for error in lowering.diagnostics]
    if not diagnostics:
        diagnostics = [Diagnostic(declaration.name, error) for error in validate(function, signatures)]
    logger.debug("Lowered %s: %d block(s), %d diagnostic(s)", declaration.name, len(function.basic_blocks), len(diagnostics))
    return LoweredFunction(function, diagnostics)


def lower_program(program: syntax.Program, workers: Optional[int] = None) -> Module:
    """Lower every function of a program.

    :param program: the program to lower.
    :param workers: if given, lower functions on a thread pool of this many threads. Functions only share the
    frozen signature table, and the result does not depend on the number of workers.
    :returns: the lowered and validated module.
    :raises CompilationError: with the diagnostics of every function, if any function has any.
    """
    signatures, diagnostics = build_signature_table(program)
    # Only the first declaration of a name is lowered; later ones were already reported.
    definitions = []
    seen = set()
    for declaration in program.functions:
        if declaration.is_definition and declaration.name not in seen:
            definitions.append(declaration)
        seen.add(declaration.name)

    if workers is None:
        results = [lower_function(d, signatures) for d in definitions]
    else:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(lambda d: lower_function(d, signatures), definitions))

    for result in results:
        diagnostics.extend(result.diagnostics)
    if diagnostics:
        for diagnostic in diagnostics:
            logger.warning("%r", diagnostic)
        raise CompilationError(diagnostics)

    declarations = [signatures.lookup(d.name) for d in program.functions if not d.is_definition]
    return Module(declarations, [result.function for result in results])
