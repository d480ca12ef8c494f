"""The abstract syntax tree consumed by the lowering engine.

Front ends (see elgin.lang.c) build these objects; the lowering engine never looks at source text.
Every node carries an optional ``location``, which is opaque to the lowering engine and only
copied into diagnostics.
"""

from abc import ABC
from typing import List, Optional, Union

from .types import Type


class Location:
    def __init__(self, line: int, column: int):
        self.line = line
        self.column = column

    def __eq__(self, other):
        return isinstance(other, Location) and (self.line, self.column) == (other.line, other.column)

    def __hash__(self):
        return hash((self.line, self.column))

    def __repr__(self):
        return f"{self.line}:{self.column}"


class Node(ABC):
    location: Optional[Location] = None


#
# Expressions
#
class Expression(Node):
    pass

class IntegerLiteral(Expression):
    def __init__(self, value: int, type: Optional[Type] = None, location: Optional[Location] = None):
        self.value = value
        self.type = type # None means "whatever integer type the context expects".
        self.location = location

class Identifier(Expression):
    def __init__(self, name: str, location: Optional[Location] = None):
        self.name = name
        self.location = location

class Index(Expression):
    """array[index]. ``array`` is an Identifier or another Index (for arrays of arrays)."""
    def __init__(self, array: Expression, index: Expression, location: Optional[Location] = None):
        self.array = array
        self.index = index
        self.location = location

# Source-level operator symbols.
ARITHMETIC_OPERATORS = ("+", "-", "*", "/", "%", "&", "|", "^", "<<", ">>")
COMPARISON_OPERATORS = ("==", "!=", "<", "<=", ">", ">=")

class BinaryOp(Expression):
    def __init__(self, op: str, left: Expression, right: Expression, location: Optional[Location] = None):
        assert op in ARITHMETIC_OPERATORS, f"{op} is not an arithmetic operator."
        self.op = op
        self.left = left
        self.right = right
        self.location = location

class Comparison(Expression):
    def __init__(self, op: str, left: Expression, right: Expression, location: Optional[Location] = None):
        assert op in COMPARISON_OPERATORS, f"{op} is not a comparison operator."
        self.op = op
        self.left = left
        self.right = right
        self.location = location

class Call(Expression):
    def __init__(self, callee: str, arguments: List[Expression], location: Optional[Location] = None):
        self.callee = callee
        self.arguments = arguments
        self.location = location


#
# Statements
#
class Statement(Node):
    pass

Initializer = Union[Expression, List[Expression]]

class Declaration(Statement):
    """Declare a variable. Arrays may be initialized with a list of element expressions."""
    def __init__(self, name: str, type: Type, initializer: Optional[Initializer] = None, location: Optional[Location] = None):
        self.name = name
        self.type = type
        self.initializer = initializer
        self.location = location

class Assignment(Statement):
    """target = value, or target op= value when op is an arithmetic operator such as "+"."""
    def __init__(self, target: Union[Identifier, Index], value: Expression, location: Optional[Location] = None, op: Optional[str] = None):
        self.target = target
        self.value = value
        self.location = location
        self.op = op

class If(Statement):
    def __init__(self, condition: Expression, then_body: List[Statement], else_body: Optional[List[Statement]] = None, location: Optional[Location] = None):
        self.condition = condition
        self.then_body = then_body
        self.else_body = else_body
        self.location = location

class While(Statement):
    def __init__(self, condition: Expression, body: List[Statement], location: Optional[Location] = None):
        self.condition = condition
        self.body = body
        self.location = location

class Return(Statement):
    def __init__(self, value: Optional[Expression] = None, location: Optional[Location] = None):
        self.value = value
        self.location = location

class Break(Statement):
    def __init__(self, location: Optional[Location] = None):
        self.location = location

class Continue(Statement):
    def __init__(self, location: Optional[Location] = None):
        self.location = location

class Block(Statement):
    """A nested lexical block: { ... }"""
    def __init__(self, statements: List[Statement], location: Optional[Location] = None):
        self.statements = statements
        self.location = location

class ExpressionStatement(Statement):
    def __init__(self, expression: Expression, location: Optional[Location] = None):
        self.expression = expression
        self.location = location


#
# Top level
#
class Param(Node):
    def __init__(self, name: str, type: Type, location: Optional[Location] = None):
        self.name = name
        self.type = type
        self.location = location

class FunctionDecl(Node):
    """A function definition, or an external declaration when ``body`` is None.

    :param return_type: None for functions that return nothing.
    """
    def __init__(self, name: str, params: List[Param], return_type: Optional[Type], body: Optional[List[Statement]] = None, location: Optional[Location] = None):
        self.name = name
        self.params = params
        self.return_type = return_type
        self.body = body
        self.location = location

    @property
    def is_definition(self) -> bool:
        return self.body is not None

class Program(Node):
    def __init__(self, functions: List[FunctionDecl]):
        self.functions = functions
