"""Interact with tree_sitter to convert C code into elgin syntax trees.

Only the subset of C the lowering engine understands is accepted: integer scalars, fixed-size arrays,
functions, if/else, while, break, continue and return. Anything else raises NotImplementedError.
"""

import logging
from typing import Dict, List, Optional, Tuple

import tree_sitter_c
from tree_sitter import Language, Parser, Node

from ..syntax import (COMPARISON_OPERATORS, ARITHMETIC_OPERATORS, Assignment, BinaryOp, Block, Break, Call, Comparison,
                      Continue, Declaration, Expression, ExpressionStatement, FunctionDecl, Identifier, If, Index,
                      IntegerLiteral, Location, Param, Program, Return, Statement, While)
from ..types import I1, I8, I16, I32, I64, ArrayType, Type, decay

logger = logging.getLogger(__name__)

C_LANGUAGE = Language(tree_sitter_c.language())
parser = Parser(C_LANGUAGE)

class ParsingError(Exception):
    pass


# Integer type names with any signed/unsigned qualifier removed. Signedness is not modeled.
INTEGER_TYPES = {
    "": I32, # "unsigned" on its own
    "int": I32,
    "short": I16,
    "short int": I16,
    "long": I64,
    "long int": I64,
    "long long": I64,
    "long long int": I64,
    "char": I8,
    "bool": I1,
    "_Bool": I1,
}

ASSIGNMENT_SUBOPS = {
    "+=": "+",
    "-=": "-",
    "*=": "*",
    "/=": "/",
    "%=": "%",
    "<<=": "<<",
    ">>=": ">>",
    "&=": "&",
    "^=": "^",
    "|=": "|"
}

CHAR_ESCAPES = {
    "n": 10,
    "t": 9,
    "r": 13,
    "0": 0,
    "\\": 92,
    "'": 39,
    '"': 34,
}


def text(node: Node) -> str:
    return node.text.decode("utf8")

def location(node: Node) -> Location:
    return Location(node.start_point[0] + 1, node.start_point[1] + 1)

def named(node: Node) -> List[Node]:
    """The named children of node, without comments."""
    return [child for child in node.named_children if child.type != "comment"]

def error_check(node: Node):
    """Determine if there is an error node in this AST. If there is, raise a ParsingError.
    """
    if node.type == "ERROR" or node.is_missing:
        raise ParsingError(f"{location(node)}: {text(node)}")

    for child in node.children:
        error_check(child)


#
# Types and declarators
#
def convert_type(type_node: Node) -> Optional[Type]:
    """The integer type named by a type specifier, or None for void."""
    if type_node.type not in ("primitive_type", "sized_type_specifier"):
        raise NotImplementedError(f"Unsupported type '{text(type_node)}'")
    name = text(type_node)
    if name == "void":
        return None
    words = [w for w in name.split() if w not in ("signed", "unsigned")]
    name = " ".join(words)
    if name not in INTEGER_TYPES:
        raise NotImplementedError(f"Unsupported type '{text(type_node)}'")
    return INTEGER_TYPES[name]

def integer_value(literal: str) -> int:
    digits = literal.rstrip("uUlL")
    sign = 1
    if digits[0] in "+-":
        sign = -1 if digits[0] == "-" else 1
        digits = digits[1:]
    if len(digits) > 1 and digits[0] == "0" and digits[1] not in "xXbB":
        return sign * int(digits, 8)
    return sign * int(digits, 0)

def unwrap_declarator(declarator: Node, base_type: Type) -> Tuple[str, Type]:
    """Find the name a declarator declares and the full type it gives that name.

    In int a[2][3], the outer array_declarator carries the size 3 and wraps the declarator a[2], so the
    element type is built from the outside in: a has type [2 x [3 x i32]].
    """
    if declarator.type == "identifier":
        return text(declarator), base_type
    elif declarator.type == "array_declarator":
        # declarator.children[0]: (declarator) - another declarator
        # declarator.children[1]: [
        # declarator.children[2]: (size; optional) - the array size
        # declarator.children[3]: ]
        size = declarator.child_by_field_name("size")
        if size is None or size.type != "number_literal":
            raise NotImplementedError(f"Arrays must have a constant size: {text(declarator)}")
        return unwrap_declarator(declarator.child_by_field_name("declarator"), ArrayType(integer_value(text(size)), base_type))
    raise NotImplementedError(f"Unsupported declarator '{text(declarator)}' of type {declarator.type}")


#
# Expressions
#
def clean_expression(expression: Node) -> Node:
    while expression.type == "parenthesized_expression":
        assert(expression.children[0].type == "(")
        assert(expression.children[-1].type ==")")
        expression = named(expression)[0]
    return expression

def convert_char_literal(literal: Node) -> int:
    body = text(literal)[1:-1]
    if len(body) == 1:
        return ord(body)
    if len(body) == 2 and body[0] == "\\" and body[1] in CHAR_ESCAPES:
        return CHAR_ESCAPES[body[1]]
    raise NotImplementedError(f"Unsupported character literal {text(literal)}")

def convert_expression(expression: Node) -> Expression:
    expression = clean_expression(expression)
    loc = location(expression)

    if expression.type == "number_literal":
        return IntegerLiteral(integer_value(text(expression)), location=loc)
    elif expression.type == "char_literal":
        # A character constant has type int in C.
        return IntegerLiteral(convert_char_literal(expression), location=loc)
    # true and false are not keywords in C but tree-sitter recognizes them with their own node types anyway.
    elif expression.type == "true":
        return IntegerLiteral(1, I1, loc)
    elif expression.type == "false":
        return IntegerLiteral(0, I1, loc)
    elif expression.type == "identifier":
        return Identifier(text(expression), loc)
    elif expression.type == "subscript_expression":
        # expression.children[0]: (argument) - the array, or an expression that resolves to an array.
        # expression.children[1]: [
        # expression.children[2]: (index) - an expression that resolves to an array index.
        # expression.children[3]: ]
        return Index(convert_expression(expression.child_by_field_name("argument")),
                     convert_expression(expression.child_by_field_name("index")), loc)
    elif expression.type == "binary_expression":
        # expression.children[0]: (left) - the left operand
        # expression.children[1]: (operator) - the operation being performed (e.g. +, -)
        # expression.children[2]: (right) - the right operand
        operator = expression.child_by_field_name("operator").type
        left = convert_expression(expression.child_by_field_name("left"))
        right = convert_expression(expression.child_by_field_name("right"))
        if operator in COMPARISON_OPERATORS:
            return Comparison(operator, left, right, loc)
        elif operator in ARITHMETIC_OPERATORS:
            return BinaryOp(operator, left, right, loc)
        raise NotImplementedError(f"Unsupported operator '{operator}' (short-circuit operators are not supported)")
    elif expression.type == "unary_expression":
        # expression.children[0]: (operator) - the operation being performed (e.g. !)
        # expression.children[1]: (argument) - the operand
        operator = expression.child_by_field_name("operator").type
        argument_node = clean_expression(expression.child_by_field_name("argument"))
        if operator == "-" and argument_node.type == "number_literal":
            return IntegerLiteral(-integer_value(text(argument_node)), location=loc)
        argument = convert_expression(argument_node)
        if operator == "-":
            return BinaryOp("-", IntegerLiteral(0, location=loc), argument, loc)
        elif operator == "+":
            return argument
        elif operator == "!":
            return Comparison("==", argument, IntegerLiteral(0, location=loc), loc)
        elif operator == "~":
            return BinaryOp("^", argument, IntegerLiteral(-1, location=loc), loc)
        raise NotImplementedError(f"Unsupported unary operator '{operator}'")
    elif expression.type == "call_expression":
        # expression.children[0]: (function) - the name of the function.
        # expression.children[1]: (arguments; argument_list) - a list of arguments.
        name_node = expression.child_by_field_name("function")
        if name_node.type != "identifier":
            raise NotImplementedError(f"Only direct calls are supported: {text(expression)}")
        arguments = [convert_expression(a) for a in named(expression.child_by_field_name("arguments"))]
        return Call(text(name_node), arguments, loc)
    elif expression.type == "ERROR":
        raise ParsingError(text(expression))
    raise NotImplementedError(f"No code yet implemented to handle expressions of type '{expression.type}'")

def convert_target(target: Node) -> Expression:
    target = clean_expression(target)
    if target.type not in ("identifier", "subscript_expression"):
        raise NotImplementedError(f"Cannot assign to '{text(target)}'")
    return convert_expression(target)

def convert_expression_statement(expression: Node) -> Statement:
    expression = clean_expression(expression)
    loc = location(expression)
    if expression.type == "assignment_expression":
        # expression.children[0]: (left) - the lhs of the assignment
        # expression.children[1]: (operator) - either = or +=
        # expression.children[2]: (right) - the rhs of the assignment
        left = expression.child_by_field_name("left")
        target = convert_target(left)
        value = convert_expression(expression.child_by_field_name("right"))
        operator = expression.child_by_field_name("operator").type
        if operator == "=":
            return Assignment(target, value, loc)
        assert operator in ASSIGNMENT_SUBOPS, f"{operator} not a valid C assignment operator."
        return Assignment(target, value, loc, ASSIGNMENT_SUBOPS[operator])
    elif expression.type == "update_expression":
        # ++ and --, prefix or postfix. Only allowed as statements, so both forms mean the same thing.
        argument = expression.child_by_field_name("argument")
        operator = expression.child_by_field_name("operator").type
        assert operator == "++" or operator == "--"
        return Assignment(convert_target(argument), IntegerLiteral(1, location=loc), loc, "+" if operator == "++" else "-")
    return ExpressionStatement(convert_expression(expression), loc)


#
# Statements
#
def convert_declaration(declaration: Node) -> List[Declaration]:
    """int a, b = 2, c[3] = {1, 2, 3}; declares three variables in order."""
    base_type = convert_type(declaration.child_by_field_name("type"))
    declarations = []
    for declarator in declaration.children_by_field_name("declarator"):
        initializer = None
        if declarator.type == "init_declarator":
            # declarator.children[0] (declarator) - the name of the variable being declared, or a declarator for it
            # declarator.children[1] =
            # declarator.children[2] (value) - the expression used to initialize the variable.
            value = declarator.child_by_field_name("value")
            if value.type == "initializer_list":
                initializer = [convert_expression(element) for element in named(value)]
            else:
                initializer = convert_expression(value)
            declarator = declarator.child_by_field_name("declarator")
        if base_type is None:
            raise NotImplementedError(f"Variables cannot have type void: {text(declaration)}")
        name, variable_type = unwrap_declarator(declarator, base_type)
        declarations.append(Declaration(name, variable_type, initializer, location(declarator)))
    return declarations

def convert_body(body: Node) -> List[Statement]:
    """The statements of an if or while body. The body gets its own scope from the statement it belongs to,
    so a braced body does not need an extra Block.
    """
    if body.type == "compound_statement":
        return convert_compound_statement(body)
    return convert_statement(body)

def convert_compound_statement(body: Node) -> List[Statement]:
    assert body.children[0].type == "{"
    assert body.children[-1].type == "}"
    statements = []
    for statement in body.named_children:
        statements.extend(convert_statement(statement))
    return statements

def convert_statement(statement: Node) -> List[Statement]:
    loc = location(statement)
    if statement.type == "declaration":
        return convert_declaration(statement)
    elif statement.type == "expression_statement":
        # statement.children[0]: the expression
        # statement.children[1]: ;
        expressions = named(statement)
        if len(expressions) == 0: # An empty statement (i.e. just a semicolon)
            return []
        return [convert_expression_statement(expressions[0])]
    elif statement.type == "if_statement":
        # statement.children[0]: if
        # statement.children[1]: (condition) - the conditional test
        # statement.children[2]: (consequence) - the if statement body; entered if true.
        # may have
        # statement.children[3]: (alternative) - an else_clause holding the body of the else branch.
        condition = convert_expression(statement.child_by_field_name("condition"))
        then_body = convert_body(statement.child_by_field_name("consequence"))
        alternative = statement.child_by_field_name("alternative")
        else_body = None
        if alternative is not None:
            if alternative.type == "else_clause":
                alternative = named(alternative)[0]
            else_body = convert_body(alternative)
        return [If(condition, then_body, else_body, loc)]
    elif statement.type == "while_statement":
        # statement.children[0]: while
        # statement.children[1]: condition
        # statement.children[2]: body
        condition = convert_expression(statement.child_by_field_name("condition"))
        return [While(condition, convert_body(statement.child_by_field_name("body")), loc)]
    elif statement.type == "return_statement":
        values = named(statement)
        return [Return(convert_expression(values[0]) if values else None, loc)]
    elif statement.type == "break_statement":
        return [Break(loc)]
    elif statement.type == "continue_statement":
        return [Continue(loc)]
    elif statement.type == "compound_statement":
        return [Block(convert_compound_statement(statement), loc)]
    elif statement.type == "comment":
        return []
    elif statement.type == "ERROR":
        raise ParsingError(text(statement))
    raise NotImplementedError(f"No code for handling statements of type {statement.type}")


#
# Functions
#
def convert_parameters(parameter_list: Node) -> List[Param]:
    parameters = []
    for i, param_node in enumerate(named(parameter_list)):
        if param_node.type != "parameter_declaration":
            raise NotImplementedError(f"Unsupported parameter '{text(param_node)}'")
        # param_node.children[0] (type) is the type of the parameter.
        # param_node.children[1] (declarator; optional) is the name of the parameter, possibly wrapped in array declarators.
        param_type = convert_type(param_node.child_by_field_name("type"))
        param_declarator = param_node.child_by_field_name("declarator")
        if param_type is None:
            if param_declarator is None: # f(void)
                continue
            raise NotImplementedError(f"Parameters cannot have type void: {text(param_node)}")
        if param_declarator is None:
            # Unnamed, as in the prototype int f(int);
            name, full_type = f"_{i}", param_type
        else:
            name, full_type = unwrap_declarator(param_declarator, param_type)
        parameters.append(Param(name, full_type, location(param_node)))
    return parameters

def convert_function_declarator(type_node: Node, declarator: Node, body: Optional[Node], loc: Location) -> FunctionDecl:
    if declarator.type != "function_declarator":
        raise NotImplementedError(f"Unsupported function declarator '{text(declarator)}'")
    # declarator.children[0]: (declarator) - is the name of the function.
    # declarator.children[1]: (parameters) - the parameter list.
    name = declarator.child_by_field_name("declarator")
    assert name.type == "identifier"
    parameters = convert_parameters(declarator.child_by_field_name("parameters"))
    statements = None if body is None else convert_compound_statement(body)
    return FunctionDecl(text(name), parameters, convert_type(type_node), statements, loc)

def same_signature(a: FunctionDecl, b: FunctionDecl) -> bool:
    return a.return_type == b.return_type and [decay(p.type) for p in a.params] == [decay(p.type) for p in b.params]

def parse(code: bytes) -> Program:
    """Parse C code using tree-sitter and convert it into an elgin Program.

    Prototypes that repeat the signature of a definition or of an earlier prototype are dropped; the remaining
    prototypes become external declarations. A prototype that disagrees with an earlier declaration of the
    same name is kept, and lowering reports it as a DuplicateDeclaration.
    """
    ast = parser.parse(code)
    root = ast.root_node
    assert(root.type == "translation_unit")

    # Tree-sitter can effectively recover from some errors, but other times it inserts an ERROR node.
    error_check(root)

    functions: List[FunctionDecl] = []
    prototypes: List[FunctionDecl] = []
    for child in root.named_children:
        if child.type == "function_definition":
            functions.append(convert_function_declarator(child.child_by_field_name("type"), child.child_by_field_name("declarator"),
                                                         child.child_by_field_name("body"), location(child)))
        elif child.type == "declaration":
            for declarator in child.children_by_field_name("declarator"):
                if declarator.type != "function_declarator":
                    raise NotImplementedError(f"Global variables are not supported: {text(child)}")
                prototypes.append(convert_function_declarator(child.child_by_field_name("type"), declarator, None, location(child)))
        elif child.type == "comment":
            continue
        else:
            raise NotImplementedError(f"No code for handling top-level {child.type}")

    first: Dict[str, FunctionDecl] = {}
    for function in functions:
        first.setdefault(function.name, function)
    externals = []
    for prototype in prototypes:
        earlier = first.get(prototype.name)
        if earlier is None:
            externals.append(prototype)
            first[prototype.name] = prototype
        elif same_signature(earlier, prototype):
            logger.debug("Dropping repeated prototype of %s", prototype.name)
        else:
            # Kept so that the conflict is reported when the signature table is built.
            externals.append(prototype)

    return Program(externals + functions)
