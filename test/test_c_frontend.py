import unittest

from elgin import syntax
from elgin.lang.c import ParsingError, integer_value, parse
from elgin.types import I8, I16, I32, I64, ArrayType


class TestCFrontend(unittest.TestCase):
    def parse(self, code: str) -> syntax.Program:
        return parse(bytes(code, "utf8"))

    def function(self, code: str) -> syntax.FunctionDecl:
        return self.parse(code).functions[-1]

    def test_types(self):
        fn = self.function("long f(short a, char b[4][2], unsigned int c) { return 0; }")

        assert fn.return_type == I64
        assert [p.name for p in fn.params] == ["a", "b", "c"]
        assert fn.params[0].type == I16
        assert fn.params[1].type == ArrayType(4, ArrayType(2, I8))
        assert fn.params[2].type == I32

    def test_void(self):
        fn = self.function("void f(void) { }")
        assert fn.return_type is None
        assert fn.params == []
        assert fn.body == []

    def test_prototypes(self):
        program = self.parse("""
        int g(int);
        int h(int x, int y);
        int g(int x) { return x; }
        int h(int x, int y);
        """)

        # The prototype of g is dropped because g is defined; the repeated prototype of h is dropped.
        assert [f.name for f in program.functions] == ["h", "g"]
        assert not program.functions[0].is_definition
        assert program.functions[1].is_definition

    def test_conflicting_prototype_is_kept(self):
        program = self.parse("int g(int); int g(int a, int b) { return a; }")
        assert [len(f.params) for f in program.functions] == [1, 2]

        program = self.parse("int h(int x); int h(int y); char h(int z);")
        assert [f.return_type for f in program.functions] == [I32, I8]

    def test_unnamed_prototype_parameters(self):
        fn = self.parse("int g(int, char);").functions[0]
        assert [p.type for p in fn.params] == [I32, I8]
        assert fn.body is None

    def test_declarations(self):
        fn = self.function("void f() { int a, b = 2, c[3] = {1, 2, 3}; }")

        a, b, c = fn.body
        assert isinstance(a, syntax.Declaration) and a.name == "a" and a.initializer is None
        assert b.name == "b" and isinstance(b.initializer, syntax.IntegerLiteral) and b.initializer.value == 2
        assert c.type == ArrayType(3, I32)
        assert [e.value for e in c.initializer] == [1, 2, 3]

    def test_compound_assignment_and_increment(self):
        fn = self.function("void f() { int x = 0; x += 2; x++; --x; }")

        _, add, increment, decrement = fn.body
        for statement, op, amount in ((add, "+", 2), (increment, "+", 1), (decrement, "-", 1)):
            assert isinstance(statement, syntax.Assignment)
            assert isinstance(statement.target, syntax.Identifier) and statement.target.name == "x"
            assert statement.op == op
            assert isinstance(statement.value, syntax.IntegerLiteral) and statement.value.value == amount

    def test_array_element_assignment(self):
        fn = self.function("void f(int a[2][2]) { a[1][0] = a[0][1]; }")

        assignment = fn.body[0]
        assert assignment.op is None
        assert isinstance(assignment.target, syntax.Index)
        assert isinstance(assignment.target.array, syntax.Index)
        assert assignment.target.array.array.name == "a"
        assert assignment.target.array.index.value == 1
        assert assignment.target.index.value == 0

    def test_unary_operators(self):
        fn = self.function("int f(int x) { int a = -x; int b = !x; int c = -3; return +a; }")

        a, b, c, ret = fn.body
        assert isinstance(a.initializer, syntax.BinaryOp) and a.initializer.op == "-"
        assert a.initializer.left.value == 0 and a.initializer.right.name == "x"
        assert isinstance(b.initializer, syntax.Comparison) and b.initializer.op == "=="
        assert isinstance(c.initializer, syntax.IntegerLiteral) and c.initializer.value == -3
        assert isinstance(ret.value, syntax.Identifier)

    def test_parentheses(self):
        fn = self.function("int f(int x) { return (x + 1) * 2; }")
        value = fn.body[0].value
        assert value.op == "*"
        assert value.left.op == "+"

    def test_if_else_chain(self):
        fn = self.function("""
        int f(int x) {
            if (x > 0) {
                return 1;
            } else if (x < 0) {
                return -1;
            } else
                return 0;
        }
        """)

        statement = fn.body[0]
        assert isinstance(statement, syntax.If)
        assert isinstance(statement.condition, syntax.Comparison) and statement.condition.op == ">"
        assert isinstance(statement.then_body[0], syntax.Return)
        assert isinstance(statement.else_body[0], syntax.If)
        assert isinstance(statement.else_body[0].else_body[0], syntax.Return)

    def test_loops_and_blocks(self):
        fn = self.function("""
        void f() {
            while (1) {
                { break; }
                continue;
            }
            ;
        }
        """)

        assert len(fn.body) == 1
        loop = fn.body[0]
        assert isinstance(loop, syntax.While)
        assert isinstance(loop.body[0], syntax.Block)
        assert isinstance(loop.body[0].statements[0], syntax.Break)
        assert isinstance(loop.body[1], syntax.Continue)

    def test_calls(self):
        fn = self.function("int g(int a, int b); void f() { g(1, g(2, 3)); }")
        call = fn.body[0].expression
        assert isinstance(call, syntax.Call)
        assert call.callee == "g"
        assert isinstance(call.arguments[1], syntax.Call)

    def test_literals(self):
        assert integer_value("42") == 42
        assert integer_value("0x1F") == 31
        assert integer_value("010") == 8
        assert integer_value("0") == 0
        assert integer_value("10UL") == 10
        assert integer_value("-5") == -5

        fn = self.function("int f() { char c = 'a'; char n = '\\n'; return true; }")
        c, n, ret = fn.body
        # Character constants are ints, so they take the type of whatever they initialize or meet.
        assert c.initializer.value == 97 and c.initializer.type is None
        assert n.initializer.value == 10

    def test_locations(self):
        fn = self.function("int f() {\n    int x = 1;\n    return x;\n}")
        assert fn.body[0].location == syntax.Location(2, 9)
        assert fn.body[1].location == syntax.Location(3, 5)

    def test_syntax_error(self):
        with self.assertRaises(ParsingError):
            self.parse("int f() { return 1 +; }")

    def test_unsupported(self):
        with self.assertRaises(NotImplementedError):
            self.parse("int f() { for (;;) { } return 0; }")
        with self.assertRaises(NotImplementedError):
            self.parse("int f(int a, int b) { return a && b; }")
        with self.assertRaises(NotImplementedError):
            self.parse("int g; int f() { return 0; }")
        with self.assertRaises(NotImplementedError):
            self.parse("int f(int *p) { return 0; }")
