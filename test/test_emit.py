"""Test the textual form of lowered modules.
"""

from elgin.emit import emit_module
from elgin.pipeline import translate
from .utils import TestLowering, block_header


FACTORIAL = """
int factorial(int n) {
    if (n == 0) {
        return 1;
    }
    return n * factorial(n - 1);
}
"""

FACTORIAL_IR = "\n".join([
    "define i32 @factorial(i32 %0) {",
    "1:",
    "  %2 = alloca i32",
    "  store i32 %0, i32* %2",
    "  %5 = load i32, i32* %2",
    "  %6 = icmp eq i32 %5, 0",
    "  br i1 %6, label %3, label %4",
    "",
    block_header(3, [1]),
    "  ret i32 1",
    "",
    block_header(4, [1]),
    "  %7 = load i32, i32* %2",
    "  %8 = load i32, i32* %2",
    "  %9 = sub i32 %8, 1",
    "  %10 = call i32 @factorial(i32 %9)",
    "  %11 = mul i32 %7, %10",
    "  ret i32 %11",
    "}",
]) + "\n"

PROGRAM = """
int putchar(int c);

int square(int x) {
    return x * x;
}

void show(int values[3]) {
    int i = 0;
    while (i < 3) {
        putchar(square(values[i]));
        i = i + 1;
    }
}
"""


class TestEmit(TestLowering):
    def test_factorial(self):
        assert translate(FACTORIAL) == FACTORIAL_IR

    def test_block_header(self):
        assert block_header(3, [1, 12]) == "3:" + " " * 48 + "; preds = %1, %12"

    def test_declarations_come_first(self):
        text = translate(PROGRAM)
        lines = text.split("\n")
        assert lines[0] == "declare i32 @putchar(i32)"
        assert lines[1] == ""
        assert lines[2] == "define i32 @square(i32 %0) {"
        assert "define void @show([3 x i32]* %0) {" in lines
        assert text.endswith("}\n")

    def test_void_function(self):
        assert translate("void nothing() {}") == "define void @nothing() {\n0:\n  ret void\n}\n"

    def test_emitting_twice(self):
        module = self.compile(PROGRAM)
        first = emit_module(module)
        assert emit_module(module) == first

    def test_thread_pool_gives_same_text(self):
        code = PROGRAM + FACTORIAL
        sequential = translate(code)
        for workers in (1, 2, 8):
            assert translate(code, workers=workers) == sequential

    def test_functions_in_program_order(self):
        module = self.compile(PROGRAM + FACTORIAL, workers=4)
        assert [f.name for f in module] == ["square", "show", "factorial"]
        assert [s.name for s in module.declarations] == ["putchar"]
