import unittest

from elgin.allocator import NameAllocator
from elgin.errors import DuplicateDeclaration, UnknownIdentifier
from elgin.scope import SymbolTable
from elgin.types import I8, I32, ArrayType


class TestSymbolTable(unittest.TestCase):
    def test_declare_and_resolve(self):
        slots = []
        symbols = SymbolTable(slots)
        x = symbols.declare_variable("x", I32)
        a = symbols.declare_variable("a", ArrayType(4, I8))

        assert symbols.resolve("x") is x
        assert symbols.resolve("a") is a
        assert slots == [x, a]
        assert (x.id, a.id) == (0, 1)
        assert a.type == ArrayType(4, I8)

    def test_shadowing(self):
        symbols = SymbolTable([])
        outer = symbols.declare_variable("x", I32)
        with symbols.scope():
            inner = symbols.declare_variable("x", I8)
            assert symbols.resolve("x") is inner
            assert symbols.depth == 1
        assert symbols.resolve("x") is outer
        assert symbols.depth == 0

    def test_duplicate_in_same_scope(self):
        symbols = SymbolTable([])
        symbols.declare_variable("x", I32)
        with self.assertRaises(DuplicateDeclaration):
            symbols.declare_variable("x", I32)

    def test_inner_names_do_not_leak(self):
        symbols = SymbolTable([])
        with symbols.scope():
            symbols.declare_variable("y", I32)
        with self.assertRaises(UnknownIdentifier):
            symbols.resolve("y")

    def test_scope_popped_on_error(self):
        symbols = SymbolTable([])
        with self.assertRaises(UnknownIdentifier):
            with symbols.scope():
                symbols.declare_variable("y", I32)
                symbols.resolve("z")
        assert symbols.depth == 0

    def test_slots_outlive_their_scope(self):
        slots = []
        symbols = SymbolTable(slots)
        with symbols.scope():
            symbols.declare_variable("y", I32)
        with symbols.scope():
            symbols.declare_variable("y", I32)
        assert [s.id for s in slots] == [0, 1]


class TestNameAllocator(unittest.TestCase):
    def test_values_and_labels_share_a_counter(self):
        allocator = NameAllocator()
        p = allocator.parameter(I32, "n")
        block = allocator.block()
        v = allocator.value(I32)
        assert (p.number, block.label, v.number) == (0, 1, 2)

    def test_start(self):
        allocator = NameAllocator(5)
        assert allocator.next_label() == 5
        assert allocator.next_value() == 6
