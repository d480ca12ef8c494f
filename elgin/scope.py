"""Name resolution across nested lexical blocks.
"""

from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from .errors import DuplicateDeclaration, UnknownIdentifier
from .ir import Slot
from .syntax import Location
from .types import Type


class Scope:
    def __init__(self, parent: Optional['Scope'] = None):
        """Maps variable names to slots. If this scope is nested inside another scope,
        that scope can be accessed via parent.
        """
        self.name2slot: Dict[str, Slot] = {}
        self.parent = parent

    def lookup(self, name: str) -> Optional[Slot]:
        scope = self
        while scope is not None:
            if name in scope.name2slot:
                return scope.name2slot[name]
            scope = scope.parent
        return None

    def __repr__(self):
        """Return a string describing the contents of this scope and all enclosing scopes.
        """
        outstr = "Scope(" + ", ".join(self.name2slot) + ")"
        if self.parent is not None:
            outstr += " ->\n  " + repr(self.parent)
        return outstr


class SymbolTable:
    """The scope chain of one function being lowered.

    :param slots: the function's slot arena. Every declared variable gets a new Slot appended here.
    """
    def __init__(self, slots: List[Slot]):
        self.slots = slots
        self.current = Scope()

    def declare_variable(self, name: str, type: Type, location: Optional[Location] = None) -> Slot:
        """Declare a variable in the innermost scope. Shadowing a variable of an enclosing scope is allowed.
        """
        if name in self.current.name2slot:
            raise DuplicateDeclaration(f"Variable {name} was already declared in this scope.", location)
        slot = Slot(len(self.slots), name, type)
        self.slots.append(slot)
        self.current.name2slot[name] = slot
        return slot

    def resolve(self, name: str, location: Optional[Location] = None) -> Slot:
        slot = self.current.lookup(name)
        if slot is None:
            raise UnknownIdentifier(f"Variable {name} is not declared in any enclosing scope.", location)
        return slot

    def push_scope(self):
        self.current = Scope(self.current)

    def pop_scope(self):
        assert self.current.parent is not None, "Cannot pop the outermost scope."
        self.current = self.current.parent

    @contextmanager
    def scope(self) -> Iterator[Scope]:
        """Bracket a lexical block. The scope is popped however the block is left."""
        self.push_scope()
        try:
            yield self.current
        finally:
            self.pop_scope()

    @property
    def depth(self) -> int:
        depth = 0
        scope = self.current
        while scope.parent is not None:
            depth += 1
            scope = scope.parent
        return depth
