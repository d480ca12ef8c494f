"""Errors raised while lowering and validating functions, and the diagnostics that collect them.
"""

from typing import List, Optional

from .syntax import Location


class LoweringError(Exception):
    """Base class for problems attributed to a function being lowered.

    :param message: a human readable description.
    :param location: where in the source the problem originates, if known.
    """
    def __init__(self, message: str, location: Optional[Location] = None):
        super().__init__(message)
        self.message = message
        self.location = location

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __str__(self):
        if self.location is None:
            return self.message
        return f"{self.message} (at {self.location})"


#
# Name resolution
#
class LexicalScopeError(LoweringError):
    pass

class DuplicateDeclaration(LexicalScopeError):
    pass

class UnknownIdentifier(LexicalScopeError):
    pass

class LoopControlError(LexicalScopeError):
    """break or continue outside of any loop."""


#
# Types
#
class IRTypeError(LoweringError):
    pass

class TypeMismatch(IRTypeError):
    pass

class ArityMismatch(IRTypeError):
    pass


#
# Block structure. Detected by the validator, except for UnreachableTerminatorConflict
# which BasicBlock.append raises as soon as it happens.
#
class StructuralError(LoweringError):
    pass

class UnreachableTerminatorConflict(StructuralError):
    pass

class DanglingBlockReference(StructuralError):
    pass

class MissingTerminator(StructuralError):
    pass

class UnreachableBlock(StructuralError):
    pass

class UseBeforeDefinition(StructuralError):
    pass


class Diagnostic:
    def __init__(self, function: str, error: LoweringError):
        self.function = function
        self.error = error

    @property
    def kind(self) -> str:
        return self.error.kind

    def __repr__(self):
        return f"{self.function}: {self.kind}: {self.error}"


class CompilationError(Exception):
    """Raised instead of producing a module when any function has diagnostics."""
    def __init__(self, diagnostics: List[Diagnostic]):
        self.diagnostics = diagnostics
        summary = "\n".join(repr(d) for d in diagnostics)
        super().__init__(f"{len(diagnostics)} error(s):\n{summary}")

    def kinds(self) -> List[str]:
        return [d.kind for d in self.diagnostics]
