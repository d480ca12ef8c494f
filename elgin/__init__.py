from .cfg import build_cfg, validate
from .emit import emit_function, emit_module
from .errors import CompilationError, Diagnostic, LoweringError
from .interpret import Interpreter
from .lower import build_signature_table, lower_function, lower_program
from .pipeline import compile_c, translate
