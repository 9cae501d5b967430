from typing import Dict, NamedTuple

# Built-in ("virtual") calls, resolved by name at code generation and
# dispatched by id in the VM.


class Builtin(NamedTuple):
    id: int
    arity: int


PRINT_INT = 0
DEBUG = 1
PRINT_STR = 2
PRINT_BOOL = 3


def get_builtins() -> Dict[str, Builtin]:
    return {
        "print_int": Builtin(PRINT_INT, 1),
        "debug": Builtin(DEBUG, 0),
        "print_str": Builtin(PRINT_STR, 1),
        "print_bool": Builtin(PRINT_BOOL, 1),
    }
