from __future__ import annotations
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Dict, List, Optional, Sequence, Union
from vimib.bytecode import OpCode, OPERAND_WIDTH, MAX_REGISTERS, wrap_i32, decode_i32
from vimib.builtins import PRINT_INT, DEBUG, PRINT_STR, PRINT_BOOL
from vimib.errors import VimibError

LOG = logging.getLogger("vimib.vm")

DEFAULT_MAX_STACK = 1024


class Tag(Enum):
    I32 = auto()
    BOOL = auto()
    STR = auto()     # payload is a constant pool index


@dataclass(frozen=True)
class Value:
    tag: Tag
    payload: Union[int, bool]

    @classmethod
    def i32(cls, n: int) -> "Value":
        return cls(Tag.I32, wrap_i32(n))

    @classmethod
    def boolean(cls, b: bool) -> "Value":
        return cls(Tag.BOOL, bool(b))

    def __repr__(self) -> str:
        if self.tag is Tag.STR:
            return f"str#{self.payload}"
        if self.tag is Tag.BOOL:
            return "true" if self.payload else "false"
        return str(self.payload)


class VMRuntimeError(VimibError):
    def __init__(self, message: str, offset: int):
        super().__init__(message)
        self.offset = offset


class ExecutionStopped(Exception):
    """Raised when execution is stopped externally."""
    pass


Builtin = Callable[["VimibVM"], None]


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


class VimibVM:
    def __init__(
        self,
        code: bytes,
        constants: Sequence[str],
        builtins: Optional[Dict[int, Builtin]] = None,
        output_callback: Optional[Callable[[str], None]] = None,
        max_stack: int = DEFAULT_MAX_STACK,
    ):
        self.code = bytes(code)
        self.constants = list(constants)
        self.builtins: Dict[int, Builtin] = self.default_builtins() if builtins is None else dict(builtins)
        self.max_stack = max_stack
        self._output_callback = output_callback
        self._stop_requested = False

        self.stack: List[Value] = []
        self.registers: List[Optional[Value]] = [None] * MAX_REGISTERS
        self.ip: int = 0
        self.halted = False
        self.result: Optional[Value] = None
        self.steps = 0
        # offset of the instruction being executed, for error reports
        self._offset = 0

    def request_stop(self):
        """Request the VM to stop execution."""
        self._stop_requested = True

    def _output(self, text: str):
        """Output text via callback or print."""
        if self._output_callback:
            self._output_callback(text)
        else:
            print(text, end="")

    def _error(self, message: str) -> VMRuntimeError:
        return VMRuntimeError(message, self._offset)

    # Stack
    def push(self, value: Value):
        if len(self.stack) >= self.max_stack:
            raise self._error(f"Stack overflow (max {self.max_stack} values)")
        self.stack.append(value)

    def pop(self) -> Value:
        if not self.stack:
            raise self._error("Stack underflow")
        return self.stack.pop()

    def pop_tagged(self, tag: Tag) -> Value:
        v = self.pop()
        if v.tag is not tag:
            raise self._error(f"Type mismatch: expected {tag.name.lower()}, found {v.tag.name.lower()}")
        return v

    def constant(self, index: int) -> str:
        if index >= len(self.constants):
            raise self._error(f"Invalid constant index {index} (pool has {len(self.constants)})")
        return self.constants[index]

    # Built-ins
    def default_builtins(self) -> Dict[int, Builtin]:
        return {
            PRINT_INT: lambda vm: vm._output(f"{vm.pop_tagged(Tag.I32).payload}\n"),
            DEBUG: lambda vm: vm._output(f"STACK: {vm.stack!r}\nREGS: {vm._live_registers()!r}\n"),
            PRINT_STR: lambda vm: vm._output(vm.constant(vm.pop_tagged(Tag.STR).payload) + "\n"),
            PRINT_BOOL: lambda vm: vm._output("true\n" if vm.pop_tagged(Tag.BOOL).payload else "false\n"),
        }

    def _live_registers(self) -> Dict[int, Value]:
        return {i: v for i, v in enumerate(self.registers) if v is not None}

    # Execution
    def run(self, max_steps: Optional[int] = None) -> Union[int, bool, str, None]:
        """Execute until the end of the stream or a `ret`.

        Returns the value given to `ret` (an int, a bool or the string
        constant it refers to) or None. With max_steps, stops early after
        that many instructions; `halted` tells the two cases apart.
        """
        LOG.debug("running %d bytes, %d constants", len(self.code), len(self.constants))
        executed = 0
        while not self.halted:
            if max_steps is not None and executed >= max_steps:
                LOG.debug("step budget of %d exhausted at ip=%d", max_steps, self.ip)
                return None
            self.step()
            executed += 1
        LOG.debug("halted after %d steps at ip=%d", self.steps, self.ip)
        if self.result is None:
            return None
        if self.result.tag is Tag.STR:
            return self.constant(self.result.payload)
        return self.result.payload

    def step(self) -> bool:
        """Execute one instruction; returns False once the VM has halted."""
        if self.halted:
            return False
        if self.ip >= len(self.code):
            self.halted = True
            return False
        if self._stop_requested:
            raise ExecutionStopped("Execution stopped by user")

        self._offset = self.ip
        byte = self.code[self.ip]
        try:
            op = OpCode(byte)
        except ValueError:
            raise self._error(f"Invalid opcode 0x{byte:02x}") from None
        width = OPERAND_WIDTH[op]
        if self.ip + 1 + width > len(self.code):
            raise self._error(f"Truncated operand for {op.name.lower()}")
        operand = self.code[self.ip + 1:self.ip + 1 + width]
        self.ip += 1 + width
        self.steps += 1
        self._execute(op, operand)
        if self.ip >= len(self.code):
            self.halted = True
        return not self.halted

    def _jump(self, target: int):
        if target > len(self.code):
            raise self._error(f"Jump target {target} is outside the {len(self.code)}-byte stream")
        self.ip = target

    def _execute(self, op: OpCode, operand: bytes):
        if op is OpCode.PUSH_I:
            self.push(Value.i32(decode_i32(operand)))

        elif op is OpCode.PUSH_B:
            self.push(Value.boolean(operand[0] != 0))

        elif op is OpCode.LDC:
            idx = operand[0]
            self.constant(idx)
            self.push(Value(Tag.STR, idx))

        elif op is OpCode.LOAD_I:
            reg = operand[0]
            val = self.registers[reg]
            if val is None:
                raise self._error(f"Invalid register r{reg}: read before any store")
            self.push(val)

        elif op is OpCode.STO_I:
            self.registers[operand[0]] = self.pop()

        elif op in (OpCode.ADD_I, OpCode.SUB_I, OpCode.MUL_I, OpCode.DIV_I, OpCode.MOD_I):
            b = self.pop_tagged(Tag.I32).payload
            a = self.pop_tagged(Tag.I32).payload
            if op is OpCode.ADD_I:
                res = a + b
            elif op is OpCode.SUB_I:
                res = a - b
            elif op is OpCode.MUL_I:
                res = a * b
            else:
                if b == 0:
                    raise self._error("Division by zero")
                q = _trunc_div(a, b)
                res = q if op is OpCode.DIV_I else a - b * q
            self.push(Value.i32(res))

        elif op is OpCode.NEG:
            a = self.pop_tagged(Tag.I32).payload
            self.push(Value.i32(-a))

        elif op in (OpCode.LT, OpCode.GT, OpCode.LE, OpCode.GE):
            b = self.pop_tagged(Tag.I32).payload
            a = self.pop_tagged(Tag.I32).payload
            if op is OpCode.LT:
                res = a < b
            elif op is OpCode.GT:
                res = a > b
            elif op is OpCode.LE:
                res = a <= b
            else:  # GE
                res = a >= b
            self.push(Value.boolean(res))

        elif op in (OpCode.EQ, OpCode.NE):
            b = self.pop()
            a = self.pop()
            if a.tag is not b.tag:
                raise self._error(f"Type mismatch: cannot compare {a.tag.name.lower()} with {b.tag.name.lower()}")
            equal = a.payload == b.payload
            self.push(Value.boolean(equal if op is OpCode.EQ else not equal))

        elif op in (OpCode.AND, OpCode.OR):
            b = self.pop()
            a = self.pop()
            if a.tag is not b.tag or a.tag is Tag.STR:
                raise self._error(f"Type mismatch: {op.name.lower()} of {a.tag.name.lower()} and {b.tag.name.lower()}")
            if a.tag is Tag.BOOL:
                res = (a.payload and b.payload) if op is OpCode.AND else (a.payload or b.payload)
                self.push(Value.boolean(res))
            else:
                res = (a.payload & b.payload) if op is OpCode.AND else (a.payload | b.payload)
                self.push(Value.i32(res))

        elif op is OpCode.NOT:
            a = self.pop()
            if a.tag is Tag.BOOL:
                self.push(Value.boolean(not a.payload))
            elif a.tag is Tag.I32:
                self.push(Value.i32(~a.payload))
            else:
                raise self._error("Type mismatch: not of str")

        elif op is OpCode.GOTO:
            self._jump(operand[0])

        elif op is OpCode.IF_F:
            cond = self.pop_tagged(Tag.BOOL)
            if not cond.payload:
                self._jump(operand[0])

        elif op is OpCode.VIRTUAL:
            builtin = self.builtins.get(operand[0])
            if builtin is None:
                raise self._error(f"Unknown built-in id {operand[0]}")
            builtin(self)

        elif op is OpCode.RET:
            self.result = self.pop() if self.stack else None
            self.halted = True

        else:
            raise self._error(f"Unhandled opcode {op.name.lower()}")
