from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from . import ast as A
from .builtins import get_builtins
from .bytecode import (
    OpCode, OPERAND_WIDTH, MAX_REGISTERS, MAX_CONSTANTS, MAX_CODE_SIZE,
    I32_MIN, I32_MAX, encode_i32,
)
from .errors import VimibError

LOG = logging.getLogger("vimib.codegen")


class CodegenError(VimibError):
    UNSUPPORTED = "unsupported"
    UNDEFINED = "undefined"
    LIMIT = "limit"
    ARITY = "arity"
    INTERNAL = "internal"

    def __init__(self, message: str, kind: str, line: Optional[int] = None, col: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.line = line
        self.col = col


BINARY_OPS: Dict[str, OpCode] = {
    '+': OpCode.ADD_I,
    '-': OpCode.SUB_I,
    '*': OpCode.MUL_I,
    '/': OpCode.DIV_I,
    '%': OpCode.MOD_I,
    '==': OpCode.EQ,
    '!=': OpCode.NE,
    '<': OpCode.LT,
    '>': OpCode.GT,
    '<=': OpCode.LE,
    '>=': OpCode.GE,
    '&&': OpCode.AND,
    '||': OpCode.OR,
}

UNARY_OPS: Dict[str, OpCode] = {
    '-': OpCode.NEG,
    '!': OpCode.NOT,
}


class Label:
    """A jump target whose address is known only once it is marked."""

    def __init__(self):
        self.address: Optional[int] = None


@dataclass
class LoopContext:
    start: Label
    end: Label  # target of every `break` in the loop body


def _where(node) -> Tuple[Optional[int], Optional[int]]:
    return getattr(node, "line", None), getattr(node, "col", None)


def _is_i32_min_literal(e: A.Unary) -> bool:
    # -2147483648 parses as negation of a literal one past I32_MAX
    value = getattr(e.operand, "value", None)
    return (
        e.op == '-'
        and isinstance(e.operand, A.Literal)
        and not isinstance(value, bool)
        and value == -I32_MIN
    )


class CodeGenVM:
    def __init__(self):
        self._reset()

    def _reset(self):
        self.code = bytearray()
        self.constants: List[str] = []
        self._constant_index: Dict[str, int] = {}
        self.registers: Dict[str, int] = {}
        self.loops: List[LoopContext] = []
        self._fixups: List[Tuple[int, Label]] = []
        self._builtins = get_builtins()

    def generate(self, program: A.Program) -> Tuple[bytes, List[str]]:
        """Lower the program's top-level statements into one compiled unit.

        Returns the instruction bytes and the string constant pool. Jump
        operands are emitted as placeholders and written in a final pass,
        once every target address is known.
        """
        self._reset()
        for item in program.items:
            self._emit_stmt(item)
        self._resolve_jumps()
        LOG.debug(
            "generated %d bytes, %d constants, %d registers",
            len(self.code), len(self.constants), len(self.registers),
        )
        return bytes(self.code), list(self.constants)

    # Emission helpers
    def _emit(self, op: OpCode, operand: bytes = b""):
        if len(operand) != OPERAND_WIDTH[op]:
            raise CodegenError(
                f"{op.name.lower()} takes {OPERAND_WIDTH[op]} operand byte(s), got {len(operand)}",
                CodegenError.INTERNAL,
            )
        self.code.append(op)
        self.code.extend(operand)

    def _emit_u8(self, op: OpCode, value: int):
        self._emit(op, bytes([value]))

    def _emit_jump(self, op: OpCode, target: Label):
        self._emit_u8(op, 0)  # placeholder, written by _resolve_jumps
        self._fixups.append((len(self.code) - 1, target))

    def _mark(self, label: Label):
        label.address = len(self.code)

    def _resolve_jumps(self):
        if len(self.code) > MAX_CODE_SIZE:
            raise CodegenError(
                f"Compiled unit is {len(self.code)} bytes; at most {MAX_CODE_SIZE} are addressable",
                CodegenError.LIMIT,
            )
        for offset, label in self._fixups:
            if label.address is None:
                raise CodegenError(f"Jump at offset {offset} targets an unmarked label", CodegenError.INTERNAL)
            if label.address > 0xFF:
                raise CodegenError(
                    f"Jump target {label.address} does not fit in one byte",
                    CodegenError.LIMIT,
                )
            self.code[offset] = label.address

    def _add_constant(self, value: str, node: A.Expr) -> int:
        idx = self._constant_index.get(value)
        if idx is not None:
            return idx
        if len(self.constants) >= MAX_CONSTANTS:
            raise CodegenError(
                f"Too many string constants (max {MAX_CONSTANTS})", CodegenError.LIMIT, *_where(node)
            )
        idx = len(self.constants)
        self.constants.append(value)
        self._constant_index[value] = idx
        return idx

    def _allocate_register(self, name: str, node: A.Stmt) -> int:
        idx = self.registers.get(name)
        if idx is not None:
            return idx
        if len(self.registers) >= MAX_REGISTERS:
            raise CodegenError(
                f"Out of registers binding '{name}' (max {MAX_REGISTERS})", CodegenError.LIMIT, *_where(node)
            )
        idx = len(self.registers)
        self.registers[name] = idx
        return idx

    def _lookup_register(self, name: str, node) -> int:
        idx = self.registers.get(name)
        if idx is None:
            raise CodegenError(f"Variable '{name}' is undefined", CodegenError.UNDEFINED, *_where(node))
        return idx

    # Statements
    def _emit_block(self, block: A.Block):
        for st in block.statements:
            self._emit_stmt(st)

    def _emit_stmt(self, st: A.Stmt):
        if isinstance(st, A.LetDecl):
            self._emit_expr(st.value)
            self._emit_u8(OpCode.STO_I, self._allocate_register(st.name, st))
        elif isinstance(st, A.Assign):
            idx = self._lookup_register(st.name, st)
            self._emit_expr(st.value)
            self._emit_u8(OpCode.STO_I, idx)
        elif isinstance(st, A.ExprStmt):
            # the value stays on the stack
            self._emit_expr(st.expr)
        elif isinstance(st, A.If):
            self._emit_if(st)
        elif isinstance(st, A.Loop):
            self._emit_loop(st)
        elif isinstance(st, A.Break):
            if not self.loops:
                raise CodegenError("'break' outside of a loop", CodegenError.UNSUPPORTED, *_where(st))
            self._emit_jump(OpCode.GOTO, self.loops[-1].end)
        elif isinstance(st, A.Return):
            if st.value is not None:
                self._emit_expr(st.value)
            self._emit(OpCode.RET)
        elif isinstance(st, A.FnDecl):
            raise CodegenError(
                f"Code generation for function '{st.name}' is not supported; "
                "only top-level statements are compiled",
                CodegenError.UNSUPPORTED, *_where(st),
            )
        else:
            raise CodegenError(f"Cannot compile statement {type(st).__name__}", CodegenError.UNSUPPORTED)

    def _emit_if(self, st: A.If):
        clauses = [(st.cond, st.then_block)] + [(e.cond, e.block) for e in st.elifs]
        end = Label()
        for i, (cond, block) in enumerate(clauses):
            is_last = i == len(clauses) - 1
            next_clause = Label()
            self._emit_expr(cond)
            self._emit_jump(OpCode.IF_F, next_clause)
            self._emit_block(block)
            if not is_last or st.else_block is not None:
                self._emit_jump(OpCode.GOTO, end)
            self._mark(next_clause)
        if st.else_block is not None:
            self._emit_block(st.else_block)
        self._mark(end)

    def _emit_loop(self, st: A.Loop):
        loop = LoopContext(start=Label(), end=Label())
        self._mark(loop.start)
        self.loops.append(loop)
        try:
            self._emit_block(st.body)
        finally:
            self.loops.pop()
        self._emit_jump(OpCode.GOTO, loop.start)
        self._mark(loop.end)

    # Expressions
    def _emit_expr(self, e: A.Expr):
        if isinstance(e, A.Literal):
            self._emit_literal(e)
        elif isinstance(e, A.Identifier):
            self._emit_u8(OpCode.LOAD_I, self._lookup_register(e.name, e))
        elif isinstance(e, A.Unary) and _is_i32_min_literal(e):
            self._emit(OpCode.PUSH_I, encode_i32(I32_MIN))
        elif isinstance(e, A.Unary):
            self._emit_expr(e.operand)
            op = UNARY_OPS.get(e.op)
            if op is None:
                raise CodegenError(f"Unknown unary operator '{e.op}'", CodegenError.UNSUPPORTED, *_where(e))
            self._emit(op)
        elif isinstance(e, A.Binary):
            op = BINARY_OPS.get(e.op)
            if op is None:
                raise CodegenError(f"Unknown binary operator '{e.op}'", CodegenError.UNSUPPORTED, *_where(e))
            self._emit_expr(e.left)
            self._emit_expr(e.right)
            self._emit(op)
        elif isinstance(e, A.Call):
            self._emit_call(e)
        else:
            raise CodegenError(f"Cannot compile expression {type(e).__name__}", CodegenError.UNSUPPORTED)

    def _emit_literal(self, e: A.Literal):
        value = e.value
        if isinstance(value, bool):
            self._emit_u8(OpCode.PUSH_B, 1 if value else 0)
        elif isinstance(value, int):
            if not I32_MIN <= value <= I32_MAX:
                raise CodegenError(
                    f"Integer literal {value} does not fit in 32 bits", CodegenError.LIMIT, *_where(e)
                )
            self._emit(OpCode.PUSH_I, encode_i32(value))
        elif isinstance(value, str):
            self._emit_u8(OpCode.LDC, self._add_constant(value, e))
        else:
            raise CodegenError(
                f"Literal {value!r} has no runtime representation", CodegenError.UNSUPPORTED, *_where(e)
            )

    def _emit_call(self, e: A.Call):
        builtin = self._builtins.get(e.name)
        if builtin is None:
            raise CodegenError(
                f"Call to '{e.name}' is not supported; only built-in calls are compiled",
                CodegenError.UNSUPPORTED, *_where(e),
            )
        if len(e.args) != builtin.arity:
            raise CodegenError(
                f"'{e.name}' takes {builtin.arity} argument(s), got {len(e.args)}",
                CodegenError.ARITY, *_where(e),
            )
        for arg in e.args:
            self._emit_expr(arg)
        self._emit_u8(OpCode.VIRTUAL, builtin.id)
