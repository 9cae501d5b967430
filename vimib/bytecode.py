from __future__ import annotations
from enum import IntEnum
from typing import Dict


class OpCode(IntEnum):
    # Stack and registers
    PUSH_I = 0x01      # operand: 4-byte big-endian i32
    PUSH_B = 0x02      # operand: 1 byte, 0 or 1
    LDC = 0xfa         # operand: constant index
    LOAD_I = 0xfb      # operand: register
    STO_I = 0xfc       # operand: register

    # Arithmetic (i32, wrapping)
    ADD_I = 0x0c
    SUB_I = 0x0d
    MUL_I = 0x0e
    DIV_I = 0x0f
    MOD_I = 0x10
    NEG = 0x18

    # Comparisons (push bool)
    NE = 0x11
    EQ = 0x12
    GT = 0x13
    LT = 0x14
    LE = 0x15
    GE = 0x16

    # Logical on bools, bitwise on i32
    NOT = 0x17
    AND = 0x19
    OR = 0x1a

    # Control flow
    IF_F = 0xa1        # operand: target address (pop bool; jump if false)
    GOTO = 0xc0        # operand: target address

    # Built-ins and exit
    VIRTUAL = 0xfe     # operand: built-in id
    RET = 0xff


OPERAND_WIDTH: Dict[OpCode, int] = {op: 0 for op in OpCode}
OPERAND_WIDTH.update({
    OpCode.PUSH_I: 4,
    OpCode.PUSH_B: 1,
    OpCode.LDC: 1,
    OpCode.LOAD_I: 1,
    OpCode.STO_I: 1,
    OpCode.IF_F: 1,
    OpCode.GOTO: 1,
    OpCode.VIRTUAL: 1,
})

JUMP_OPCODES = frozenset({OpCode.IF_F, OpCode.GOTO})

# Limits of the encoding: every register, constant index and jump target
# has to fit in a single operand byte.
MAX_REGISTERS = 256
MAX_CONSTANTS = 256
MAX_CODE_SIZE = 256

I32_MIN = -(1 << 31)
I32_MAX = (1 << 31) - 1


def wrap_i32(value: int) -> int:
    """Reduce an int to 32-bit two's complement."""
    value &= 0xFFFFFFFF
    if value & 0x80000000:
        value -= 1 << 32
    return value


def encode_i32(value: int) -> bytes:
    return value.to_bytes(4, "big", signed=True)


def decode_i32(data: bytes) -> int:
    return int.from_bytes(data, "big", signed=True)
