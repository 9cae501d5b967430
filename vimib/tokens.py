from enum import Enum, auto
from dataclasses import dataclass
from typing import Optional, Union

class TokenType(Enum):
    # Single-character tokens
    LEFT_PAREN = auto()
    RIGHT_PAREN = auto()
    LEFT_BRACE = auto()
    RIGHT_BRACE = auto()
    COMMA = auto()
    DOT = auto()
    MINUS = auto()
    PLUS = auto()
    SEMICOLON = auto()
    SLASH = auto()
    STAR = auto()
    PERCENT = auto()
    COLON = auto()
    EQUAL = auto()

    # One or two character tokens
    BANG = auto()
    BANG_EQUAL = auto()
    EQUAL_EQUAL = auto()
    GREATER = auto()
    GREATER_EQUAL = auto()
    LESS = auto()
    LESS_EQUAL = auto()
    AND_AND = auto()
    OR_OR = auto()

    # Literals
    IDENTIFIER = auto()
    STRING = auto()
    NUMBER = auto()

    # Keywords
    FN = auto()
    LET = auto()
    LOOP = auto()
    IF = auto()
    ELSE = auto()
    RETURN = auto()
    BREAK = auto()
    TRUE = auto()
    FALSE = auto()

    EOF = auto()

KEYWORDS = {
    "fn": TokenType.FN,
    "let": TokenType.LET,
    "loop": TokenType.LOOP,
    "if": TokenType.IF,
    "else": TokenType.ELSE,
    "return": TokenType.RETURN,
    "break": TokenType.BREAK,
    "true": TokenType.TRUE,
    "false": TokenType.FALSE,
}

# Tokens that start a statement of their own
STATEMENT_KEYWORDS = frozenset({
    TokenType.LET,
    TokenType.LOOP,
    TokenType.IF,
    TokenType.RETURN,
    TokenType.BREAK,
    TokenType.FN,
})

@dataclass(frozen=True)
class Token:
    type: TokenType
    lexeme: str
    line: int
    col: int
    literal: Optional[Union[int, float, str]] = None

    def __repr__(self) -> str:
        lit = f" {self.literal!r}" if self.literal is not None else ""
        return f"{self.type.name} '{self.lexeme}'{lit} (@{self.line}:{self.col})"
