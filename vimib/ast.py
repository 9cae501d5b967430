from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Union

# Source positions are carried for diagnostics only and never take part
# in equality, so two parses of the same text compare equal.

def _pos():
    return field(default=0, compare=False, repr=False)

# Expressions
@dataclass
class Expr:
    pass

@dataclass
class Literal(Expr):
    value: Union[int, float, str, bool]
    line: int = _pos()
    col: int = _pos()

@dataclass
class Identifier(Expr):
    name: str
    line: int = _pos()
    col: int = _pos()

@dataclass
class Unary(Expr):
    op: str
    operand: Expr
    line: int = _pos()
    col: int = _pos()

@dataclass
class Binary(Expr):
    left: Expr
    op: str
    right: Expr
    line: int = _pos()
    col: int = _pos()

@dataclass
class Call(Expr):
    name: str
    args: List[Expr]
    line: int = _pos()
    col: int = _pos()

# Statements
@dataclass
class Stmt:
    pass

@dataclass
class Block:
    statements: List[Stmt] = field(default_factory=list)

@dataclass
class ExprStmt(Stmt):
    expr: Expr
    line: int = _pos()
    col: int = _pos()

@dataclass
class LetDecl(Stmt):
    name: str
    value: Expr
    line: int = _pos()
    col: int = _pos()

@dataclass
class Assign(Stmt):
    name: str
    value: Expr
    line: int = _pos()
    col: int = _pos()

@dataclass
class Return(Stmt):
    value: Optional[Expr]
    line: int = _pos()
    col: int = _pos()

@dataclass
class Break(Stmt):
    line: int = _pos()
    col: int = _pos()

@dataclass
class ElseIf:
    cond: Expr
    block: Block

@dataclass
class If(Stmt):
    cond: Expr
    then_block: Block
    elifs: List[ElseIf] = field(default_factory=list)
    else_block: Optional[Block] = None
    line: int = _pos()
    col: int = _pos()

@dataclass
class Loop(Stmt):
    body: Block
    line: int = _pos()
    col: int = _pos()

@dataclass
class FnDecl(Stmt):
    name: str
    params: List[str]
    body: Block
    line: int = _pos()
    col: int = _pos()

@dataclass
class Program:
    items: List[Stmt] = field(default_factory=list)

    @property
    def functions(self) -> List[FnDecl]:
        return [item for item in self.items if isinstance(item, FnDecl)]
