from typing import List, Optional
from .errors import SourceError
from .tokens import Token, TokenType, STATEMENT_KEYWORDS
from . import ast as A

class ParseError(SourceError):
    pass

# Deepest nesting of blocks, parentheses and unary operators accepted;
# keeps the recursive descent well inside the interpreter recursion limit.
MAX_NESTING = 48

def _describe(tok: Token) -> str:
    if tok.type == TokenType.EOF:
        return "end of input"
    return f"'{tok.lexeme}'"

class Parser:
    def __init__(self, tokens: List[Token]):
        self.tokens = list(tokens)
        if not self.tokens or self.tokens[-1].type != TokenType.EOF:
            last = self.tokens[-1] if self.tokens else None
            line = last.line if last else 1
            col = last.col + len(last.lexeme) if last else 1
            self.tokens.append(Token(TokenType.EOF, "", line, col))
        self.current = 0
        self.depth = 0

    def parse(self) -> A.Program:
        items: List[A.Stmt] = []
        while True:
            self._skip_separators()
            if self._is_at_end():
                break
            if self._check(TokenType.FN):
                items.append(self._function())
            else:
                items.append(self._statement())
        return A.Program(items)

    # Helpers
    def _match(self, *types: TokenType) -> bool:
        for t in types:
            if self._check(t):
                self._advance()
                return True
        return False

    def _consume(self, type_: TokenType, msg: str) -> Token:
        if self._check(type_):
            return self._advance()
        tok = self._peek()
        raise ParseError(f"{msg} (found {_describe(tok)})", tok.line, tok.col)

    def _check(self, type_: TokenType) -> bool:
        if self._is_at_end():
            return type_ == TokenType.EOF
        return self._peek().type == type_

    def _check_next(self, type_: TokenType) -> bool:
        if self.current + 1 >= len(self.tokens):
            return False
        return self.tokens[self.current + 1].type == type_

    def _advance(self) -> Token:
        if not self._is_at_end():
            self.current += 1
        return self._previous()

    def _is_at_end(self) -> bool:
        return self._peek().type == TokenType.EOF

    def _peek(self) -> Token:
        return self.tokens[self.current]

    def _previous(self) -> Token:
        return self.tokens[self.current - 1]

    def _enter(self):
        self.depth += 1
        if self.depth > MAX_NESTING:
            tok = self._peek()
            raise ParseError(f"Nesting deeper than {MAX_NESTING} levels", tok.line, tok.col)

    def _leave(self):
        self.depth -= 1

    def _skip_separators(self):
        while self._match(TokenType.SEMICOLON):
            pass

    # Grammar
    def _function(self) -> A.FnDecl:
        fn_tok = self._consume(TokenType.FN, "Expected 'fn' at function start")
        name_tok = self._consume(TokenType.IDENTIFIER, "Expected function name after 'fn'")
        self._consume(TokenType.LEFT_PAREN, "Expected '(' after function name")
        params: List[str] = []
        if not self._check(TokenType.RIGHT_PAREN):
            while True:
                params.append(self._consume(TokenType.IDENTIFIER, "Expected parameter name").lexeme)
                if not self._match(TokenType.COMMA):
                    break
        self._consume(TokenType.RIGHT_PAREN, "Expected ')' after parameters")
        body = self._block()
        return A.FnDecl(name_tok.lexeme, params, body, line=fn_tok.line, col=fn_tok.col)

    def _block(self) -> A.Block:
        self._consume(TokenType.LEFT_BRACE, "Expected '{' to start block")
        stmts: List[A.Stmt] = []
        self._enter()
        try:
            while True:
                self._skip_separators()
                if self._check(TokenType.RIGHT_BRACE) or self._is_at_end():
                    break
                stmts.append(self._statement())
        finally:
            self._leave()
        self._consume(TokenType.RIGHT_BRACE, "Expected '}' after block")
        return A.Block(stmts)

    def _statement(self) -> A.Stmt:
        tok = self._peek()
        if self._match(TokenType.LET):
            name = self._consume(TokenType.IDENTIFIER, "Expected variable name after 'let'").lexeme
            self._consume(TokenType.EQUAL, "Expected '=' after variable name")
            value = self._expression()
            return A.LetDecl(name, value, line=tok.line, col=tok.col)
        if self._match(TokenType.LOOP):
            body = self._block()
            return A.Loop(body, line=tok.line, col=tok.col)
        if self._match(TokenType.IF):
            return self._if_chain(tok)
        if self._match(TokenType.RETURN):
            value: Optional[A.Expr] = None
            if self._starts_return_value(tok):
                value = self._expression()
            return A.Return(value, line=tok.line, col=tok.col)
        if self._match(TokenType.BREAK):
            return A.Break(line=tok.line, col=tok.col)
        if self._check(TokenType.FN):
            raise ParseError("Function declarations are only allowed at the top level", tok.line, tok.col)
        if self._check(TokenType.IDENTIFIER) and self._check_next(TokenType.EQUAL):
            name = self._advance().lexeme
            self._advance()  # '='
            value = self._expression()
            return A.Assign(name, value, line=tok.line, col=tok.col)
        expr = self._expression()
        return A.ExprStmt(expr, line=tok.line, col=tok.col)

    def _starts_return_value(self, return_tok: Token) -> bool:
        # A bare `return` ends at a block close, a separator, a new
        # statement keyword or the end of its line.
        nxt = self._peek()
        if nxt.type in (TokenType.RIGHT_BRACE, TokenType.SEMICOLON, TokenType.EOF):
            return False
        if nxt.type in STATEMENT_KEYWORDS:
            return False
        return nxt.line == return_tok.line

    def _if_chain(self, if_tok: Token) -> A.If:
        cond = self._expression()
        then_block = self._block()
        elifs: List[A.ElseIf] = []
        else_block: Optional[A.Block] = None
        while self._match(TokenType.ELSE):
            if self._match(TokenType.IF):
                elif_cond = self._expression()
                elifs.append(A.ElseIf(elif_cond, self._block()))
            else:
                else_block = self._block()
                break
        return A.If(cond, then_block, elifs, else_block, line=if_tok.line, col=if_tok.col)

    def _expression(self) -> A.Expr:
        self._enter()
        try:
            return self._or()
        finally:
            self._leave()

    def _binary_level(self, next_level, *types: TokenType) -> A.Expr:
        expr = next_level()
        while self._match(*types):
            op_tok = self._previous()
            right = next_level()
            expr = A.Binary(expr, op_tok.lexeme, right, line=op_tok.line, col=op_tok.col)
        return expr

    def _or(self) -> A.Expr:
        return self._binary_level(self._and, TokenType.OR_OR)

    def _and(self) -> A.Expr:
        return self._binary_level(self._equality, TokenType.AND_AND)

    def _equality(self) -> A.Expr:
        return self._binary_level(self._comparison, TokenType.EQUAL_EQUAL, TokenType.BANG_EQUAL)

    def _comparison(self) -> A.Expr:
        return self._binary_level(
            self._term,
            TokenType.GREATER, TokenType.GREATER_EQUAL, TokenType.LESS, TokenType.LESS_EQUAL,
        )

    def _term(self) -> A.Expr:
        return self._binary_level(self._factor, TokenType.PLUS, TokenType.MINUS)

    def _factor(self) -> A.Expr:
        return self._binary_level(self._unary, TokenType.STAR, TokenType.SLASH, TokenType.PERCENT)

    def _unary(self) -> A.Expr:
        if self._match(TokenType.BANG, TokenType.MINUS):
            op_tok = self._previous()
            self._enter()
            try:
                operand = self._unary()
            finally:
                self._leave()
            return A.Unary(op_tok.lexeme, operand, line=op_tok.line, col=op_tok.col)
        return self._primary()

    def _call(self, name_tok: Token) -> A.Call:
        # IDENT '(' args? ')'
        args: List[A.Expr] = []
        if not self._check(TokenType.RIGHT_PAREN):
            while True:
                args.append(self._expression())
                if not self._match(TokenType.COMMA):
                    break
        self._consume(TokenType.RIGHT_PAREN, "Expected ')' after arguments")
        return A.Call(name_tok.lexeme, args, line=name_tok.line, col=name_tok.col)

    def _primary(self) -> A.Expr:
        tok = self._peek()
        if self._match(TokenType.FALSE):
            return A.Literal(False, line=tok.line, col=tok.col)
        if self._match(TokenType.TRUE):
            return A.Literal(True, line=tok.line, col=tok.col)
        if self._match(TokenType.NUMBER, TokenType.STRING):
            return A.Literal(tok.literal, line=tok.line, col=tok.col)
        if self._match(TokenType.IDENTIFIER):
            if self._match(TokenType.LEFT_PAREN):
                return self._call(tok)
            return A.Identifier(tok.lexeme, line=tok.line, col=tok.col)
        if self._match(TokenType.LEFT_PAREN):
            expr = self._expression()
            self._consume(TokenType.RIGHT_PAREN, "Expected ')' after expression")
            return expr
        raise ParseError(f"Expected expression (found {_describe(tok)})", tok.line, tok.col)
