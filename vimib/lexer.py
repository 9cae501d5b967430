from typing import Iterator, List
from .errors import SourceError
from .tokens import Token, TokenType, KEYWORDS


class LexError(SourceError):
    pass


SINGLE_CHAR_TOKENS = {
    '(': TokenType.LEFT_PAREN,
    ')': TokenType.RIGHT_PAREN,
    '{': TokenType.LEFT_BRACE,
    '}': TokenType.RIGHT_BRACE,
    ',': TokenType.COMMA,
    '.': TokenType.DOT,
    '-': TokenType.MINUS,
    '+': TokenType.PLUS,
    ';': TokenType.SEMICOLON,
    '*': TokenType.STAR,
    '%': TokenType.PERCENT,
    ':': TokenType.COLON,
}


class Lexer:
    """Turns source text into tokens.

    Iterating a Lexer scans lazily and always starts again from the
    beginning of the source; the last token produced is EOF.
    """

    def __init__(self, source: str):
        self.source = source
        self.start = 0
        self.current = 0
        self.line = 1
        self.col = 1
        self._start_line = 1
        self._start_col = 1

    def __iter__(self) -> Iterator[Token]:
        return Lexer(self.source)._scan()

    def tokenize(self) -> List[Token]:
        return list(self)

    def _scan(self) -> Iterator[Token]:
        while True:
            self._skip_whitespace_and_comments()
            if self._is_at_end():
                break
            self.start = self.current
            self._start_line = self.line
            self._start_col = self.col
            yield self._scan_token()
        yield Token(TokenType.EOF, "", self.line, self.col)

    def _is_at_end(self) -> bool:
        return self.current >= len(self.source)

    def _advance(self) -> str:
        ch = self.source[self.current]
        self.current += 1
        if ch == '\n':
            self.line += 1
            self.col = 1
        else:
            self.col += 1
        return ch

    def _peek(self) -> str:
        if self._is_at_end():
            return "\0"
        return self.source[self.current]

    def _peek_next(self) -> str:
        if self.current + 1 >= len(self.source):
            return "\0"
        return self.source[self.current + 1]

    def _match(self, expected: str) -> bool:
        if self._is_at_end():
            return False
        if self.source[self.current] != expected:
            return False
        self._advance()
        return True

    def _make_token(self, type_: TokenType, literal=None) -> Token:
        text = self.source[self.start:self.current]
        return Token(type_, text, self._start_line, self._start_col, literal)

    def _error(self, message: str) -> LexError:
        return LexError(message, self._start_line, self._start_col)

    def _skip_whitespace_and_comments(self):
        while not self._is_at_end():
            c = self._peek()
            if c in ' \r\t\n':
                self._advance()
            elif c == '/' and self._peek_next() == '/':
                while self._peek() != '\n' and not self._is_at_end():
                    self._advance()
            elif c == '/' and self._peek_next() == '*':
                self.start = self.current
                self._start_line = self.line
                self._start_col = self.col
                self._advance()
                self._advance()
                while not (self._peek() == '*' and self._peek_next() == '/'):
                    if self._is_at_end():
                        raise self._error("Unterminated block comment")
                    self._advance()
                self._advance()
                self._advance()
            else:
                return

    def _scan_token(self) -> Token:
        c = self._advance()

        if c in SINGLE_CHAR_TOKENS:
            return self._make_token(SINGLE_CHAR_TOKENS[c])
        if c == '/':
            return self._make_token(TokenType.SLASH)
        if c == '!':
            return self._make_token(TokenType.BANG_EQUAL if self._match('=') else TokenType.BANG)
        if c == '=':
            return self._make_token(TokenType.EQUAL_EQUAL if self._match('=') else TokenType.EQUAL)
        if c == '<':
            return self._make_token(TokenType.LESS_EQUAL if self._match('=') else TokenType.LESS)
        if c == '>':
            return self._make_token(TokenType.GREATER_EQUAL if self._match('=') else TokenType.GREATER)
        if c == '&':
            if self._match('&'):
                return self._make_token(TokenType.AND_AND)
            raise self._error("Unexpected character '&' (did you mean '&&'?)")
        if c == '|':
            if self._match('|'):
                return self._make_token(TokenType.OR_OR)
            raise self._error("Unexpected character '|' (did you mean '||'?)")
        if c == '"':
            return self._string()
        if c.isascii() and c.isdigit():
            return self._number()
        if (c.isascii() and c.isalpha()) or c == '_':
            return self._identifier()

        raise self._error(f"Unexpected character {c!r}")

    def _string(self) -> Token:
        value_chars = []
        while self._peek() != '"' and not self._is_at_end():
            value_chars.append(self._advance())
        if self._is_at_end():
            raise self._error("Unterminated string")
        self._advance()  # closing quote
        return self._make_token(TokenType.STRING, ''.join(value_chars))

    def _number(self) -> Token:
        while self._peek().isascii() and self._peek().isdigit():
            self._advance()
        # Fractional part only when a digit follows the dot
        if self._peek() == '.' and self._peek_next().isascii() and self._peek_next().isdigit():
            self._advance()
            while self._peek().isascii() and self._peek().isdigit():
                self._advance()
            text = self.source[self.start:self.current]
            return self._make_token(TokenType.NUMBER, float(text))
        text = self.source[self.start:self.current]
        try:
            value = int(text)
        except ValueError:
            # int() refuses digit strings past sys.get_int_max_str_digits()
            raise self._error(f"Number literal too long ({len(text)} digits)") from None
        return self._make_token(TokenType.NUMBER, value)

    def _identifier(self) -> Token:
        while (self._peek().isascii() and self._peek().isalnum()) or self._peek() == '_':
            self._advance()
        text = self.source[self.start:self.current]
        return self._make_token(KEYWORDS.get(text, TokenType.IDENTIFIER))
