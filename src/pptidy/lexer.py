from dataclasses import dataclass
from enum import Enum, auto
from typing import NoReturn, cast

PUNCTUATORS: tuple[str, ...] = (
    "...",
    ">>=",
    "<<=",
    "->",
    "++",
    "--",
    "&&",
    "||",
    "<=",
    ">=",
    "==",
    "!=",
    "+=",
    "-=",
    "*=",
    "/=",
    "%=",
    "&=",
    "|=",
    "^=",
    "<<",
    ">>",
    "##",
    "<:",
    ":>",
    "<%",
    "%>",
    "%:",
    "%:%:",
    "[",
    "]",
    "(",
    ")",
    "{",
    "}",
    ".",
    "&",
    "*",
    "+",
    "-",
    "~",
    "!",
    "/",
    "%",
    "<",
    ">",
    "^",
    "|",
    "?",
    ":",
    ";",
    "=",
    ",",
    "#",
)

PUNCTUATORS_SORTED: tuple[str, ...] = cast(
    tuple[str, ...], tuple(sorted(PUNCTUATORS, key=len, reverse=True))
)


class TokenKind(Enum):
    IDENT = auto()
    PP_NUMBER = auto()
    CHAR_CONST = auto()
    STRING_LITERAL = auto()
    PUNCTUATOR = auto()
    HEADER_NAME = auto()
    OTHER = auto()
    EOF = auto()


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    lexeme: str | None
    line: int
    column: int
    end_line: int
    end_column: int


class LexerError(ValueError):
    def __init__(self, message: str, line: int, column: int) -> None:
        super().__init__(f"{message} at {line}:{column}")
        self.line = line
        self.column = column


def lex_pp(
    source: str,
    *,
    line: int = 1,
    column: int = 1,
    header_names: bool = False,
) -> list[Token]:
    """Tokenize directive text into preprocessing tokens.

    ``line`` and ``column`` give the position of the first character of
    ``source`` so token positions come out in file coordinates.
    """
    return Lexer(source, line=line, column=column, header_names=header_names).tokenize()


def block_comment_open_after(text: str, in_comment: bool) -> bool:
    """Return whether a ``/*`` comment is still open at the end of ``text``."""
    index = 0
    length = len(text)
    quote: str | None = None
    while index < length:
        ch = text[index]
        if in_comment:
            if text.startswith("*/", index):
                in_comment = False
                index += 2
                continue
            index += 1
            continue
        if quote is not None:
            if ch == "\\":
                index += 2
                continue
            if ch == quote or ch == "\n":
                quote = None
            index += 1
            continue
        if text.startswith("//", index):
            return False
        if text.startswith("/*", index):
            in_comment = True
            index += 2
            continue
        if ch in {'"', "'"}:
            quote = ch
        index += 1
    return in_comment


class Lexer:
    def __init__(
        self,
        source: str,
        *,
        line: int = 1,
        column: int = 1,
        header_names: bool = False,
    ) -> None:
        self._source = source
        self._length = len(source)
        self._index = 0
        self._line = line
        self._column = column
        self._header_names = header_names

    def tokenize(self) -> list[Token]:
        tokens: list[Token] = []
        while True:
            self._skip_whitespace_and_comments()
            start_line = self._line
            start_column = self._column
            if self._eof():
                tokens.append(
                    Token(TokenKind.EOF, None, start_line, start_column, start_line, start_column)
                )
                return tokens
            kind, lexeme = self._read_token()
            tokens.append(Token(kind, lexeme, start_line, start_column, self._line, self._column))

    def _read_token(self) -> tuple[TokenKind, str]:
        if self._header_names:
            header_name = self._maybe_read_header_name()
            if header_name is not None:
                return TokenKind.HEADER_NAME, header_name
        literal = self._maybe_read_literal()
        if literal is not None:
            return literal
        if self._is_number_start():
            return TokenKind.PP_NUMBER, self._read_pp_number()
        if self._is_identifier_start():
            return TokenKind.IDENT, self._read_identifier()
        for punct in PUNCTUATORS_SORTED:
            if self._source.startswith(punct, self._index):
                for _ in punct:
                    self._advance()
                return TokenKind.PUNCTUATOR, punct
        return TokenKind.OTHER, self._advance()

    def _peek(self, offset: int = 0) -> str:
        index = self._index + offset
        if index >= self._length:
            return ""
        return self._source[index]

    def _advance(self) -> str:
        if self._index >= self._length:
            return ""
        ch = self._source[self._index]
        self._index += 1
        if ch == "\n":
            self._line += 1
            self._column = 1
        else:
            self._column += 1
        return ch

    def _eof(self) -> bool:
        return self._index >= self._length

    def _skip_whitespace_and_comments(self) -> None:
        while not self._eof():
            ch = self._peek()
            if ch in " \t\v\f\r\n":
                self._advance()
                continue
            if ch == "\\" and self._peek(1) == "\n":
                self._advance()
                self._advance()
                continue
            if ch == "/" and self._peek(1) == "/":
                while not self._eof() and self._peek() != "\n":
                    self._advance()
                continue
            if ch == "/" and self._peek(1) == "*":
                start_line, start_column = self._line, self._column
                self._advance()
                self._advance()
                while not self._eof():
                    if self._peek() == "*" and self._peek(1) == "/":
                        self._advance()
                        self._advance()
                        break
                    self._advance()
                else:
                    self._error("Unterminated block comment", line=start_line, column=start_column)
                continue
            break

    def _is_identifier_start(self) -> bool:
        ch = self._peek()
        return ch == "_" or ch == "$" or ch.isalpha()

    def _read_identifier(self) -> str:
        start = self._index
        while not self._eof():
            ch = self._peek()
            if ch == "_" or ch == "$" or ch.isalnum():
                self._advance()
                continue
            break
        return self._source[start : self._index]

    def _maybe_read_literal(self) -> tuple[TokenKind, str] | None:
        start = self._index
        ch = self._peek()
        if ch in {'"', "'"}:
            return self._read_quoted(start)
        if ch == "u" and self._peek(1) == "8" and self._peek(2) in {'"', "'"}:
            self._advance()
            self._advance()
            return self._read_quoted(start)
        if ch in {"u", "U", "L"} and self._peek(1) in {'"', "'"}:
            self._advance()
            return self._read_quoted(start)
        return None

    def _read_quoted(self, start: int) -> tuple[TokenKind, str]:
        start_line, start_column = self._line, self._column
        quote = self._advance()
        kind = TokenKind.STRING_LITERAL if quote == '"' else TokenKind.CHAR_CONST
        while not self._eof():
            ch = self._peek()
            if ch == "\n":
                break
            self._advance()
            if ch == quote:
                return kind, self._source[start : self._index]
            if ch == "\\" and not self._eof():
                self._advance()
        name = "string literal" if kind is TokenKind.STRING_LITERAL else "character constant"
        self._error(f"Unterminated {name}", line=start_line, column=start_column)

    def _is_number_start(self) -> bool:
        ch = self._peek()
        if ch.isdigit():
            return True
        return ch == "." and self._peek(1).isdigit()

    def _read_pp_number(self) -> str:
        start = self._index
        self._advance()
        while not self._eof():
            ch = self._peek()
            next_ch = self._peek(1)
            if ch in {"e", "E", "p", "P"} and next_ch in {"+", "-"}:
                self._advance()
                self._advance()
                continue
            if ch.isdigit() or ch == "." or ch == "_" or ch.isalpha():
                self._advance()
                continue
            if ch == "'" and (next_ch.isalnum() or next_ch == "_"):
                self._advance()
                continue
            break
        return self._source[start : self._index]

    def _maybe_read_header_name(self) -> str | None:
        ch = self._peek()
        if ch not in {"<", '"'}:
            return None
        end_char = ">" if ch == "<" else '"'
        end = self._source.find(end_char, self._index + 1)
        newline = self._source.find("\n", self._index + 1)
        if end < 0 or (0 <= newline < end):
            return None
        start = self._index
        while self._index <= end:
            self._advance()
        return self._source[start : self._index]

    def _error(
        self, message: str, *, line: int | None = None, column: int | None = None
    ) -> NoReturn:
        raise LexerError(message, line or self._line, column or self._column)
