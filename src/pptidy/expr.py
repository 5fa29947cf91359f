import re
from collections.abc import Callable
from dataclasses import dataclass

from pptidy.lexer import Token, TokenKind

_PP_INT_RE = re.compile(
    r"^(?:0[xX][0-9A-Fa-f]+|0[bB][01]+|[0-9]+)(?:[uU](?:ll|LL|[lL])?|(?:ll|LL|[lL])[uU]?)?$"
)
_CHAR_ESCAPES = {
    "n": 10,
    "t": 9,
    "r": 13,
    "a": 7,
    "b": 8,
    "f": 12,
    "v": 11,
    "\\": 92,
    "'": 39,
    '"': 34,
    "?": 63,
}
_UINT64_MASK = (1 << 64) - 1
_INT64_MIN = -(1 << 63)


class ConditionError(ValueError):
    def __init__(self, message: str, token: Token) -> None:
        super().__init__(message)
        self.message = message
        self.token = token


@dataclass(frozen=True)
class _PPValue:
    value: int
    is_unsigned: bool = False

    def as_unsigned(self) -> int:
        return self.value & _UINT64_MASK

    def normalize(self) -> "_PPValue":
        if self.is_unsigned:
            return _PPValue(self.value & _UINT64_MASK, True)
        value = self.value & _UINT64_MASK
        if value >= 1 << 63:
            value -= 1 << 64
        return _PPValue(value)


def parse_pp_integer_literal(text: str) -> int | None:
    text = text.replace("'", "")
    if _PP_INT_RE.fullmatch(text) is None:
        return None
    index = len(text)
    while index > 0 and text[index - 1] in "uUlL":
        index -= 1
    digits = text[:index]
    if digits.startswith(("0x", "0X")):
        return int(digits, 16)
    if digits.startswith(("0b", "0B")):
        return int(digits[2:], 2)
    if digits.startswith("0") and len(digits) > 1:
        if any(ch not in "01234567" for ch in digits):
            return None
        return int(digits, 8)
    return int(digits, 10)


def is_unsigned_pp_integer(text: str) -> bool:
    return parse_pp_integer_literal(text) is not None and any(ch in "uU" for ch in text)


def parse_char_constant(text: str) -> int | None:
    body = text
    while body and body[0] in "uUL8":
        body = body[1:]
    if len(body) < 3 or body[0] != "'" or body[-1] != "'":
        return None
    inner = body[1:-1]
    if inner[0] != "\\":
        return ord(inner[0]) if len(inner) == 1 else None
    escape = inner[1:]
    if escape in _CHAR_ESCAPES:
        return _CHAR_ESCAPES[escape]
    if escape.startswith("x"):
        try:
            return int(escape[1:], 16)
        except ValueError:
            return None
    if escape and all(ch in "01234567" for ch in escape) and len(escape) <= 3:
        return int(escape, 8)
    return None


def evaluate_condition(tokens: list[Token]) -> bool:
    """Evaluate an already macro-expanded ``#if`` expression.

    Identifiers left in the expression evaluate to 0. The token list must
    end with an EOF token.
    """
    return ConditionParser(tokens).evaluate().value != 0


class ConditionParser:
    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._index = 0
        self._unevaluated = 0

    def evaluate(self) -> _PPValue:
        if self._current().kind == TokenKind.EOF:
            raise ConditionError("Expected expression", self._current())
        value = self._parse_conditional()
        token = self._current()
        if token.kind != TokenKind.EOF:
            raise ConditionError(f"Unexpected token '{token.lexeme}'", token)
        return value

    def _parse_conditional(self) -> _PPValue:
        condition = self._parse_logical_or()
        if not self._check_punct("?"):
            return condition
        self._advance()
        taken = condition.value != 0
        then_value = self._parse_guarded(self._parse_conditional, evaluated=taken)
        self._expect_punct(":")
        else_value = self._parse_guarded(self._parse_conditional, evaluated=not taken)
        is_unsigned = then_value.is_unsigned or else_value.is_unsigned
        chosen = then_value if taken else else_value
        return _PPValue(chosen.value, is_unsigned).normalize()

    def _parse_logical_or(self) -> _PPValue:
        left = self._parse_logical_and()
        while self._check_punct("||"):
            self._advance()
            right = self._parse_guarded(self._parse_logical_and, evaluated=left.value == 0)
            left = _PPValue(int(left.value != 0 or right.value != 0))
        return left

    def _parse_logical_and(self) -> _PPValue:
        left = self._parse_binary(0)
        while self._check_punct("&&"):
            self._advance()
            right = self._parse_guarded(lambda: self._parse_binary(0), evaluated=left.value != 0)
            left = _PPValue(int(left.value != 0 and right.value != 0))
        return left

    def _parse_guarded(self, parse: Callable[[], _PPValue], *, evaluated: bool) -> _PPValue:
        if evaluated:
            return parse()
        self._unevaluated += 1
        try:
            return parse()
        finally:
            self._unevaluated -= 1

    def _parse_binary(self, level: int) -> _PPValue:
        if level == len(_BINARY_LEVELS):
            return self._parse_unary()
        left = self._parse_binary(level + 1)
        while True:
            token = self._current()
            if token.kind != TokenKind.PUNCTUATOR or token.lexeme not in _BINARY_LEVELS[level]:
                return left
            self._advance()
            right = self._parse_binary(level + 1)
            left = self._apply_binary(str(token.lexeme), left, right, token)

    def _apply_binary(self, op: str, left: _PPValue, right: _PPValue, token: Token) -> _PPValue:
        if op in {"<<", ">>"}:
            is_unsigned = left.is_unsigned
            left_value = left.as_unsigned() if is_unsigned else left.value
            shift = min(max(right.value, 0), 64)
            value = left_value << shift if op == "<<" else left_value >> shift
            return _PPValue(value, is_unsigned).normalize()
        is_unsigned = left.is_unsigned or right.is_unsigned
        left_value = left.as_unsigned() if is_unsigned else left.value
        right_value = right.as_unsigned() if is_unsigned else right.value
        if op in {"/", "%"} and right_value == 0:
            if self._unevaluated:
                return _PPValue(0, is_unsigned)
            raise ConditionError("Division by zero in preprocessor expression", token)
        if op == "==":
            return _PPValue(int(left_value == right_value))
        if op == "!=":
            return _PPValue(int(left_value != right_value))
        if op == "<":
            return _PPValue(int(left_value < right_value))
        if op == "<=":
            return _PPValue(int(left_value <= right_value))
        if op == ">":
            return _PPValue(int(left_value > right_value))
        if op == ">=":
            return _PPValue(int(left_value >= right_value))
        if op == "+":
            value = left_value + right_value
        elif op == "-":
            value = left_value - right_value
        elif op == "*":
            value = left_value * right_value
        elif op == "/":
            value = abs(left_value) // abs(right_value)
            if (left_value < 0) != (right_value < 0):
                value = -value
        elif op == "%":
            value = abs(left_value) % abs(right_value)
            if left_value < 0:
                value = -value
        elif op == "&":
            value = left_value & right_value
        elif op == "^":
            value = left_value ^ right_value
        else:
            value = left_value | right_value
        return _PPValue(value, is_unsigned).normalize()

    def _parse_unary(self) -> _PPValue:
        token = self._current()
        if token.kind == TokenKind.PUNCTUATOR and token.lexeme in {"+", "-", "!", "~"}:
            self._advance()
            operand = self._parse_unary()
            if token.lexeme == "!":
                return _PPValue(int(operand.value == 0))
            if token.lexeme == "+":
                return operand
            if token.lexeme == "-":
                return _PPValue(-operand.value, operand.is_unsigned).normalize()
            return _PPValue(~operand.value, operand.is_unsigned).normalize()
        return self._parse_primary()

    def _parse_primary(self) -> _PPValue:
        token = self._current()
        if token.kind == TokenKind.PP_NUMBER:
            self._advance()
            text = str(token.lexeme)
            value = parse_pp_integer_literal(text)
            if value is None:
                raise ConditionError(f"Invalid integer constant '{text}'", token)
            if is_unsigned_pp_integer(text) or value > (1 << 63) - 1:
                return _PPValue(value, True).normalize()
            return _PPValue(value)
        if token.kind == TokenKind.CHAR_CONST:
            self._advance()
            value = parse_char_constant(str(token.lexeme))
            if value is None:
                raise ConditionError(f"Invalid character constant {token.lexeme}", token)
            return _PPValue(value)
        if token.kind == TokenKind.IDENT:
            self._advance()
            if self._check_punct("("):
                self._skip_call_arguments()
            return _PPValue(0)
        if self._check_punct("("):
            self._advance()
            value = self._parse_conditional()
            self._expect_punct(")")
            return value
        if token.kind == TokenKind.EOF:
            raise ConditionError("Unexpected end of expression", token)
        raise ConditionError(f"Unexpected token '{token.lexeme}'", token)

    def _skip_call_arguments(self) -> None:
        depth = 0
        while True:
            token = self._current()
            if token.kind == TokenKind.EOF:
                raise ConditionError("Unterminated macro argument list", token)
            self._advance()
            if token.kind != TokenKind.PUNCTUATOR:
                continue
            if token.lexeme == "(":
                depth += 1
            elif token.lexeme == ")":
                depth -= 1
                if depth == 0:
                    return

    def _current(self) -> Token:
        return self._tokens[self._index]

    def _advance(self) -> Token:
        token = self._current()
        if token.kind != TokenKind.EOF:
            self._index += 1
        return token

    def _expect_punct(self, value: str) -> None:
        token = self._current()
        if token.kind != TokenKind.PUNCTUATOR or token.lexeme != value:
            raise ConditionError(f"Expected '{value}'", token)
        self._advance()

    def _check_punct(self, value: str) -> bool:
        token = self._current()
        return token.kind == TokenKind.PUNCTUATOR and token.lexeme == value


_BINARY_LEVELS: tuple[frozenset[str], ...] = (
    frozenset({"|"}),
    frozenset({"^"}),
    frozenset({"&"}),
    frozenset({"==", "!="}),
    frozenset({"<", "<=", ">", ">="}),
    frozenset({"<<", ">>"}),
    frozenset({"+", "-"}),
    frozenset({"*", "/", "%"}),
)
