"""
Restricted arithmetic evaluator for spoken/typed sums like "2 + 2" or "(10 - 4) / 3".

Grammar (recursive descent, no eval):
    expr   := term (("+" | "-") term)*
    term   := factor (("*" | "/") factor)*
    factor := ("+" | "-") factor | NUMBER | "(" expr ")"

Only numerals, decimal points, whitespace and + - * / ( ) are accepted.
"""

from __future__ import annotations

import math
import re
from typing import List, Optional, Union

Number = Union[int, float]

# Whole-input check: pure arithmetic with at least one digit
ARITHMETIC_RE = re.compile(r"^[\d\s+\-*/().]+$")
_TOKEN_RE = re.compile(r"\s*(?:(\d+(?:\.\d*)?|\.\d+)|(.))")

# Deeply nested parentheses are rejected rather than recursing without bound
_MAX_DEPTH = 32

# Longest accepted numeral, and largest result magnitude, in decimal digits
_MAX_NUMERAL_DIGITS = 100
_MAX_RESULT_DIGITS = 300


class ExpressionError(ValueError):
    """Raised for syntax errors, division by zero or out-of-range values."""


def _checked(value: Number) -> Number:
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ExpressionError("result out of range")
    elif abs(value).bit_length() > _MAX_RESULT_DIGITS * 10 // 3:
        raise ExpressionError("result out of range")
    return value


def looks_like_arithmetic(text: str) -> bool:
    """True when text contains only arithmetic characters and at least one operator."""
    t = (text or "").strip()
    if not t or not ARITHMETIC_RE.match(t):
        return False
    if not any(ch.isdigit() for ch in t):
        return False
    # A bare number ("42") or a dotted version ("1.2.3") is not a calculation
    return bool(re.search(r"[+\-*/]", t))


def _tokenize(text: str) -> List[str]:
    tokens: List[str] = []
    pos = 0
    text = text.strip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            break
        number, op = m.group(1), m.group(2)
        if number is not None:
            tokens.append(number)
        elif op is not None and not op.isspace():
            if op not in "+-*/()":
                raise ExpressionError(f"unexpected character {op!r}")
            tokens.append(op)
        pos = m.end()
    return tokens


class _Parser:
    def __init__(self, tokens: List[str]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> Optional[str]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def take(self) -> str:
        tok = self.peek()
        if tok is None:
            raise ExpressionError("unexpected end of expression")
        self.pos += 1
        return tok

    def expr(self, depth: int = 0) -> Number:
        value = self.term(depth)
        while self.peek() in ("+", "-"):
            op = self.take()
            rhs = self.term(depth)
            value = _checked(value + rhs if op == "+" else value - rhs)
        return value

    def term(self, depth: int) -> Number:
        value = self.factor(depth)
        while self.peek() in ("*", "/"):
            op = self.take()
            rhs = self.factor(depth)
            if op == "*":
                value = _checked(value * rhs)
                continue
            if rhs == 0:
                raise ExpressionError("division by zero")
            try:
                value = _checked(value / rhs)
            except OverflowError:
                raise ExpressionError("result out of range") from None
        return value

    def factor(self, depth: int) -> Number:
        if depth > _MAX_DEPTH:
            raise ExpressionError("expression nested too deeply")
        tok = self.take()
        if tok == "+":
            return self.factor(depth + 1)
        if tok == "-":
            return -self.factor(depth + 1)
        if tok == "(":
            value = self.expr(depth + 1)
            if self.take() != ")":
                raise ExpressionError("missing closing parenthesis")
            return value
        if tok in ("*", "/", ")"):
            raise ExpressionError(f"unexpected operator {tok!r}")
        if len(tok) > _MAX_NUMERAL_DIGITS:
            raise ExpressionError("number too long")
        return float(tok) if "." in tok else int(tok)


def evaluate(text: str) -> Number:
    """
    Evaluate a restricted arithmetic expression.

    Raises:
        ExpressionError: on any syntax error, division by zero, or a number
            or result too large to speak
    """
    tokens = _tokenize(text)
    if not tokens:
        raise ExpressionError("empty expression")
    parser = _Parser(tokens)
    value = parser.expr()
    if parser.peek() is not None:
        raise ExpressionError(f"unexpected token {parser.peek()!r}")
    return value


def format_number(value: Number) -> str:
    """Render a result the way it should be spoken: 4, 2.5, 0.333333"""
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.6f}".rstrip("0").rstrip(".")
    return str(value)
