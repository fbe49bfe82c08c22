"""
Script sandbox: compile 2D animation scripts into draw routines.

Planner scripts are the body of a JavaScript function
``(ctx, width, height, frameCount)``. They are parsed into a small AST and
run by a tree-walking interpreter; nothing is handed to ``eval``/``exec``.

Supported subset:
- literals: numbers, strings, template strings, true/false/null/undefined,
  arrays, objects
- let/const/var, assignment (= += -= *= /= %=), ++/--
- if/else, for(;;), for...of, while, break, continue, return, throw
- function declarations, function expressions, arrow functions
- arithmetic, comparison, logical, conditional (?:) operators
- Math.*, parseInt, parseFloat, isNaN, Number, String, console.log
- host objects (the canvas context) expose only whitelisted members

Each invocation runs under a step budget so a runaway loop fails that
frame instead of hanging the animation.
"""

import logging
import math
import random
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from visionviz.errors import ScriptCompileError, ScriptRuntimeError

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 200_000
MAX_CALL_DEPTH = 64
MAX_SOURCE_LENGTH = 100_000
MAX_STRING_LENGTH = 1_000_000

DRAW_PARAMS = ("ctx", "width", "height", "frameCount")


class _Undefined:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "undefined"

    def __bool__(self):
        return False


UNDEFINED = _Undefined()


# ==============================================================================
# HOST OBJECTS
# ==============================================================================


class NativeFunction:
    """Python callable exposed to scripts."""

    def __init__(self, func: Callable, name: str = "native"):
        self.func = func
        self.name = name

    def __repr__(self):
        return f"<native {self.name}>"


class HostObject:
    """
    Base for Python objects reachable from scripts.

    Subclasses map script-visible names to Python attribute names; nothing
    outside those maps can be read, written or called.
    """

    sandbox_methods: Mapping[str, str] = {}
    sandbox_properties: Mapping[str, str] = {}
    sandbox_readonly: frozenset = frozenset()

    def sandbox_get(self, name: str) -> Any:
        if name in self.sandbox_methods:
            return NativeFunction(getattr(self, self.sandbox_methods[name]), name)
        if name in self.sandbox_properties:
            return getattr(self, self.sandbox_properties[name])
        return UNDEFINED

    def sandbox_set(self, name: str, value: Any) -> None:
        if name not in self.sandbox_properties or name in self.sandbox_readonly:
            raise ScriptRuntimeError(f"Cannot set '{name}' on {type(self).__name__}")
        setattr(self, self.sandbox_properties[name], value)


# ==============================================================================
# TOKENIZER
# ==============================================================================


@dataclass(frozen=True)
class Token:
    kind: str  # "number", "string", "template", "name", "op", "eof"
    value: Any
    line: int


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>[ \t\r\f\v]+)
    |(?P<newline>\n)
    |(?P<comment>//[^\n]*|/\*.*?\*/)
    |(?P<number>0[xX][0-9a-fA-F]+|(?:\d+\.\d*|\.\d+|\d+)(?:[eE][+-]?\d+)?)
    |(?P<string>'(?:\\.|[^'\\\n])*'|"(?:\\.|[^"\\\n])*")
    |(?P<template>`(?:\\.|[^`\\])*`)
    |(?P<name>[A-Za-z_$][A-Za-z0-9_$]*)
    |(?P<op>===|!==|\*\*=|\.\.\.|=>|==|!=|<=|>=|&&|\|\||\?\?|\+\+|--|\+=|-=|\*=|/=|%=|\*\*|[-+*/%<>=!?:.,;(){}\[\]])
    """,
    re.VERBOSE | re.DOTALL,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", "b": "\b", "f": "\f", "v": "\v"}


def _unescape(body: str) -> str:
    def repl(m):
        ch = m.group(1)
        if ch.startswith("u"):
            return chr(int(ch[1:], 16))
        if ch.startswith("x"):
            return chr(int(ch[1:], 16))
        return _ESCAPES.get(ch, ch)

    return re.sub(r"\\(u[0-9a-fA-F]{4}|x[0-9a-fA-F]{2}|.)", repl, body, flags=re.DOTALL)


def tokenize(source: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    line = 1
    while pos < len(source):
        m = _TOKEN_RE.match(source, pos)
        if m is None:
            raise ScriptCompileError(f"Unexpected character {source[pos]!r}", line)
        kind = m.lastgroup
        text = m.group(kind)
        if kind == "number":
            value = float(int(text, 16)) if text[:2].lower() == "0x" else float(text)
            tokens.append(Token("number", value, line))
        elif kind == "string":
            tokens.append(Token("string", _unescape(text[1:-1]), line))
        elif kind == "template":
            tokens.append(Token("template", text[1:-1], line))
        elif kind in ("name", "op"):
            tokens.append(Token(kind, text, line))
        line += text.count("\n")
        pos = m.end()
    tokens.append(Token("eof", None, line))
    return tokens


# ==============================================================================
# PARSER
# ==============================================================================

_ASSIGN_OPS = ("=", "+=", "-=", "*=", "/=", "%=", "**=")

# Binary operators by precedence, lowest first.
_BINARY_LEVELS = [
    ("??",),
    ("||",),
    ("&&",),
    ("==", "!=", "===", "!=="),
    ("<", ">", "<=", ">="),
    ("+", "-"),
    ("*", "/", "%"),
]

_LOGICAL_OPS = ("&&", "||", "??")


class Parser:
    """Recursive-descent parser producing tuple-based AST nodes."""

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    # -- token helpers -------------------------------------------------

    @property
    def tok(self) -> Token:
        return self.tokens[self.pos]

    def _peek(self, offset: int = 1) -> Token:
        idx = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[idx]

    def _is(self, kind: str, value: Any = None) -> bool:
        t = self.tok
        return t.kind == kind and (value is None or t.value == value)

    def _is_op(self, *values: str) -> bool:
        return self.tok.kind == "op" and self.tok.value in values

    def _is_kw(self, *values: str) -> bool:
        return self.tok.kind == "name" and self.tok.value in values

    def _advance(self) -> Token:
        t = self.tok
        if t.kind != "eof":
            self.pos += 1
        return t

    def _expect_op(self, value: str) -> Token:
        if not self._is_op(value):
            self._error(f"Expected '{value}'")
        return self._advance()

    def _expect_name(self) -> str:
        if self.tok.kind != "name":
            self._error("Expected identifier")
        return self._advance().value

    def _error(self, message: str):
        t = self.tok
        found = "end of script" if t.kind == "eof" else repr(t.value)
        raise ScriptCompileError(f"{message}, found {found}", t.line)

    def _skip_semicolons(self) -> None:
        while self._is_op(";"):
            self._advance()

    # -- statements ----------------------------------------------------

    def parse_program(self) -> List[tuple]:
        body = []
        self._skip_semicolons()
        while not self._is("eof"):
            body.append(self.parse_statement())
            self._skip_semicolons()
        return body

    def parse_statement(self) -> tuple:
        line = self.tok.line
        if self._is_op("{"):
            return self._parse_block()
        if self._is_op(";"):
            self._advance()
            return ("empty",)
        if self._is_kw("let", "const", "var"):
            node = self._parse_var()
            self._end_statement()
            return node
        if self._is_kw("if"):
            return self._parse_if()
        if self._is_kw("for"):
            return self._parse_for()
        if self._is_kw("while"):
            self._advance()
            self._expect_op("(")
            cond = self.parse_expression()
            self._expect_op(")")
            return ("while", cond, self.parse_statement(), line)
        if self._is_kw("function") and self._peek().kind == "name":
            self._advance()
            name = self._expect_name()
            params, body = self._parse_function_rest()
            return ("func_decl", name, params, body)
        if self._is_kw("return"):
            self._advance()
            value = None
            if not self._is_op(";", "}") and not self._is("eof"):
                value = self.parse_expression()
            self._end_statement()
            return ("return", value)
        if self._is_kw("break", "continue"):
            kind = self._advance().value
            self._end_statement()
            return (kind,)
        if self._is_kw("throw"):
            self._advance()
            value = self.parse_expression()
            self._end_statement()
            return ("throw", value, line)
        expr = self.parse_expression()
        self._end_statement()
        return ("expr", expr, line)

    def _end_statement(self) -> None:
        # Semicolons are optional before '}' and end of script, and after a newline.
        if self._is_op(";"):
            self._advance()
            return
        if self._is_op("}") or self._is("eof"):
            return
        prev = self.tokens[self.pos - 1] if self.pos else None
        if prev is not None and prev.line < self.tok.line:
            return
        self._error("Expected ';'")

    def _parse_block(self) -> tuple:
        self._expect_op("{")
        body = []
        self._skip_semicolons()
        while not self._is_op("}"):
            if self._is("eof"):
                self._error("Unterminated block")
            body.append(self.parse_statement())
            self._skip_semicolons()
        self._advance()
        return ("block", body)

    def _parse_var(self) -> tuple:
        kind = self._advance().value
        decls = []
        while True:
            name = self._expect_name()
            init = None
            if self._is_op("="):
                self._advance()
                init = self.parse_assignment()
            elif kind == "const" and not self._is_kw("of"):
                self._error(f"Missing initializer in const declaration '{name}'")
            decls.append((name, init))
            if not self._is_op(","):
                break
            self._advance()
        return ("var", decls)

    def _parse_if(self) -> tuple:
        self._advance()
        self._expect_op("(")
        cond = self.parse_expression()
        self._expect_op(")")
        then = self.parse_statement()
        otherwise = None
        self._skip_semicolons_before_else()
        if self._is_kw("else"):
            self._advance()
            otherwise = self.parse_statement()
        return ("if", cond, then, otherwise)

    def _skip_semicolons_before_else(self) -> None:
        save = self.pos
        self._skip_semicolons()
        if not self._is_kw("else"):
            self.pos = save

    def _parse_for(self) -> tuple:
        line = self._advance().line
        self._expect_op("(")

        # for (const x of items)
        if self._is_kw("let", "const", "var") and self._peek(2).kind == "name" \
                and self._peek(2).value == "of":
            self._advance()
            name = self._expect_name()
            self._advance()  # of
            iterable = self.parse_expression()
            self._expect_op(")")
            return ("for_of", name, iterable, self.parse_statement(), line)

        init = None
        if not self._is_op(";"):
            if self._is_kw("let", "const", "var"):
                init = self._parse_var()
            else:
                init = ("expr", self.parse_expression(), line)
        self._expect_op(";")
        cond = None if self._is_op(";") else self.parse_expression()
        self._expect_op(";")
        update = None if self._is_op(")") else self.parse_expression()
        self._expect_op(")")
        return ("for", init, cond, update, self.parse_statement(), line)

    def _parse_function_rest(self) -> Tuple[List[str], tuple]:
        self._expect_op("(")
        params = self._parse_params()
        body = self._parse_block()
        return params, body

    def _parse_params(self) -> List[str]:
        params = []
        while not self._is_op(")"):
            params.append(self._expect_name())
            if self._is_op("="):
                self._error("Default parameters are not supported")
            if not self._is_op(")"):
                self._expect_op(",")
        self._advance()
        return params

    # -- expressions ---------------------------------------------------

    def parse_expression(self) -> tuple:
        expr = self.parse_assignment()
        if self._is_op(","):
            exprs = [expr]
            while self._is_op(","):
                self._advance()
                exprs.append(self.parse_assignment())
            return ("seq", exprs)
        return expr

    def parse_assignment(self) -> tuple:
        if self._arrow_ahead():
            return self._parse_arrow()

        target = self._parse_conditional()
        if self._is_op(*_ASSIGN_OPS):
            op = self._advance().value
            if target[0] not in ("name", "member", "index"):
                self._error("Invalid assignment target")
            value = self.parse_assignment()
            return ("assign", op, target, value)
        return target

    def _arrow_ahead(self) -> bool:
        if self.tok.kind == "name" and self._peek().kind == "op" and self._peek().value == "=>":
            return True
        if not self._is_op("("):
            return False
        depth = 0
        i = self.pos
        while i < len(self.tokens):
            t = self.tokens[i]
            if t.kind == "op" and t.value == "(":
                depth += 1
            elif t.kind == "op" and t.value == ")":
                depth -= 1
                if depth == 0:
                    nxt = self.tokens[i + 1] if i + 1 < len(self.tokens) else None
                    return nxt is not None and nxt.kind == "op" and nxt.value == "=>"
            elif t.kind == "eof":
                return False
            i += 1
        return False

    def _parse_arrow(self) -> tuple:
        if self.tok.kind == "name":
            params = [self._advance().value]
        else:
            self._advance()
            params = self._parse_params()
        self._expect_op("=>")
        if self._is_op("{"):
            return ("func", params, self._parse_block(), False)
        return ("func", params, self.parse_assignment(), True)

    def _parse_conditional(self) -> tuple:
        test = self._parse_binary(0)
        if self._is_op("?"):
            self._advance()
            consequent = self.parse_assignment()
            self._expect_op(":")
            alternate = self.parse_assignment()
            return ("cond", test, consequent, alternate)
        return test

    def _parse_binary(self, level: int) -> tuple:
        if level >= len(_BINARY_LEVELS):
            return self._parse_exponent()
        left = self._parse_binary(level + 1)
        ops = _BINARY_LEVELS[level]
        while self._is_op(*ops):
            op = self._advance().value
            right = self._parse_binary(level + 1)
            tag = "logical" if op in _LOGICAL_OPS else "binary"
            left = (tag, op, left, right)
        return left

    def _parse_exponent(self) -> tuple:
        base = self._parse_unary()
        if self._is_op("**"):
            self._advance()
            return ("binary", "**", base, self._parse_exponent())
        return base

    def _parse_unary(self) -> tuple:
        if self._is_op("-", "+", "!"):
            op = self._advance().value
            return ("unary", op, self._parse_unary())
        if self._is_kw("typeof"):
            self._advance()
            return ("unary", "typeof", self._parse_unary())
        if self._is_op("++", "--"):
            op = self._advance().value
            target = self._parse_unary()
            if target[0] not in ("name", "member", "index"):
                self._error("Invalid update target")
            return ("update", op, True, target)
        return self._parse_postfix()

    def _parse_postfix(self) -> tuple:
        expr = self._parse_call()
        if self._is_op("++", "--"):
            prev = self.tokens[self.pos - 1]
            if prev.line == self.tok.line:
                if expr[0] not in ("name", "member", "index"):
                    self._error("Invalid update target")
                op = self._advance().value
                return ("update", op, False, expr)
        return expr

    def _parse_call(self) -> tuple:
        expr = self._parse_primary()
        while True:
            if self._is_op("."):
                self._advance()
                expr = ("member", expr, self._expect_name())
            elif self._is_op("["):
                self._advance()
                index = self.parse_expression()
                self._expect_op("]")
                expr = ("index", expr, index)
            elif self._is_op("("):
                line = self._advance().line
                args = []
                while not self._is_op(")"):
                    args.append(self.parse_assignment())
                    if not self._is_op(")"):
                        self._expect_op(",")
                self._advance()
                expr = ("call", expr, args, line)
            else:
                return expr

    def _parse_primary(self) -> tuple:
        t = self.tok
        if t.kind == "number":
            self._advance()
            return ("lit", t.value)
        if t.kind == "string":
            self._advance()
            return ("lit", t.value)
        if t.kind == "template":
            self._advance()
            return self._parse_template(t)
        if t.kind == "name":
            if t.value in ("true", "false"):
                self._advance()
                return ("lit", t.value == "true")
            if t.value == "null":
                self._advance()
                return ("lit", None)
            if t.value == "undefined":
                self._advance()
                return ("lit", UNDEFINED)
            if t.value == "function":
                self._advance()
                if self.tok.kind == "name":
                    self._advance()
                params, body = self._parse_function_rest()
                return ("func", params, body, False)
            if t.value == "new":
                self._error("'new' is not supported")
            self._advance()
            return ("name", t.value)
        if self._is_op("("):
            self._advance()
            expr = self.parse_expression()
            self._expect_op(")")
            return expr
        if self._is_op("["):
            self._advance()
            items = []
            while not self._is_op("]"):
                items.append(self.parse_assignment())
                if not self._is_op("]"):
                    self._expect_op(",")
            self._advance()
            return ("array", items)
        if self._is_op("{"):
            return self._parse_object()
        self._error("Unexpected token")

    def _parse_object(self) -> tuple:
        self._advance()
        props = []
        while not self._is_op("}"):
            t = self._advance()
            if t.kind not in ("name", "string", "number"):
                self._error("Expected property name")
            key = _to_str(t.value) if t.kind == "number" else t.value
            if self._is_op(":"):
                self._advance()
                value = self.parse_assignment()
            elif t.kind == "name":
                value = ("name", key)
            else:
                self._error("Expected ':'")
            props.append((key, value))
            if not self._is_op("}"):
                self._expect_op(",")
        self._advance()
        return ("object", props)

    def _parse_template(self, token: Token) -> tuple:
        raw = token.value
        parts: List[tuple] = []
        buf = []
        i = 0
        while i < len(raw):
            if raw[i] == "\\" and i + 1 < len(raw):
                buf.append(raw[i:i + 2])
                i += 2
                continue
            if raw.startswith("${", i):
                depth = 1
                j = i + 2
                while j < len(raw) and depth:
                    if raw[j] == "{":
                        depth += 1
                    elif raw[j] == "}":
                        depth -= 1
                    j += 1
                if depth:
                    raise ScriptCompileError("Unterminated template expression", token.line)
                if buf:
                    parts.append(("lit", _unescape("".join(buf))))
                    buf = []
                sub = Parser(tokenize(raw[i + 2:j - 1]))
                parts.append(sub.parse_expression())
                if not sub._is("eof"):
                    sub._error("Unexpected token in template expression")
                i = j
                continue
            buf.append(raw[i])
            i += 1
        if buf:
            parts.append(("lit", _unescape("".join(buf))))
        return ("template", parts)


def parse(source: str) -> List[tuple]:
    return Parser(tokenize(source)).parse_program()


# ==============================================================================
# VALUE SEMANTICS
# ==============================================================================


def _to_number(v: Any) -> float:
    if isinstance(v, bool):
        return 1.0 if v else 0.0
    if isinstance(v, (int, float)):
        return float(v)
    if v is None:
        return 0.0
    if isinstance(v, str):
        s = v.strip()
        if not s:
            return 0.0
        try:
            return float(int(s, 16)) if s[:2].lower() == "0x" else float(s)
        except ValueError:
            return math.nan
    return math.nan


def _format_number(n: float) -> str:
    if math.isnan(n):
        return "NaN"
    if math.isinf(n):
        return "Infinity" if n > 0 else "-Infinity"
    if n == int(n) and abs(n) < 1e21:
        return str(int(n))
    return repr(n)


def _to_str(v: Any) -> str:
    if isinstance(v, str):
        return v
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (int, float)):
        return _format_number(float(v))
    if v is None:
        return "null"
    if v is UNDEFINED:
        return "undefined"
    if isinstance(v, list):
        return _bounded_join(",", ("" if x is None or x is UNDEFINED else _to_str(x) for x in v))
    if isinstance(v, dict):
        return "[object Object]"
    if isinstance(v, (Closure, NativeFunction)):
        return "function"
    return f"[object {type(v).__name__}]"


def _check_length(length: int) -> None:
    if length > MAX_STRING_LENGTH:
        raise ScriptRuntimeError(f"Invalid string length: {length} exceeds {MAX_STRING_LENGTH}")


def _bounded_join(sep: str, parts: Any) -> str:
    parts = list(parts)
    _check_length(sum(len(p) for p in parts) + len(sep) * max(len(parts) - 1, 0))
    return sep.join(parts)


def _truthy(v: Any) -> bool:
    if v is None or v is UNDEFINED:
        return False
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return not (v == 0 or math.isnan(v))
    if isinstance(v, str):
        return v != ""
    return True


def _typeof(v: Any) -> str:
    if v is UNDEFINED:
        return "undefined"
    if isinstance(v, bool):
        return "boolean"
    if isinstance(v, (int, float)):
        return "number"
    if isinstance(v, str):
        return "string"
    if isinstance(v, (Closure, NativeFunction)):
        return "function"
    return "object"


def _strict_equals(a: Any, b: Any) -> bool:
    if a is UNDEFINED or b is UNDEFINED:
        return a is b
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return float(a) == float(b)
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    return a is b


def _loose_equals(a: Any, b: Any) -> bool:
    nullish = (None, UNDEFINED)
    if a in nullish or b in nullish:
        return a in nullish and b in nullish
    if isinstance(a, (list, dict, Closure, NativeFunction, HostObject)) or \
            isinstance(b, (list, dict, Closure, NativeFunction, HostObject)):
        return a is b
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    return _to_number(a) == _to_number(b)


def _divide(a: float, b: float) -> float:
    if b == 0:
        if a == 0 or math.isnan(a):
            return math.nan
        return math.copysign(math.inf, a) * math.copysign(1.0, b)
    return a / b


def _remainder(a: float, b: float) -> float:
    if b == 0 or math.isinf(a) or math.isnan(a) or math.isnan(b):
        return math.nan
    if math.isinf(b):
        return a
    return math.fmod(a, b)


def _power(a: float, b: float) -> float:
    try:
        return math.pow(a, b)
    except OverflowError:
        return math.inf
    except ValueError:
        return math.nan


def _compare(op: str, a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        x, y = a, b
    else:
        x, y = _to_number(a), _to_number(b)
        if math.isnan(x) or math.isnan(y):
            return False
    if op == "<":
        return x < y
    if op == ">":
        return x > y
    if op == "<=":
        return x <= y
    return x >= y


def _binary(op: str, a: Any, b: Any) -> Any:
    if op == "+":
        if isinstance(a, (str, list, dict)) or isinstance(b, (str, list, dict)):
            left, right = _to_str(a), _to_str(b)
            _check_length(len(left) + len(right))
            return left + right
        return _to_number(a) + _to_number(b)
    if op == "-":
        return _to_number(a) - _to_number(b)
    if op == "*":
        return _to_number(a) * _to_number(b)
    if op == "/":
        return _divide(_to_number(a), _to_number(b))
    if op == "%":
        return _remainder(_to_number(a), _to_number(b))
    if op == "**":
        return _power(_to_number(a), _to_number(b))
    if op == "===":
        return _strict_equals(a, b)
    if op == "!==":
        return not _strict_equals(a, b)
    if op == "==":
        return _loose_equals(a, b)
    if op == "!=":
        return not _loose_equals(a, b)
    if op in ("<", ">", "<=", ">="):
        return _compare(op, a, b)
    raise ScriptRuntimeError(f"Unknown operator {op}")


def _to_index(v: Any) -> Optional[int]:
    n = _to_number(v)
    if math.isnan(n) or n != int(n) or n < 0:
        return None
    return int(n)


def _js_round(x: float) -> float:
    return float(math.floor(x + 0.5)) if math.isfinite(x) else x


def _num_fn(fn: Callable[..., float]) -> Callable[..., float]:
    def wrapper(*args):
        nums = [_to_number(a) for a in args]
        try:
            return float(fn(*nums))
        except (ValueError, OverflowError):
            return math.nan

    return wrapper


def _math_min(*args):
    nums = [_to_number(a) for a in args]
    if any(math.isnan(n) for n in nums):
        return math.nan
    return min(nums) if nums else math.inf


def _math_max(*args):
    nums = [_to_number(a) for a in args]
    if any(math.isnan(n) for n in nums):
        return math.nan
    return max(nums) if nums else -math.inf


def _build_math() -> Dict[str, Any]:
    funcs = {
        "sin": math.sin, "cos": math.cos, "tan": math.tan,
        "asin": math.asin, "acos": math.acos, "atan": math.atan,
        "atan2": math.atan2, "sqrt": math.sqrt, "abs": abs,
        "floor": math.floor, "ceil": math.ceil, "round": _js_round,
        "trunc": math.trunc, "exp": math.exp, "log": math.log,
        "pow": _power, "hypot": math.hypot,
        "sign": lambda x: math.copysign(1.0, x) if x else x,
    }
    table: Dict[str, Any] = {
        name: NativeFunction(_num_fn(fn), f"Math.{name}") for name, fn in funcs.items()
    }
    table["min"] = NativeFunction(_math_min, "Math.min")
    table["max"] = NativeFunction(_math_max, "Math.max")
    table["random"] = NativeFunction(lambda *a: random.random(), "Math.random")
    table.update({"PI": math.pi, "E": math.e, "SQRT2": math.sqrt(2), "LN2": math.log(2)})
    return table


def _parse_int(value: Any, radix: Any = UNDEFINED) -> float:
    s = _to_str(value).strip()
    base = 10 if radix is UNDEFINED else int(_to_number(radix))
    m = re.match(r"[+-]?[0-9a-zA-Z]+", s)
    if not m:
        return math.nan
    digits = m.group(0)
    # Longest valid prefix in the base.
    for end in range(len(digits), 0, -1):
        try:
            return float(int(digits[:end], base))
        except ValueError:
            continue
    return math.nan


def _parse_float(value: Any) -> float:
    m = re.match(r"\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", _to_str(value))
    return float(m.group(0)) if m else math.nan


# ==============================================================================
# INTERPRETER
# ==============================================================================


class _Return(Exception):
    def __init__(self, value):
        self.value = value


class _Break(Exception):
    pass


class _Continue(Exception):
    pass


class Scope:
    def __init__(self, parent: Optional["Scope"] = None):
        self.vars: Dict[str, Any] = {}
        self.parent = parent

    def declare(self, name: str, value: Any) -> None:
        self.vars[name] = value

    def lookup(self, name: str) -> Any:
        scope = self
        while scope is not None:
            if name in scope.vars:
                return scope.vars[name]
            scope = scope.parent
        raise ScriptRuntimeError(f"{name} is not defined")

    def assign(self, name: str, value: Any) -> None:
        scope = self
        while scope is not None:
            if name in scope.vars:
                scope.vars[name] = value
                return
            scope = scope.parent
        raise ScriptRuntimeError(f"{name} is not defined")


class Closure:
    def __init__(self, params: List[str], body: tuple, is_expr: bool, scope: Scope):
        self.params = params
        self.body = body
        self.is_expr = is_expr
        self.scope = scope


class Interpreter:
    """Evaluates one invocation of a parsed program."""

    def __init__(self, max_steps: int = DEFAULT_MAX_STEPS):
        self.max_steps = max_steps
        self.steps = 0
        self.depth = 0

    def _step(self) -> None:
        self.steps += 1
        if self.steps > self.max_steps:
            raise ScriptRuntimeError(f"Step budget of {self.max_steps} exceeded")

    # -- statements ----------------------------------------------------

    def run(self, body: List[tuple], scope: Scope) -> Any:
        self._hoist(body, scope)
        try:
            for stmt in body:
                self.exec(stmt, scope)
        except _Return as r:
            return r.value
        except (_Break, _Continue):
            raise ScriptRuntimeError("Illegal break/continue outside a loop")
        return UNDEFINED

    def _hoist(self, body: List[tuple], scope: Scope) -> None:
        for stmt in body:
            if stmt[0] == "func_decl":
                _, name, params, fbody = stmt
                scope.declare(name, Closure(params, fbody, False, scope))

    def exec(self, node: tuple, scope: Scope) -> None:
        self._step()
        kind = node[0]

        if kind == "expr":
            self.eval(node[1], scope)
        elif kind == "var":
            for name, init in node[1]:
                scope.declare(name, UNDEFINED if init is None else self.eval(init, scope))
        elif kind == "block":
            inner = Scope(scope)
            self._hoist(node[1], inner)
            for stmt in node[1]:
                self.exec(stmt, inner)
        elif kind == "if":
            _, cond, then, otherwise = node
            if _truthy(self.eval(cond, scope)):
                self.exec(then, scope)
            elif otherwise is not None:
                self.exec(otherwise, scope)
        elif kind == "for":
            self._exec_for(node, scope)
        elif kind == "for_of":
            self._exec_for_of(node, scope)
        elif kind == "while":
            _, cond, body, _line = node
            while _truthy(self.eval(cond, scope)):
                self._step()
                try:
                    self.exec(body, scope)
                except _Break:
                    break
                except _Continue:
                    continue
        elif kind == "func_decl":
            pass  # hoisted
        elif kind == "return":
            raise _Return(UNDEFINED if node[1] is None else self.eval(node[1], scope))
        elif kind == "break":
            raise _Break()
        elif kind == "continue":
            raise _Continue()
        elif kind == "throw":
            value = self.eval(node[1], scope)
            message = value.get("message") if isinstance(value, dict) else value
            raise ScriptRuntimeError(f"Uncaught {_to_str(message)} (line {node[2]})")
        elif kind == "empty":
            pass
        else:
            raise ScriptRuntimeError(f"Unknown statement {kind}")

    def _exec_for(self, node: tuple, scope: Scope) -> None:
        _, init, cond, update, body, _line = node
        loop_scope = Scope(scope)
        if init is not None:
            self.exec(init, loop_scope)
        while cond is None or _truthy(self.eval(cond, loop_scope)):
            self._step()
            try:
                self.exec(body, loop_scope)
            except _Break:
                break
            except _Continue:
                pass
            if update is not None:
                self.eval(update, loop_scope)

    def _exec_for_of(self, node: tuple, scope: Scope) -> None:
        _, name, iterable_node, body, line = node
        iterable = self.eval(iterable_node, scope)
        if isinstance(iterable, str):
            items = list(iterable)
        elif isinstance(iterable, list):
            items = list(iterable)
        else:
            raise ScriptRuntimeError(f"{_to_str(iterable)} is not iterable (line {line})")
        for item in items:
            self._step()
            loop_scope = Scope(scope)
            loop_scope.declare(name, item)
            try:
                self.exec(body, loop_scope)
            except _Break:
                break
            except _Continue:
                continue

    # -- expressions ---------------------------------------------------

    def eval(self, node: tuple, scope: Scope) -> Any:
        kind = node[0]

        if kind == "lit":
            return node[1]
        if kind == "name":
            return scope.lookup(node[1])
        if kind == "binary":
            return _binary(node[1], self.eval(node[2], scope), self.eval(node[3], scope))
        if kind == "logical":
            _, op, left, right = node
            lv = self.eval(left, scope)
            if op == "&&":
                return self.eval(right, scope) if _truthy(lv) else lv
            if op == "||":
                return lv if _truthy(lv) else self.eval(right, scope)
            return self.eval(right, scope) if lv is None or lv is UNDEFINED else lv
        if kind == "unary":
            _, op, operand = node
            v = self.eval(operand, scope)
            if op == "-":
                return -_to_number(v)
            if op == "+":
                return _to_number(v)
            if op == "!":
                return not _truthy(v)
            return _typeof(v)
        if kind == "cond":
            _, test, a, b = node
            return self.eval(a if _truthy(self.eval(test, scope)) else b, scope)
        if kind == "member":
            return self.get_member(self.eval(node[1], scope), node[2])
        if kind == "index":
            return self.get_member(self.eval(node[1], scope), self.eval(node[2], scope))
        if kind == "call":
            return self._eval_call(node, scope)
        if kind == "assign":
            return self._eval_assign(node, scope)
        if kind == "update":
            return self._eval_update(node, scope)
        if kind == "array":
            return [self.eval(item, scope) for item in node[1]]
        if kind == "object":
            return {key: self.eval(value, scope) for key, value in node[1]}
        if kind == "func":
            _, params, body, is_expr = node
            return Closure(params, body, is_expr, scope)
        if kind == "template":
            return _bounded_join("", [_to_str(self.eval(part, scope)) for part in node[1]])
        if kind == "seq":
            result = UNDEFINED
            for expr in node[1]:
                result = self.eval(expr, scope)
            return result
        raise ScriptRuntimeError(f"Unknown expression {kind}")

    def _eval_call(self, node: tuple, scope: Scope) -> Any:
        _, callee_node, arg_nodes, line = node
        callee = self.eval(callee_node, scope)
        args = [self.eval(a, scope) for a in arg_nodes]
        if not isinstance(callee, (Closure, NativeFunction)):
            raise ScriptRuntimeError(f"{_describe(callee_node)} is not a function (line {line})")
        return self.call(callee, args)

    def call(self, fn: Any, args: List[Any]) -> Any:
        self._step()
        if isinstance(fn, NativeFunction):
            result = fn.func(*args)
            return UNDEFINED if result is None else result
        if not isinstance(fn, Closure):
            raise ScriptRuntimeError(f"{_to_str(fn)} is not a function")

        if self.depth >= MAX_CALL_DEPTH:
            raise ScriptRuntimeError("Maximum call stack size exceeded")
        self.depth += 1
        try:
            local = Scope(fn.scope)
            for i, name in enumerate(fn.params):
                local.declare(name, args[i] if i < len(args) else UNDEFINED)
            if fn.is_expr:
                return self.eval(fn.body, local)
            return self.run(fn.body[1], local)
        finally:
            self.depth -= 1

    def _eval_assign(self, node: tuple, scope: Scope) -> Any:
        _, op, target, value_node = node
        if op == "=":
            value = self.eval(value_node, scope)
        else:
            current = self.eval(target, scope)
            value = _binary(op[:-1], current, self.eval(value_node, scope))
        self._store(target, value, scope)
        return value

    def _eval_update(self, node: tuple, scope: Scope) -> Any:
        _, op, prefix, target = node
        old = _to_number(self.eval(target, scope))
        new = old + 1 if op == "++" else old - 1
        self._store(target, new, scope)
        return new if prefix else old

    def _store(self, target: tuple, value: Any, scope: Scope) -> None:
        kind = target[0]
        if kind == "name":
            scope.assign(target[1], value)
            return
        obj = self.eval(target[1], scope)
        key = target[2] if kind == "member" else self.eval(target[2], scope)
        self.set_member(obj, key, value)

    # -- members -------------------------------------------------------

    def get_member(self, obj: Any, key: Any) -> Any:
        if isinstance(obj, HostObject):
            return obj.sandbox_get(_to_str(key))
        if isinstance(obj, dict):
            return obj.get(_to_str(key), UNDEFINED)
        if isinstance(obj, list):
            idx = _to_index(key)
            if idx is not None:
                return obj[idx] if idx < len(obj) else UNDEFINED
            return self._list_member(obj, _to_str(key))
        if isinstance(obj, str):
            idx = _to_index(key)
            if idx is not None:
                return obj[idx] if idx < len(obj) else UNDEFINED
            return self._string_member(obj, _to_str(key))
        if isinstance(obj, (int, float)) and not isinstance(obj, bool):
            if key == "toFixed":
                return NativeFunction(
                    lambda digits=0.0: f"{float(obj):.{int(_to_number(digits))}f}", "toFixed"
                )
            if key == "toString":
                return NativeFunction(lambda *a: _to_str(obj), "toString")
            return UNDEFINED
        if obj is None or obj is UNDEFINED:
            raise ScriptRuntimeError(f"Cannot read properties of {_to_str(obj)} (reading '{_to_str(key)}')")
        return UNDEFINED

    def set_member(self, obj: Any, key: Any, value: Any) -> None:
        if isinstance(obj, HostObject):
            obj.sandbox_set(_to_str(key), value)
        elif isinstance(obj, dict):
            obj[_to_str(key)] = value
        elif isinstance(obj, list):
            idx = _to_index(key)
            if idx is None:
                raise ScriptRuntimeError(f"Cannot set array property '{_to_str(key)}'")
            if idx > len(obj) + 10_000:
                raise ScriptRuntimeError("Array index too large")
            while len(obj) <= idx:
                obj.append(UNDEFINED)
            obj[idx] = value
        else:
            raise ScriptRuntimeError(f"Cannot set properties of {_to_str(obj)}")

    def _list_member(self, items: list, name: str) -> Any:
        if name == "length":
            return float(len(items))

        def each(fn):
            return [(item, float(i)) for i, item in enumerate(list(items))]

        def for_each(fn):
            for x, i in each(fn):
                self.call(fn, [x, i, items])

        methods = {
            "push": lambda *a: (items.extend(a), float(len(items)))[1],
            "pop": lambda: items.pop() if items else UNDEFINED,
            "shift": lambda: items.pop(0) if items else UNDEFINED,
            "forEach": for_each,
            "map": lambda fn: [self.call(fn, [x, i, items]) for x, i in each(fn)],
            "filter": lambda fn: [x for x, i in each(fn) if _truthy(self.call(fn, [x, i, items]))],
            "some": lambda fn: any(_truthy(self.call(fn, [x, i, items])) for x, i in each(fn)),
            "every": lambda fn: all(_truthy(self.call(fn, [x, i, items])) for x, i in each(fn)),
            "includes": lambda v: any(_strict_equals(x, v) for x in items),
            "indexOf": lambda v: next(
                (float(i) for i, x in enumerate(items) if _strict_equals(x, v)), -1.0
            ),
            "join": lambda sep=",": _bounded_join(_to_str(sep), [_to_str(x) for x in items]),
            "slice": lambda start=0.0, end=UNDEFINED: items[
                _slice_index(start, len(items)):_slice_index(end, len(items), len(items))
            ],
            "reduce": lambda fn, *init: self._reduce(items, fn, init),
        }
        if name in methods:
            return NativeFunction(methods[name], name)
        return UNDEFINED

    def _reduce(self, items: list, fn: Any, init: tuple) -> Any:
        values = list(items)
        if init:
            acc = init[0]
            start = 0
        elif values:
            acc = values[0]
            start = 1
        else:
            raise ScriptRuntimeError("Reduce of empty array with no initial value")
        for i in range(start, len(values)):
            acc = self.call(fn, [acc, values[i], float(i), items])
        return acc

    def _string_member(self, s: str, name: str) -> Any:
        if name == "length":
            return float(len(s))
        methods = {
            "toUpperCase": lambda: s.upper(),
            "toLowerCase": lambda: s.lower(),
            "trim": lambda: s.strip(),
            "charAt": lambda i=0.0: s[int(_to_number(i))] if 0 <= _to_number(i) < len(s) else "",
            "includes": lambda sub: _to_str(sub) in s,
            "indexOf": lambda sub: float(s.find(_to_str(sub))),
            "split": lambda sep=UNDEFINED: [s] if sep is UNDEFINED else (
                list(s) if _to_str(sep) == "" else s.split(_to_str(sep))
            ),
            "slice": lambda start=0.0, end=UNDEFINED: s[
                _slice_index(start, len(s)):_slice_index(end, len(s), len(s))
            ],
            "substring": lambda start=0.0, end=UNDEFINED: s[
                max(0, int(_to_number(start))):(len(s) if end is UNDEFINED else max(0, int(_to_number(end))))
            ],
            "repeat": lambda n=0.0: _repeat(s, _to_number(n)),
            "padStart": lambda n, fill=" ": _pad_start(s, _to_number(n), _to_str(fill)),
        }
        if name in methods:
            return NativeFunction(methods[name], name)
        return UNDEFINED


def _repeat(s: str, count: float) -> str:
    if math.isnan(count) or count < 0 or math.isinf(count):
        raise ScriptRuntimeError(f"Invalid count value: {_format_number(count)}")
    n = int(count)
    _check_length(len(s) * n)
    return s * n


def _pad_start(s: str, target: float, fill: str) -> str:
    if math.isnan(target) or target <= len(s) or not fill:
        return s
    _check_length(int(min(target, MAX_STRING_LENGTH + 1)))
    n = int(target) - len(s)
    return (fill * (n // len(fill) + 1))[:n] + s


def _slice_index(v: Any, length: int, default: int = 0) -> int:
    if v is UNDEFINED:
        return default
    n = _to_number(v)
    if math.isnan(n):
        return 0
    n = int(n)
    if n < 0:
        return max(0, length + n)
    return min(n, length)


def _describe(node: tuple) -> str:
    if node[0] == "name":
        return node[1]
    if node[0] == "member":
        return f"{_describe(node[1])}.{node[2]}"
    return "expression"


# ==============================================================================
# COMPILED ROUTINES
# ==============================================================================


def _console_log(*args):
    logger.debug("script: " + " ".join(_to_str(a) for a in args))


class DrawRoutine:
    """
    A compiled ``draw(ctx, width, height, frameCount)`` callable.

    Every invocation runs in a fresh global scope (like calling a JS
    function whose body is the script). ``revoke()`` disables the routine
    permanently.
    """

    def __init__(self, program: List[tuple], source: str, max_steps: int = DEFAULT_MAX_STEPS):
        self._program = program
        self.source = source
        self.max_steps = max_steps
        self._revoked = False
        self.invocations = 0

    @property
    def revoked(self) -> bool:
        return self._revoked

    def revoke(self) -> None:
        self._revoked = True

    def __call__(self, context: Any, width: float, height: float, frame_count: int) -> None:
        if self._revoked:
            raise ScriptRuntimeError("Draw routine has been revoked")
        self.invocations += 1

        scope = Scope()
        for name, value in zip(DRAW_PARAMS, (context, float(width), float(height), float(frame_count))):
            scope.declare(name, value)
        scope.declare("Math", _build_math())
        scope.declare("console", {"log": NativeFunction(_console_log, "console.log")})
        scope.declare("parseInt", NativeFunction(_parse_int, "parseInt"))
        scope.declare("parseFloat", NativeFunction(_parse_float, "parseFloat"))
        scope.declare("isNaN", NativeFunction(lambda v=UNDEFINED: math.isnan(_to_number(v)), "isNaN"))
        scope.declare("Number", NativeFunction(lambda v=0.0: _to_number(v), "Number"))
        scope.declare("String", NativeFunction(lambda v="": _to_str(v), "String"))
        scope.declare("Infinity", math.inf)
        scope.declare("NaN", math.nan)

        interpreter = Interpreter(self.max_steps)
        try:
            interpreter.run(self._program, scope)
        except ScriptRuntimeError:
            raise
        except RecursionError:
            raise ScriptRuntimeError("Script nesting too deep")
        except MemoryError:
            raise ScriptRuntimeError("Script ran out of memory")
        except Exception as e:
            # Host-side failures (Pillow, ctx callbacks) count as script errors
            raise ScriptRuntimeError(f"{type(e).__name__}: {e}") from e


def compile_script(source: str, max_steps: int = DEFAULT_MAX_STEPS) -> DrawRoutine:
    """
    Compile 2D script text into a DrawRoutine.

    Raises:
        ScriptCompileError: empty, oversized, or syntactically invalid script
    """
    if not isinstance(source, str) or not source.strip():
        raise ScriptCompileError("Script is empty")
    if len(source) > MAX_SOURCE_LENGTH:
        raise ScriptCompileError(f"Script exceeds {MAX_SOURCE_LENGTH} characters")
    try:
        program = parse(source)
    except RecursionError:
        raise ScriptCompileError("Script nesting too deep")
    return DrawRoutine(program, source, max_steps)
