"""Step condition evaluation.

Conditions are small expressions written against three bindings:

- ``results``: step id -> ``{success, skipped, content?, data?, duration, error?}``
- ``request``: ``{userPrompt, traceId?, requestId?}``
- ``flow``: ``{id, name, version}``

Example::

    results['review'].data?.score >= 80 && !results['lint'].skipped
    ['a', 'b'].every(id => results[id]?.success)

Expressions are tokenised and parsed by a restricted grammar and walked by a
tiny interpreter. Nothing outside the three bindings is reachable; there is no
call syntax apart from ``every``/``some``/``includes`` on arrays (``includes`` also
works on strings).

Operators follow JavaScript precedence and coercion: ``!a === b`` reads as
``(!a) === b`` and ``true == 1`` holds. The word forms ``and``/``or``/``not``
are accepted too; ``not`` negates a whole comparison.

`ConditionEvaluator.evaluate` never raises: any syntax or runtime error makes
the condition false and is reported in `ConditionResult.error`.
"""

from __future__ import annotations

import json
import logging
import math
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from agent_flow_orchestrator.flows.errors import (
    ConditionError,
    ConditionRuntimeError,
    ConditionSyntaxError,
)
from agent_flow_orchestrator.flows.models import (
    FlowDefinition,
    FlowRequest,
    StepDefinition,
    StepResult,
)

logger = logging.getLogger(__name__)


class _Undefined:
    __slots__ = ()

    def __repr__(self) -> str:
        return "undefined"


UNDEFINED: Any = _Undefined()

# --- Lexer -------------------------------------------------------------------

_OPERATORS = (
    "===",
    "!==",
    "==",
    "!=",
    "<=",
    ">=",
    "&&",
    "||",
    "=>",
    "?.",
    "<",
    ">",
    "!",
    "?",
    ":",
    ".",
    ",",
    "(",
    ")",
    "[",
    "]",
    "-",
)

_KEYWORD_LITERALS: dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "undefined": UNDEFINED,
    "True": True,
    "False": False,
    "None": None,
}

_WORD_OPERATORS = {"and": "&&", "or": "||", "not": "not"}

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}


@dataclass(frozen=True, slots=True)
class Token:
    type: str  # NUMBER | STRING | IDENT | LITERAL | OP | EOF
    value: Any
    position: int


def tokenize(source: str) -> list[Token]:
    tokens: list[Token] = []
    i = 0
    length = len(source)

    while i < length:
        char = source[i]
        if char.isspace():
            i += 1
            continue

        if char in "'\"":
            start = i
            quote = char
            i += 1
            chars: list[str] = []
            while i < length and source[i] != quote:
                if source[i] == "\\" and i + 1 < length:
                    chars.append(_ESCAPES.get(source[i + 1], source[i + 1]))
                    i += 2
                    continue
                chars.append(source[i])
                i += 1
            if i >= length:
                raise ConditionSyntaxError("Unterminated string literal", start)
            i += 1
            tokens.append(Token("STRING", "".join(chars), start))
            continue

        if char.isdigit():
            start = i
            while i < length and (source[i].isdigit() or source[i] == "."):
                i += 1
            text = source[start:i]
            try:
                number: float | int = float(text) if "." in text else int(text)
            except ValueError:
                raise ConditionSyntaxError(f"Invalid number '{text}'", start) from None
            tokens.append(Token("NUMBER", number, start))
            continue

        if char.isalpha() or char in "_$":
            start = i
            while i < length and (source[i].isalnum() or source[i] in "_$"):
                i += 1
            word = source[start:i]
            if word in _KEYWORD_LITERALS:
                tokens.append(Token("LITERAL", _KEYWORD_LITERALS[word], start))
            elif word in _WORD_OPERATORS:
                tokens.append(Token("OP", _WORD_OPERATORS[word], start))
            else:
                tokens.append(Token("IDENT", word, start))
            continue

        for op in _OPERATORS:
            if source.startswith(op, i):
                # `a ?.5 : 1` is a ternary, not optional chaining.
                if op == "?." and i + 2 < length and source[i + 2].isdigit():
                    continue
                tokens.append(Token("OP", op, i))
                i += len(op)
                break
        else:
            raise ConditionSyntaxError(f"Unexpected character '{char}'", i)

    tokens.append(Token("EOF", None, length))
    return tokens


# --- AST ---------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Literal:
    value: Any


@dataclass(frozen=True, slots=True)
class Name:
    name: str


@dataclass(frozen=True, slots=True)
class ArrayLiteral:
    items: tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class Unary:
    op: str
    operand: Any


@dataclass(frozen=True, slots=True)
class Binary:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True, slots=True)
class Conditional:
    test: Any
    then: Any
    otherwise: Any


@dataclass(frozen=True, slots=True)
class Lambda:
    param: str
    body: Any


@dataclass(frozen=True, slots=True)
class Access:
    """One link of a member chain: ``.name``, ``[expr]`` or ``.method(arg)``."""

    kind: str  # member | index | call
    key: Any
    optional: bool = False
    argument: Any = None


@dataclass(frozen=True, slots=True)
class Chain:
    base: Any
    links: tuple[Access, ...]


_ARRAY_METHODS = {"every", "some", "includes"}
_COMPARISONS = {"===", "!==", "==", "!=", "<", "<=", ">", ">="}


class _Parser:
    def __init__(self, tokens: list[Token]) -> None:
        self.tokens = tokens
        self.pos = 0

    def peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def match(self, op: str) -> bool:
        token = self.peek()
        if token.type == "OP" and token.value == op:
            self.pos += 1
            return True
        return False

    def expect(self, op: str) -> Token:
        token = self.peek()
        if token.type != "OP" or token.value != op:
            found = token.value if token.type != "EOF" else "end of expression"
            raise ConditionSyntaxError(f"Expected '{op}' but found '{found}'", token.position)
        return self.advance()

    def expect_ident(self) -> str:
        token = self.peek()
        if token.type != "IDENT":
            raise ConditionSyntaxError("Expected an identifier", token.position)
        self.advance()
        return str(token.value)

    def parse(self) -> Any:
        expr = self.parse_expression()
        token = self.peek()
        if token.type != "EOF":
            raise ConditionSyntaxError(f"Unexpected token '{token.value}'", token.position)
        return expr

    def parse_expression(self) -> Any:
        test = self.parse_or()
        if self.match("?"):
            then = self.parse_expression()
            self.expect(":")
            otherwise = self.parse_expression()
            return Conditional(test, then, otherwise)
        return test

    def parse_or(self) -> Any:
        expr = self.parse_and()
        while self.match("||"):
            expr = Binary("||", expr, self.parse_and())
        return expr

    def parse_and(self) -> Any:
        expr = self.parse_not()
        while self.match("&&"):
            expr = Binary("&&", expr, self.parse_not())
        return expr

    def parse_not(self) -> Any:
        # The word `not` binds looser than comparisons; `!` is unary.
        if self.match("not"):
            return Unary("!", self.parse_not())
        return self.parse_comparison()

    def parse_comparison(self) -> Any:
        expr = self.parse_unary()
        while True:
            token = self.peek()
            if token.type == "OP" and token.value in _COMPARISONS:
                self.advance()
                expr = Binary(token.value, expr, self.parse_unary())
                continue
            return expr

    def parse_unary(self) -> Any:
        if self.match("-"):
            return Unary("-", self.parse_unary())
        if self.match("!"):
            return Unary("!", self.parse_unary())
        return self.parse_postfix()

    def parse_postfix(self) -> Any:
        base = self.parse_primary()
        links: list[Access] = []
        while True:
            if self.match("."):
                links.append(self._member_or_call(optional=False))
            elif self.match("?."):
                if self.match("["):
                    index = self.parse_expression()
                    self.expect("]")
                    links.append(Access("index", index, optional=True))
                else:
                    links.append(self._member_or_call(optional=True))
            elif self.match("["):
                index = self.parse_expression()
                self.expect("]")
                links.append(Access("index", index))
            else:
                break
        return Chain(base, tuple(links)) if links else base

    def _member_or_call(self, *, optional: bool) -> Access:
        name = self.expect_ident()
        if not self.match("("):
            return Access("member", name, optional=optional)
        if name not in _ARRAY_METHODS:
            raise ConditionSyntaxError(f"Unsupported method '{name}'", self.peek().position)
        argument = self.parse_expression() if name == "includes" else self._parse_lambda()
        self.expect(")")
        return Access("call", name, optional=optional, argument=argument)

    def _parse_lambda(self) -> Lambda:
        if self.match("("):
            param = self.expect_ident()
            self.expect(")")
        else:
            param = self.expect_ident()
        self.expect("=>")
        return Lambda(param, self.parse_expression())

    def parse_primary(self) -> Any:
        token = self.peek()
        if token.type in {"NUMBER", "STRING", "LITERAL"}:
            self.advance()
            return Literal(token.value)
        if token.type == "IDENT":
            self.advance()
            return Name(str(token.value))
        if self.match("("):
            expr = self.parse_expression()
            self.expect(")")
            return expr
        if self.match("["):
            items: list[Any] = []
            if not self.match("]"):
                items.append(self.parse_expression())
                while self.match(","):
                    items.append(self.parse_expression())
                self.expect("]")
            return ArrayLiteral(tuple(items))
        found = token.value if token.type != "EOF" else "end of expression"
        raise ConditionSyntaxError(f"Unexpected token '{found}'", token.position)


@lru_cache(maxsize=256)
def parse_condition(source: str) -> Any:
    """Parse a condition into an expression tree (cached per source string)."""

    return _Parser(tokenize(source)).parse()


# --- Interpreter -------------------------------------------------------------


def is_truthy(value: Any) -> bool:
    if value is UNDEFINED or value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equals(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, (dict, list)) or isinstance(right, (dict, list)):
        return left is right
    if type(left) is not type(right):
        return False
    return bool(left == right)


def _loose_equals(left: Any, right: Any) -> bool:
    nullish = (None, UNDEFINED)
    if left in nullish or right in nullish:
        return left in nullish and right in nullish
    if isinstance(left, bool):
        return _loose_equals(int(left), right)
    if isinstance(right, bool):
        return _loose_equals(left, int(right))
    if _is_number(left) and isinstance(right, str):
        text = right.strip()
        try:
            return left == (float(text) if text else 0)
        except ValueError:
            return False
    if isinstance(left, str) and _is_number(right):
        return _loose_equals(right, left)
    return _strict_equals(left, right)


def _compare(op: str, left: Any, right: Any) -> bool:
    if not (
        (_is_number(left) and _is_number(right))
        or (isinstance(left, str) and isinstance(right, str))
    ):
        return False
    if op == "<":
        return bool(left < right)
    if op == "<=":
        return bool(left <= right)
    if op == ">":
        return bool(left > right)
    return bool(left >= right)


def _describe(value: Any) -> str:
    return "null" if value is None else "undefined"


class _Interpreter:
    def __init__(self, scope: Mapping[str, Any]) -> None:
        self.scope = scope

    def eval(self, node: Any, locals_: Mapping[str, Any] | None = None) -> Any:
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, Name):
            if locals_ is not None and node.name in locals_:
                return locals_[node.name]
            if node.name in self.scope:
                return self.scope[node.name]
            raise ConditionRuntimeError(f"{node.name} is not defined")
        if isinstance(node, ArrayLiteral):
            return [self.eval(item, locals_) for item in node.items]
        if isinstance(node, Unary):
            operand = self.eval(node.operand, locals_)
            if node.op == "!":
                return not is_truthy(operand)
            if not _is_number(operand):
                raise ConditionRuntimeError("Unary '-' requires a number")
            return -operand
        if isinstance(node, Binary):
            return self._binary(node, locals_)
        if isinstance(node, Conditional):
            branch = node.then if is_truthy(self.eval(node.test, locals_)) else node.otherwise
            return self.eval(branch, locals_)
        if isinstance(node, Chain):
            return self._chain(node, locals_)
        raise ConditionRuntimeError(f"Unsupported expression node: {type(node).__name__}")

    def _binary(self, node: Binary, locals_: Mapping[str, Any] | None) -> Any:
        left = self.eval(node.left, locals_)
        if node.op == "&&":
            return self.eval(node.right, locals_) if is_truthy(left) else left
        if node.op == "||":
            return left if is_truthy(left) else self.eval(node.right, locals_)

        right = self.eval(node.right, locals_)
        if node.op == "===":
            return _strict_equals(left, right)
        if node.op == "!==":
            return not _strict_equals(left, right)
        if node.op == "==":
            return _loose_equals(left, right)
        if node.op == "!=":
            return not _loose_equals(left, right)
        return _compare(node.op, left, right)

    def _chain(self, node: Chain, locals_: Mapping[str, Any] | None) -> Any:
        value = self.eval(node.base, locals_)
        for link in node.links:
            if value is UNDEFINED or value is None:
                if link.optional:
                    return UNDEFINED
                key = link.key if link.kind != "index" else self.eval(link.key, locals_)
                raise ConditionRuntimeError(
                    f"Cannot read property '{key}' of {_describe(value)}"
                )
            if link.kind == "member":
                value = self._member(value, link.key)
            elif link.kind == "index":
                value = self._index(value, self.eval(link.key, locals_))
            else:
                value = self._call(value, link, locals_)
        return value

    @staticmethod
    def _member(value: Any, name: str) -> Any:
        if name == "length" and isinstance(value, (str, list)):
            return len(value)
        if isinstance(value, dict):
            return value.get(name, UNDEFINED)
        return UNDEFINED

    @staticmethod
    def _index(value: Any, key: Any) -> Any:
        if isinstance(value, dict):
            if _is_number(key) and float(key).is_integer():
                key = str(int(key))
            return value.get(key, UNDEFINED) if isinstance(key, str) else UNDEFINED
        if isinstance(value, (list, str)):
            if key == "length":
                return len(value)
            if _is_number(key) and float(key).is_integer() and 0 <= int(key) < len(value):
                return value[int(key)]
        return UNDEFINED

    def _call(self, value: Any, link: Access, locals_: Mapping[str, Any] | None) -> Any:
        method = link.key
        if method == "includes":
            if not isinstance(value, (list, str)):
                raise ConditionRuntimeError("includes() requires an array or string")
            needle = self.eval(link.argument, locals_)
            if isinstance(value, str):
                return isinstance(needle, str) and needle in value
            return any(_strict_equals(item, needle) for item in value)

        if not isinstance(value, list):
            raise ConditionRuntimeError(f"{method}() requires an array")
        fn: Lambda = link.argument
        outcomes = (
            is_truthy(self.eval(fn.body, {**(locals_ or {}), fn.param: item})) for item in value
        )
        return all(outcomes) if method == "every" else any(outcomes)


# --- Public API --------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StepResultContext:
    success: bool
    duration: float
    skipped: bool = False
    content: str | None = None
    data: Any = UNDEFINED
    error: str | None = None

    def to_scope(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.success,
            "skipped": self.skipped,
            "duration": self.duration,
        }
        if self.content is not None:
            out["content"] = self.content
        if self.data is not UNDEFINED:
            out["data"] = self.data
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(frozen=True, slots=True)
class ConditionContext:
    results: dict[str, StepResultContext] = field(default_factory=dict)
    request: dict[str, Any] = field(default_factory=dict)
    flow: dict[str, Any] = field(default_factory=dict)

    def to_scope(self) -> dict[str, Any]:
        return {
            "results": {k: v.to_scope() for k, v in self.results.items()},
            "request": dict(self.request),
            "flow": dict(self.flow),
        }


@dataclass(frozen=True, slots=True)
class ConditionResult:
    should_execute: bool
    condition: str
    evaluation_time_ms: float
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ConditionValidation:
    valid: bool
    error: str | None = None


def _try_parse_json(content: str | None) -> Any:
    if not content:
        return UNDEFINED
    try:
        return json.loads(content)
    except ValueError:
        return UNDEFINED


_PLACEHOLDER_CONTEXT = ConditionContext(
    request={"userPrompt": ""},
    flow={"id": "validation", "name": "validation", "version": "0.0.0"},
)


class ConditionEvaluator:
    """Decide whether a step should run from its condition expression."""

    def evaluate(self, condition: str | None, context: ConditionContext) -> ConditionResult:
        start = time.perf_counter()
        source = condition or ""
        if not source.strip():
            return ConditionResult(
                should_execute=True,
                condition=source,
                evaluation_time_ms=(time.perf_counter() - start) * 1000,
            )

        try:
            tree = parse_condition(source.strip())
            value = _Interpreter(context.to_scope()).eval(tree)
        except ConditionError as e:
            return ConditionResult(
                should_execute=False,
                condition=source,
                error=str(e),
                evaluation_time_ms=(time.perf_counter() - start) * 1000,
            )
        except RecursionError:
            return ConditionResult(
                should_execute=False,
                condition=source,
                error="Condition is nested too deeply",
                evaluation_time_ms=(time.perf_counter() - start) * 1000,
            )

        return ConditionResult(
            should_execute=is_truthy(value),
            condition=source,
            evaluation_time_ms=(time.perf_counter() - start) * 1000,
        )

    def evaluate_step_condition(
        self,
        step: StepDefinition,
        step_results: Mapping[str, StepResult],
        request: FlowRequest,
        flow: FlowDefinition,
    ) -> ConditionResult:
        if not step.condition:
            return ConditionResult(should_execute=True, condition="", evaluation_time_ms=0.0)
        return self.evaluate(step.condition, self.build_context(step_results, request, flow))

    def build_context(
        self,
        step_results: Mapping[str, StepResult],
        request: FlowRequest,
        flow: FlowDefinition,
    ) -> ConditionContext:
        results = {
            step_id: StepResultContext(
                success=r.success,
                skipped=r.skipped,
                duration=r.duration,
                content=r.content,
                data=_try_parse_json(r.content),
                error=r.error,
            )
            for step_id, r in step_results.items()
        }
        return ConditionContext(
            results=results,
            request=request.to_json(),
            flow={"id": flow.id, "name": flow.name, "version": flow.version},
        )

    def validate_condition(self, condition: str | None) -> ConditionValidation:
        """Report syntax errors without needing a real run.

        Runtime errors against the empty placeholder context are expected
        (there are no results yet) and do not make a condition invalid.
        """

        if not condition or not condition.strip():
            return ConditionValidation(valid=True)
        try:
            parse_condition(condition.strip())
        except ConditionSyntaxError as e:
            return ConditionValidation(valid=False, error=str(e))
        result = self.evaluate(condition, _PLACEHOLDER_CONTEXT)
        if result.error:
            logger.debug(
                "Condition parsed; placeholder evaluation reported a runtime error",
                extra={"condition": condition, "error": result.error},
            )
        return ConditionValidation(valid=True)
