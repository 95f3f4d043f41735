# payroll_engine/services/formula.py
"""
Safe evaluator for paysheet column formulas.

A formula is plain arithmetic over named values, e.g.

    basic_pay / month_days * paid_days
    max(0, gross_salary - 21000) ? 0 : round(gross_salary * 0.0075)
    Math.ceil(net_salary)

Supported: numbers, identifiers, + - * / ( ) , and the ternary ``a ? b : c``
(``a`` is true when non-zero). Functions are limited to min, max, round,
floor, ceil and abs; the ``Math.`` prefix is accepted and ignored.

Pipeline: tokenize -> validate every token against the allow-list ->
recursive-descent parse into an immutable AST -> tree-walking evaluation
over a name -> number map. Nothing is ever compiled or executed as code.

``evaluate`` never raises. Any invalid token, parse error, unknown
identifier, division by zero or non-finite result yields 0.
"""
from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from payroll_engine.common.money import num

log = logging.getLogger(__name__)


def _round_half_up(x):
    # round(x) in formulas rounds .5 upwards, like spreadsheet users expect
    return math.floor(x + 0.5)


ALLOWED_FUNCTIONS = {
    "min": min,
    "max": max,
    "round": _round_half_up,
    "floor": math.floor,
    "ceil": math.ceil,
    "abs": abs,
}

# Record-derived names a formula may always use; absent ones read as 0.
ALLOWED_VARIABLES = frozenset([
    "basicPay", "grossSalary", "netSalary", "totalDeductions", "roundOff",
    "presentDays", "payableShifts", "monthDays", "otPay", "incentive",
    "advanceDeduction", "loanEMI", "earnedSalary", "totalAllowances",
    "allowancesCumulative", "deductionsCumulative", "statutoryCumulative",
    "emp_no", "name", "designation", "department", "division",
    "attendanceDeduction", "permissionDeduction", "leaveDeduction", "otherDeductions",
    "arrearsAmount", "extraDays", "paidLeaveDays", "odDays", "absentDays", "weeklyOffs", "holidays",
    "perDayBasicPay", "basic_pay", "lopDays", "elUsedInPayroll", "attendanceDeductionDays",
])


# bounds on formula size; parsing and evaluation recurse per nesting level
MAX_TOKENS = 512
MAX_NESTING = 64

class FormulaError(ValueError):
    def __init__(self, message: str, pos: int = -1):
        super().__init__(message if pos < 0 else f"{message} at position {pos}")
        self.pos = pos


# ---------- tokens ----------

@dataclass(frozen=True)
class Token:
    kind: str       # NUM, NAME, OP, EOF
    value: str
    pos: int


_TOKEN_RE = re.compile(
    r"\s*(?:"
    r"(?P<num>\d+\.?\d*|\.\d+)"
    r"|(?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)"
    r"|(?P<op>[-+*/(),?:])"
    r")"
)


def tokenize(formula: str) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    text = formula.rstrip()
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if not m or m.end() == pos:
            raise FormulaError(f"unexpected character {text[pos]!r}", pos)
        if m.group("num") is not None:
            tokens.append(Token("NUM", m.group("num"), m.start("num")))
        elif m.group("name") is not None:
            name = m.group("name")
            if "." in name:
                prefix, _, rest = name.partition(".")
                if prefix != "Math" or rest not in ALLOWED_FUNCTIONS:
                    raise FormulaError(f"unknown dotted name {name!r}", m.start("name"))
                name = rest
            tokens.append(Token("NAME", name, m.start("name")))
        elif m.group("op") is not None:
            tokens.append(Token("OP", m.group("op"), m.start("op")))
        pos = m.end()
    tokens.append(Token("EOF", "", len(text)))
    return tokens


# ---------- AST ----------

@dataclass(frozen=True)
class Num:
    value: float

@dataclass(frozen=True)
class Var:
    name: str

@dataclass(frozen=True)
class Unary:
    op: str
    operand: "Node"

@dataclass(frozen=True)
class Binary:
    op: str
    left: "Node"
    right: "Node"

@dataclass(frozen=True)
class Call:
    func: str
    args: Tuple["Node", ...]

@dataclass(frozen=True)
class Conditional:
    test: "Node"
    then: "Node"
    otherwise: "Node"

Node = Union[Num, Var, Unary, Binary, Call, Conditional]


class _Parser:
    """
    expr    := cond
    cond    := sum ('?' cond ':' cond)?
    sum     := product (('+' | '-') product)*
    product := unary (('*' | '/') unary)*
    unary   := ('+' | '-')* primary
    primary := NUM | NAME '(' [expr (',' expr)*] ')' | NAME | '(' expr ')'
    """

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.i = 0
        self.depth = 0

    def peek(self) -> Token:
        return self.tokens[self.i]

    def take(self) -> Token:
        tok = self.tokens[self.i]
        self.i += 1
        return tok

    def expect(self, value: str) -> Token:
        tok = self.take()
        if tok.kind != "OP" or tok.value != value:
            raise FormulaError(f"expected {value!r}", tok.pos)
        return tok

    def at(self, *values: str) -> bool:
        tok = self.peek()
        return tok.kind == "OP" and tok.value in values

    def parse(self) -> Node:
        if self.peek().kind == "EOF":
            raise FormulaError("empty formula", 0)
        node = self.cond()
        tok = self.peek()
        if tok.kind != "EOF":
            raise FormulaError(f"unexpected {tok.value!r}", tok.pos)
        return node

    def cond(self) -> Node:
        self.depth += 1
        if self.depth > MAX_NESTING:
            raise FormulaError("formula is nested too deeply", self.peek().pos)
        try:
            test = self.sum()
            if self.at("?"):
                self.take()
                then = self.cond()
                self.expect(":")
                otherwise = self.cond()
                return Conditional(test, then, otherwise)
            return test
        finally:
            self.depth -= 1

    def sum(self) -> Node:
        node = self.product()
        while self.at("+", "-"):
            op = self.take().value
            node = Binary(op, node, self.product())
        return node

    def product(self) -> Node:
        node = self.unary()
        while self.at("*", "/"):
            op = self.take().value
            node = Binary(op, node, self.unary())
        return node

    def unary(self) -> Node:
        ops = []
        while self.at("+", "-"):
            ops.append(self.take().value)
        node = self.primary()
        for op in reversed(ops):
            node = Unary(op, node)
        return node

    def primary(self) -> Node:
        tok = self.take()
        if tok.kind == "NUM":
            return Num(float(tok.value))
        if tok.kind == "NAME":
            if self.at("("):
                if tok.value not in ALLOWED_FUNCTIONS:
                    raise FormulaError(f"unknown function {tok.value!r}", tok.pos)
                self.take()
                args: List[Node] = []
                if not self.at(")"):
                    args.append(self.cond())
                    while self.at(","):
                        self.take()
                        args.append(self.cond())
                self.expect(")")
                return Call(tok.value, tuple(args))
            if tok.value in ALLOWED_FUNCTIONS:
                raise FormulaError(f"function {tok.value!r} used as a value", tok.pos)
            return Var(tok.value)
        if tok.kind == "OP" and tok.value == "(":
            node = self.cond()
            self.expect(")")
            return node
        raise FormulaError(f"unexpected {tok.value or 'end of formula'!r}", tok.pos)


@lru_cache(maxsize=1024)
def _compile(formula: str) -> Tuple[Node, frozenset]:
    tokens = tokenize(formula)
    if len(tokens) > MAX_TOKENS:
        raise FormulaError("formula is too long", tokens[MAX_TOKENS].pos)
    names = frozenset(t.value for t in tokens if t.kind == "NAME" and t.value not in ALLOWED_FUNCTIONS)
    return _Parser(tokens).parse(), names


def parse(formula: str) -> Node:
    return _compile(formula.strip())[0]


def formula_variables(formula: Optional[str]) -> Set[str]:
    """Identifiers a formula reads (functions excluded); empty when it does not parse."""
    if not formula or not isinstance(formula, str) or not formula.strip():
        return set()
    try:
        return set(_compile(formula.strip())[1])
    except FormulaError:
        return set()


def validate_formula(formula: Optional[str], names: Iterable[str] = ()) -> List[str]:
    """Return problems with a formula given the names available to it ([] when valid)."""
    if not formula or not isinstance(formula, str) or not formula.strip():
        return ["formula is empty"]
    try:
        _, used = _compile(formula.strip())
    except FormulaError as e:
        return [str(e)]
    known = set(names) | ALLOWED_VARIABLES
    return [f"unknown variable {n!r}" for n in sorted(used - known)]


# ---------- evaluation ----------

class _ZeroResult(Exception):
    pass


def _eval(node: Node, ctx: Mapping[str, float]) -> float:
    if isinstance(node, Num):
        return node.value
    if isinstance(node, Var):
        return ctx.get(node.name, 0.0)
    if isinstance(node, Unary):
        v = _eval(node.operand, ctx)
        return -v if node.op == "-" else v
    if isinstance(node, Binary):
        a = _eval(node.left, ctx)
        b = _eval(node.right, ctx)
        if node.op == "+":
            return a + b
        if node.op == "-":
            return a - b
        if node.op == "*":
            return a * b
        if b == 0:
            raise _ZeroResult("division by zero")
        return a / b
    if isinstance(node, Conditional):
        return _eval(node.then, ctx) if _eval(node.test, ctx) != 0 else _eval(node.otherwise, ctx)
    if isinstance(node, Call):
        args = [_eval(a, ctx) for a in node.args]
        if not args:
            raise _ZeroResult(f"{node.func}() without arguments")
        fn = ALLOWED_FUNCTIONS[node.func]
        if node.func in ("min", "max"):
            return float(fn(args))
        return float(fn(args[0]))
    raise _ZeroResult(f"unsupported node {type(node).__name__}")


def evaluate(formula: Optional[str], context: Optional[Mapping[str, Any]]) -> float:
    """Evaluate ``formula`` against ``context``; 0 whenever it is invalid or unsafe."""
    if not formula or not isinstance(formula, str) or not formula.strip():
        return 0
    context = context or {}
    try:
        tree, used = _compile(formula.strip())
    except FormulaError as e:
        log.warning("formula rejected: %r (%s)", formula, e)
        return 0
    unknown = [n for n in used if n not in context and n not in ALLOWED_VARIABLES]
    if unknown:
        log.warning("formula %r references unknown names %s", formula, sorted(unknown))
        return 0
    values: Dict[str, float] = {n: num(context.get(n)) for n in used}
    try:
        result = _eval(tree, values)
    except (_ZeroResult, OverflowError, ValueError) as e:
        log.info("formula %r evaluated to 0: %s", formula, e)
        return 0
    if not math.isfinite(result):
        return 0
    return result
