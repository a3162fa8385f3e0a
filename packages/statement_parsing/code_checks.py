"""Static checks applied to generated parser code before local execution.

Parser code is the *body* of ``def parse_statement(text):``. It is wrapped,
parsed with :mod:`ast` and walked against a deny-list of constructs that could
reach outside the restricted namespace: imports, dynamic evaluation,
filesystem/network/process/timer names, private and dunder attribute access,
frame and code-object introspection, and a few control-flow forms that would
defeat the execution deadline.

The deny-list is a first line of defence for the restricted-local strategy;
it is not a substitute for process isolation.
"""

from __future__ import annotations

import ast
import textwrap
from dataclasses import dataclass

PARSER_FUNCTION_NAME = "parse_statement"
PARSER_PARAMETER = "text"
# Literals at or above this size usually smuggle an encoded payload.
MAX_STRING_LITERAL_LENGTH: int = 10_000

# Frame, traceback and code-object attributes lead back to the caller's globals.
INTROSPECTION_ATTR_PREFIXES: tuple[str, ...] = ("gi_", "cr_", "ag_", "f_", "tb_", "co_")

BLOCKED_NAMES: frozenset[str] = frozenset(
    {
        # dynamic evaluation / reflection
        "eval",
        "exec",
        "compile",
        "__import__",
        "globals",
        "locals",
        "vars",
        "dir",
        "getattr",
        "setattr",
        "delattr",
        "type",
        "super",
        "object",
        "classmethod",
        "staticmethod",
        "property",
        "memoryview",
        "bytearray",
        "breakpoint",
        "help",
        "input",
        "exit",
        "quit",
        "BaseException",
        # filesystem / process / network / timers
        "open",
        "os",
        "sys",
        "io",
        "subprocess",
        "socket",
        "shutil",
        "pathlib",
        "importlib",
        "builtins",
        "ctypes",
        "threading",
        "multiprocessing",
        "asyncio",
        "signal",
        "time",
        "urllib",
        "http",
        "requests",
        "pickle",
        "marshal",
    }
)


@dataclass(frozen=True, slots=True)
class CodeViolation:
    rule: str
    lineno: int
    snippet: str

    def describe(self) -> str:
        return f"{self.rule} (line {self.lineno}: {self.snippet})"


@dataclass(frozen=True, slots=True)
class CodeCheckResult:
    valid: bool
    errors: tuple[str, ...] = ()
    tree: ast.Module | None = None
    syntax_error: bool = False


def wrap_parser_source(code: str) -> str:
    """Return module source defining ``parse_statement(text)`` around ``code``."""

    body = textwrap.dedent(code).strip("\n")
    if not body.strip():
        body = "pass"
    return f"def {PARSER_FUNCTION_NAME}({PARSER_PARAMETER}):\n" + textwrap.indent(
        body, "    ", lambda _line: True
    )


def check_syntax(code: str) -> CodeCheckResult:
    """Parse the wrapped parser source; report a syntax error as a value."""

    source = wrap_parser_source(code)
    try:
        tree = ast.parse(source, filename="<parser>", mode="exec")
    except SyntaxError as e:
        # Line numbers are reported relative to the parser body.
        line = (e.lineno or 1) - 1
        return CodeCheckResult(
            valid=False,
            errors=(f"Syntax error: {e.msg} (line {line})",),
            syntax_error=True,
        )
    return CodeCheckResult(valid=True, tree=tree)


class _DenyListVisitor(ast.NodeVisitor):
    def __init__(self, source_lines: list[str]) -> None:
        self._lines = source_lines
        self.violations: list[CodeViolation] = []

    def _flag(self, node: ast.AST, rule: str) -> None:
        lineno = getattr(node, "lineno", 1)
        raw = self._lines[lineno - 1] if 0 < lineno <= len(self._lines) else ""
        snippet = raw.strip()
        if len(snippet) > 120:
            snippet = snippet[:117] + "..."
        # Report relative to the parser body (the wrapper adds one line).
        self.violations.append(
            CodeViolation(rule=rule, lineno=max(lineno - 1, 1), snippet=snippet)
        )

    def visit_Import(self, node: ast.Import) -> None:
        self._flag(node, "import statements are not allowed")

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        self._flag(node, "import statements are not allowed")

    def visit_Global(self, node: ast.Global) -> None:
        self._flag(node, "global declarations are not allowed")

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self._flag(node, "nonlocal declarations are not allowed")

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._flag(node, "class definitions are not allowed")

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._flag(node, "async code is not allowed")

    def visit_Await(self, node: ast.Await) -> None:
        self._flag(node, "async code is not allowed")

    def visit_Yield(self, node: ast.Yield) -> None:
        self._flag(node, "generators are not allowed; return a list")

    def visit_YieldFrom(self, node: ast.YieldFrom) -> None:
        self._flag(node, "generators are not allowed; return a list")

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.type is None:
            self._flag(node, "bare except is not allowed; catch Exception subclasses")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id in BLOCKED_NAMES:
            self._flag(node, f"use of '{node.id}' is not allowed")
        elif node.id.startswith("__"):
            self._flag(node, f"dunder name '{node.id}' is not allowed")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("_"):
            self._flag(node, f"private attribute access '.{node.attr}' is not allowed")
        elif node.attr.startswith(INTROSPECTION_ATTR_PREFIXES):
            self._flag(node, f"introspection attribute '.{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_Constant(self, node: ast.Constant) -> None:
        if not isinstance(node.value, str):
            return
        if len(node.value) >= MAX_STRING_LITERAL_LENGTH:
            self._flag(node, "suspiciously long string literal")
        elif "__" in node.value:
            self._flag(node, "dunder reference inside string literal")


def validate_code(code: str) -> CodeCheckResult:
    """Run the syntax check and then the deny-list over ``code``.

    Returns a result whose ``errors`` each name the violated rule and the
    offending source line. On success ``tree`` holds the parsed module ready
    for compilation.
    """

    syntax = check_syntax(code)
    if not syntax.valid or syntax.tree is None:
        return syntax

    source_lines = wrap_parser_source(code).splitlines()
    visitor = _DenyListVisitor(source_lines)
    visitor.visit(syntax.tree)
    if visitor.violations:
        return CodeCheckResult(
            valid=False,
            errors=tuple(v.describe() for v in visitor.violations),
        )
    return syntax


__all__ = [
    "BLOCKED_NAMES",
    "CodeCheckResult",
    "CodeViolation",
    "INTROSPECTION_ATTR_PREFIXES",
    "MAX_STRING_LITERAL_LENGTH",
    "PARSER_FUNCTION_NAME",
    "PARSER_PARAMETER",
    "check_syntax",
    "validate_code",
    "wrap_parser_source",
]
