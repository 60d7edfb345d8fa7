"""
cffi declaration generator for the opus headers.

The umbrella header is run through the C preprocessor, the result is parsed
with pycparser, and every declaration that comes from the umbrella header or
one of the package's include directories is written out as a cffi ``cdef``
source. Integer macros become ``static const`` constants whose C type is
either forced by a MacroTypeRule or inferred from the value.
"""

import copy
import logging
import os
import re
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, Sequence

from pycparser import c_ast, c_generator, c_parser, preprocess_file
from pycparser.c_parser import ParseError

from opuslink._internals.errors import GenerationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MacroTypeRule:
    """Macros whose name starts with ``prefix`` are declared as ``c_type``."""

    prefix: str
    c_type: str

    def matches(self, name: str) -> bool:
        return name.startswith(self.prefix)


# opus error codes and CTL requests are passed around as plain ints
MACRO_TYPE_RULES = (MacroTypeRule("OPUS", "int"),)

# Neutralize compiler extensions pycparser does not understand
CPP_ARGS = [
    "-E",
    "-dD",
    "-D__attribute__(x)=",
    "-D__declspec(x)=",
    "-D__extension__=",
    "-D__restrict=",
    "-D__restrict__=",
    "-D__inline=",
    "-D__inline__=",
    "-D__asm__(x)=",
    "-D__asm(x)=",
    "-D__builtin_va_list=void*",
    "-D_Nullable=",
    "-D_Nonnull=",
    "-D_Null_unspecified=",
]

INT32_MIN = -(2 ** 31)
UINT32_MAX = 2 ** 32 - 1

BANNER = "/* Generated by opuslink from {header}; do not edit. */\n"


@dataclass
class Constant:
    """An integer macro and the C type it is declared with."""

    name: str
    value: int
    c_type: str

    def render(self) -> str:
        return f"static const {self.c_type} {self.name} = {self.value};"


@dataclass
class Declarations:
    """Rendered C declarations plus integer constants, in source order."""

    items: list[str] = field(default_factory=list)
    constants: list[Constant] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.items and not self.constants


class HeaderParser(Protocol):
    def parse(
        self,
        header: Path,
        include_dirs: Sequence[Path],
        macro_rules: Sequence[MacroTypeRule],
    ) -> Declarations:
        ...


@dataclass
class GeneratedBindings:
    """Paths written by one generation run."""

    artifact: Path
    depfile: Path
    rebuild_triggers: list[Path]


def infer_int_type(value: int) -> str:
    """Narrowest C type for a macro value when no rule applies."""
    if value < 0:
        return "int" if value >= INT32_MIN else "long long"
    return "unsigned int" if value <= UINT32_MAX else "unsigned long long"


def macro_type(name: str, value: int, macro_rules: Sequence[MacroTypeRule]) -> str:
    for rule in macro_rules:
        if rule.matches(name):
            return rule.c_type
    return infer_int_type(value)


# ---------------------------------------------------------------------------
# Integer constant expressions

class _NotConstant(Exception):
    pass


def _c_div(a: int, b: int) -> int:
    if b == 0:
        raise _NotConstant("division by zero")
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


def _c_mod(a: int, b: int) -> int:
    return a - b * _c_div(a, b)


_BINARY_OPS = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "/": _c_div,
    "%": _c_mod,
    "<<": lambda a, b: a << b,
    ">>": lambda a, b: a >> b,
    "&": lambda a, b: a & b,
    "|": lambda a, b: a | b,
    "^": lambda a, b: a ^ b,
    "<": lambda a, b: int(a < b),
    ">": lambda a, b: int(a > b),
    "<=": lambda a, b: int(a <= b),
    ">=": lambda a, b: int(a >= b),
    "==": lambda a, b: int(a == b),
    "!=": lambda a, b: int(a != b),
    "&&": lambda a, b: int(bool(a) and bool(b)),
    "||": lambda a, b: int(bool(a) or bool(b)),
}

_UNARY_OPS = {
    "-": lambda a: -a,
    "+": lambda a: a,
    "~": lambda a: ~a,
    "!": lambda a: int(not a),
}


def parse_int_literal(text: str) -> int:
    """Value of a C integer literal such as ``10``, ``0x1F``, ``017`` or ``4000UL``."""
    digits = re.sub(r"[uUlL]+$", "", text)
    if digits[:2] in ("0x", "0X"):
        return int(digits, 16)
    if digits[:2] in ("0b", "0B"):
        return int(digits, 2)
    if len(digits) > 1 and digits.startswith("0"):
        return int(digits, 8)
    return int(digits, 10)


def evaluate(node: c_ast.Node, known) -> int:
    """Evaluate an integer constant expression; raises _NotConstant otherwise."""
    if isinstance(node, c_ast.Constant):
        if not node.type.endswith("int"):
            raise _NotConstant(node.type)
        return parse_int_literal(node.value)
    if isinstance(node, c_ast.ID):
        if node.name not in known:
            raise _NotConstant(node.name)
        return known[node.name]
    if isinstance(node, c_ast.UnaryOp) and node.op in _UNARY_OPS:
        return _UNARY_OPS[node.op](evaluate(node.expr, known))
    if isinstance(node, c_ast.BinaryOp) and node.op in _BINARY_OPS:
        return _BINARY_OPS[node.op](evaluate(node.left, known), evaluate(node.right, known))
    if isinstance(node, c_ast.Cast):
        return evaluate(node.expr, known)
    if isinstance(node, c_ast.TernaryOp):
        branch = node.iftrue if evaluate(node.cond, known) else node.iffalse
        return evaluate(branch, known)
    raise _NotConstant(type(node).__name__)


class _MacroValues:
    """
    Integer values of object-like macros, evaluated on first lookup.

    Like the preprocessor, a macro may refer to one defined after it or in a
    system header. Self-referencing macros are not constants.
    """

    def __init__(self, bodies: dict[str, str], parser: c_parser.CParser):
        self.bodies = bodies
        self.parser = parser
        self._values: dict[str, int] = {}
        self._failed: set[str] = set()
        self._active: set[str] = set()

    def __contains__(self, name: str) -> bool:
        return name in self.bodies

    def __getitem__(self, name: str) -> int:
        if name in self._values:
            return self._values[name]
        if name in self._failed or name in self._active or not self.bodies.get(name):
            raise _NotConstant(name)

        self._active.add(name)
        try:
            expr = self.parser.parse(f"int __opuslink_macro = ({self.bodies[name]});").ext[0].init
            value = evaluate(expr, self)
        except (ParseError, ValueError, _NotConstant) as e:
            self._failed.add(name)
            raise _NotConstant(f"{name}: {e}") from e
        finally:
            self._active.discard(name)

        self._values[name] = value
        return value


# ---------------------------------------------------------------------------
# Preprocessed text

_LINE_MARKER = re.compile(r'^#\s*(?:line\s+)?(\d+)\s+"((?:[^"\\]|\\.)*)"')
_DEFINE = re.compile(r"^#\s*define\s+([A-Za-z_]\w*)(\()?\s*(.*)$")
_UNDEF = re.compile(r"^#\s*undef\s+([A-Za-z_]\w*)")
_PRAGMA = re.compile(r"^#\s*pragma\b")


class _Origins:
    """Decides whether a source file belongs to the bound package."""

    def __init__(self, header: Path, include_dirs: Sequence[Path]):
        self.header = Path(header).resolve()
        self.include_dirs = [Path(d).resolve() for d in include_dirs]
        self._cache: dict[str, bool] = {}

    def __contains__(self, filename: str) -> bool:
        if filename not in self._cache:
            self._cache[filename] = self._check(filename)
        return self._cache[filename]

    def _check(self, filename: str) -> bool:
        if not filename or filename.startswith("<"):
            return False
        path = Path(filename.replace("\\\\", "\\")).resolve()
        if path == self.header:
            return True
        return any(path.is_relative_to(d) for d in self.include_dirs)


def split_macros(
    text: str,
    origins,
    external: dict[str, str] | None = None,
) -> tuple[str, list[tuple[str, str]]]:
    """
    Separate macro definitions from preprocessed C.

    Returns the C text with every directive except line markers and pragmas
    blanked out (so line numbers are kept), and the object-like macros defined
    in files accepted by ``origins`` as (name, body) pairs in definition order.
    Object-like macros from other files are collected into ``external`` when
    it is given.
    """
    current = ""
    macros: dict[str, str] = {}
    if external is None:
        external = {}
    lines = text.splitlines()
    for i, line in enumerate(lines):
        stripped = line.lstrip()
        if not stripped.startswith("#"):
            continue
        marker = _LINE_MARKER.match(stripped)
        if marker:
            current = marker.group(2)
            continue
        if _PRAGMA.match(stripped):
            continue
        lines[i] = ""
        define = _DEFINE.match(stripped)
        if define:
            name, function_like, body = define.groups()
            if function_like:
                continue
            if current not in origins:
                external[name] = body.strip()
                continue
            # A redefinition keeps the position of the first definition
            macros[name] = body.strip()
            continue
        undef = _UNDEF.match(stripped)
        if undef:
            macros.pop(undef.group(1), None)
            external.pop(undef.group(1), None)
    return "\n".join(lines) + "\n", list(macros.items())


def _declaration_source(node: c_ast.Node, generator: c_generator.CGenerator) -> str | None:
    if isinstance(node, c_ast.Pragma):
        return None
    if isinstance(node, c_ast.FuncDef):
        node = node.decl
    if isinstance(node, c_ast.Decl) and (node.storage or node.funcspec):
        dropped = ("extern", "static") if isinstance(node.type, c_ast.FuncDecl) else ("extern",)
        node = copy.copy(node)
        node.storage = [s for s in node.storage if s not in dropped]
        node.funcspec = [s for s in node.funcspec if s != "inline"]
    return generator.visit(node) + ";"


def parse_preprocessed(
    text: str,
    header: Path,
    include_dirs: Sequence[Path],
    macro_rules: Sequence[MacroTypeRule] = MACRO_TYPE_RULES,
    filename: str = "<preprocessed>",
) -> Declarations:
    """Extract the package's declarations from ``cc -E -dD`` output."""
    origins = _Origins(header, include_dirs)
    external: dict[str, str] = {}
    source, macros = split_macros(text, origins, external)
    parser = c_parser.CParser()

    try:
        ast = parser.parse(source, filename=filename)
    except ParseError as e:
        raise GenerationError(f"unable to parse {header}: {e}") from e

    generator = c_generator.CGenerator()
    result = Declarations()
    for node in ast.ext:
        if node.coord is None or node.coord.file not in origins:
            continue
        rendered = _declaration_source(node, generator)
        if rendered is not None:
            result.items.append(rendered)

    values = _MacroValues({**external, **dict(macros)}, parser)
    for name, body in macros:
        if not body:
            continue
        try:
            value = values[name]
        except _NotConstant as e:
            logger.debug("Skipping macro %s (%s)", name, e)
            continue
        result.constants.append(Constant(name, value, macro_type(name, value, macro_rules)))

    return result


class PycparserHeaderParser:
    """Parse a header closure with the system C preprocessor and pycparser."""

    def __init__(self, cc: str = "cc", extra_args: Sequence[str] = ()):
        self.cc = cc
        self.extra_args = list(extra_args)

    def preprocess(self, header: Path, include_dirs: Sequence[Path]) -> str:
        args = CPP_ARGS + [f"-I{d}" for d in include_dirs] + self.extra_args
        logger.debug("Preprocessing %s with %s %s", header, self.cc, " ".join(args))
        try:
            return preprocess_file(str(header), cpp_path=self.cc, cpp_args=args)
        except (RuntimeError, subprocess.CalledProcessError) as e:
            raise GenerationError(
                f"preprocessing {header} failed: {e}",
                "check that a C compiler is installed (set CC) and that the opus headers are found",
            ) from e

    def parse(
        self,
        header: Path,
        include_dirs: Sequence[Path],
        macro_rules: Sequence[MacroTypeRule],
    ) -> Declarations:
        text = self.preprocess(header, include_dirs)
        return parse_preprocessed(text, header, include_dirs, macro_rules, filename=str(header))


# ---------------------------------------------------------------------------
# Output

def render_cdef(declarations: Declarations, header_name: str) -> str:
    """Serialize declarations as a cffi cdef source."""
    parts = [BANNER.format(header=header_name)]
    if declarations.items:
        parts.append("\n".join(declarations.items) + "\n")
    if declarations.constants:
        parts.append("\n".join(c.render() for c in declarations.constants) + "\n")
    return "\n".join(parts)


def _escape_dep(path: Path) -> str:
    return str(path).replace(" ", "\\ ")


def render_depfile(target: Path, dependencies: Sequence[Path]) -> str:
    """Make-style dependency line: ``target: dep dep ...``."""
    deps = " ".join(_escape_dep(d) for d in dependencies)
    return f"{_escape_dep(target)}: {deps}\n"


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def write_atomic(path: Path, content: str) -> None:
    """Replace ``path`` with ``content``; on failure the old file (if any) is untouched."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
        # mkstemp creates 0600; use the mode a plain open() would give
        os.chmod(tmp_name, 0o666 & ~_current_umask())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def generate_bindings(
    header: Path,
    include_dirs: Sequence[Path],
    output: Path,
    parser: HeaderParser | None = None,
    macro_rules: Sequence[MacroTypeRule] = MACRO_TYPE_RULES,
) -> GeneratedBindings:
    """
    Parse ``header`` and write its declarations to ``output``.

    A depfile naming the header and every include directory is written next
    to the output, so the build reruns whenever one of them changes.
    """
    header = Path(header)
    output = Path(output)
    include_dirs = [Path(d) for d in include_dirs]
    triggers = [header] + include_dirs

    if not header.is_file():
        raise GenerationError(f"umbrella header {header} does not exist")
    if parser is None:
        parser = PycparserHeaderParser()

    declarations = parser.parse(header, include_dirs, macro_rules)
    if declarations is None or declarations.is_empty():
        raise GenerationError(
            f"no declarations found in {header}",
            "check that the include directories contain the opus headers",
        )
    logger.info(
        "Parsed %d declarations and %d constants from %s",
        len(declarations.items), len(declarations.constants), header.name,
    )

    depfile = output.with_name(output.name + ".d")
    written = []
    try:
        write_atomic(output, render_cdef(declarations, header.name))
        written.append(output)
        write_atomic(depfile, render_depfile(output, triggers))
    except OSError as e:
        for path in written:
            path.unlink(missing_ok=True)
        raise GenerationError(f"unable to write {output}: {e}") from e

    return GeneratedBindings(artifact=output, depfile=depfile, rebuild_triggers=triggers)
