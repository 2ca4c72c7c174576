#!/usr/bin/env python3
"""
KUBEBUNDLE TEMPLATER - Go-style Actions on Jinja
------------------------------------------------
Templates in bundles are written with Go template actions:

    metadata:
      namespace: {{.Namespace}}
    {{- if .Replicas }}
    spec:
      replicas: {{ .Replicas }}
    {{- end }}

GoActionExtension rewrites those actions into Jinja syntax before the Jinja
lexer sees the source. Actions that do not look like Go (no leading dot,
variable or Go keyword) are left alone and render as Jinja expressions.
Jinja statements and comments use delimiters only the translator emits, so
literal text such as "${#ARR[@]}" or "{%d}" is copied through unchanged.

Supported: field chains, $-variables, if/else if/else/end, range (with an
optional "$i, $e :=" declaration), with, break/continue, the builtin
functions eq ne lt le gt ge and or not len index print printf println,
pipelines, parenthesised commands, comments and {{- -}} trimming.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, Undefined
from jinja2 import TemplateError as JinjaTemplateError
from jinja2.exceptions import TemplateRuntimeError
from jinja2.ext import Extension
from jinja2.sandbox import SandboxedEnvironment

from kubebundle.core import codec
from kubebundle.core.errors import StructuralError, TemplateError
from kubebundle.core.models import SAFE_YAML_ANNOTATION
from kubebundle.options.applier import (
    MISSING_KEY_DEFAULT, MISSING_KEY_ERROR, MISSING_KEY_INVALID, MISSING_KEY_ZERO, check_missing_key,
)

logger = logging.getLogger("kubebundle.templater")

ROOT_VAR = "__root"
NO_VALUE = "<no value>"

# Jinja statement and comment delimiters. Only the translator emits them.
BLOCK_START = "\x02%"
BLOCK_END = "%\x03"
COMMENT_START = "\x02#"
COMMENT_END = "#\x03"

_ACTION = re.compile(r"\{\{(-\s)?(.*?)(\s-)?\}\}", re.DOTALL)

_TOKEN = re.compile(r"""
    (?P<ws>\s+)
  | (?P<str>"(?:\\.|[^"\\])*")
  | (?P<raw>`[^`]*`)
  | (?P<decl>:=)
  | (?P<assign>=)
  | (?P<var>\$[A-Za-z0-9_]*)
  | (?P<num>[-+]?(?:0[xX][0-9a-fA-F]+|\d+(?:\.\d*)?(?:[eE][-+]?\d+)?|\.\d+))
  | (?P<field>(?:\.[A-Za-z_][A-Za-z0-9_]*)+|\.)
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<lparen>\()
  | (?P<rparen>\))
  | (?P<pipe>\|)
  | (?P<comma>,)
""", re.VERBOSE)

GO_KEYWORDS = ("if", "else", "end", "range", "with", "break", "continue", "define", "template", "block")
GO_FUNCS = (
    "eq", "ne", "lt", "le", "gt", "ge", "and", "or", "not", "len", "index",
    "print", "printf", "println",
)
_LITERAL_IDENTS = {"true": "True", "false": "False", "nil": "None"}


# --- Builtin functions -------------------------------------------------------

def _compare(op: str, a: Any, b: Any) -> bool:
    try:
        if op == "lt":
            return a < b
        if op == "le":
            return a <= b
        if op == "gt":
            return a > b
        return a >= b
    except TypeError as e:
        raise TemplateRuntimeError(f"error calling {op}: incompatible types for comparison") from e


def _go_eq(arg1: Any, *args: Any) -> bool:
    if not args:
        raise TemplateRuntimeError("error calling eq: missing argument for comparison")
    return any(arg1 == a for a in args)


def _go_ne(a: Any, b: Any) -> bool:
    return a != b


def _go_lt(a: Any, b: Any) -> bool:
    return _compare("lt", a, b)


def _go_le(a: Any, b: Any) -> bool:
    return _compare("le", a, b)


def _go_gt(a: Any, b: Any) -> bool:
    return _compare("gt", a, b)


def _go_ge(a: Any, b: Any) -> bool:
    return _compare("ge", a, b)


def _go_and(*args: Any) -> Any:
    if not args:
        raise TemplateRuntimeError("wrong number of args for and: want at least 1 got 0")
    for a in args:
        if not a:
            return a
    return args[-1]


def _go_or(*args: Any) -> Any:
    if not args:
        raise TemplateRuntimeError("wrong number of args for or: want at least 1 got 0")
    for a in args:
        if a:
            return a
    return args[-1]


def _go_not(a: Any) -> bool:
    return not a


def _go_len(a: Any) -> int:
    try:
        return len(a)
    except TypeError as e:
        raise TemplateRuntimeError(f"error calling len: len of type {type(a).__name__}") from e


def _go_index(item: Any, *indices: Any) -> Any:
    for idx in indices:
        if isinstance(item, dict):
            item = item.get(idx)
        elif isinstance(item, (list, tuple, str)):
            if not isinstance(idx, int) or isinstance(idx, bool):
                raise TemplateRuntimeError(f"error calling index: cannot index slice with {idx!r}")
            if idx < 0 or idx >= len(item):
                raise TemplateRuntimeError(f"error calling index: index out of range: {idx}")
            item = item[idx]
        else:
            raise TemplateRuntimeError(f"error calling index: can't index item of type {type(item).__name__}")
    return item


_VERB = re.compile(r"%([-+# 0]*)(\d*)(?:\.(\d*))?([a-zA-Z%])")
_NUMERIC_VERBS = "bdoxXeEfFgG"


def _go_str(value: Any) -> str:
    """Formats a value the way Go's %v does."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "<nil>"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(_go_str(v) for v in value) + "]"
    if isinstance(value, dict):
        return "map[" + " ".join(f"{_go_str(k)}:{_go_str(value[k])}" for k in sorted(value)) + "]"
    return str(value)


def _go_type(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float64"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "[]interface {}"
    if isinstance(value, dict):
        return "map[string]interface {}"
    return "<nil>" if value is None else type(value).__name__


def _bad_verb(verb: str, value: Any) -> str:
    return f"%!{verb}({_go_type(value)}={_go_str(value)})"


def _pad(text: str, flags: str, width: str) -> str:
    if not width:
        return text
    if "-" in flags:
        return text.ljust(int(width))
    return text.rjust(int(width))


def _format_verb(flags: str, width: str, precision: Optional[str], verb: str, value: Any) -> str:
    if verb in "vs":
        text = _go_str(value)
        if precision:
            text = text[:int(precision)]
        return _pad(text, flags, width)
    if verb == "q":
        return _pad(json.dumps(value if isinstance(value, str) else _go_str(value)), flags, width)
    if verb == "t":
        if not isinstance(value, bool):
            return _bad_verb(verb, value)
        return _pad(_go_str(value), flags, width)
    if verb not in _NUMERIC_VERBS:
        return _bad_verb(verb, value)

    if verb in "xX" and isinstance(value, str):
        text = value.encode("utf-8").hex()
        return _pad(text.upper() if verb == "X" else text, flags, width)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return _bad_verb(verb, value)
    if verb in "bdoxX":
        if isinstance(value, float):
            if not value.is_integer():
                return _bad_verb(verb, value)
            value = int(value)
        if verb == "b":
            return _pad(format(value, "b"), flags, width)
    spec = "%" + flags + width + ("" if precision is None else "." + (precision or "0")) + verb.replace("F", "f")
    return spec % value


def _go_sprintf(fmt: str, *args: Any) -> str:
    out = []
    last = 0
    argi = 0
    for m in _VERB.finditer(fmt):
        out.append(fmt[last:m.start()])
        last = m.end()
        flags, width, precision, verb = m.groups()
        if verb == "%":
            out.append("%")
            continue
        if argi >= len(args):
            out.append(f"%!{verb}(MISSING)")
            continue
        out.append(_format_verb(flags, width, precision, verb, args[argi]))
        argi += 1
    out.append(fmt[last:])
    if argi < len(args):
        extra = ", ".join(f"{_go_type(a)}={_go_str(a)}" for a in args[argi:])
        out.append(f"%!(EXTRA {extra})")
    return "".join(out)


def _go_printf(fmt: Any, *args: Any) -> str:
    return _go_sprintf(str(fmt), *args)


def _go_print(*args: Any) -> str:
    out = []
    for i, a in enumerate(args):
        # Go separates operands only when neither side is a string.
        if i and not isinstance(a, str) and not isinstance(args[i - 1], str):
            out.append(" ")
        out.append(_go_str(a))
    return "".join(out)


def _go_println(*args: Any) -> str:
    return " ".join(_go_str(a) for a in args) + "\n"


def _go_range(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, dict):
        return [value[k] for k in sorted(value)]
    if isinstance(value, int) and not isinstance(value, bool):
        return list(range(value))
    return list(value)


def _go_range_items(value: Any) -> List[Tuple[Any, Any]]:
    if value is None:
        return []
    if isinstance(value, dict):
        return [(k, value[k]) for k in sorted(value)]
    return list(enumerate(_go_range(value)))


GO_GLOBALS = {
    "__go_eq": _go_eq, "__go_ne": _go_ne, "__go_lt": _go_lt, "__go_le": _go_le,
    "__go_gt": _go_gt, "__go_ge": _go_ge, "__go_and": _go_and, "__go_or": _go_or,
    "__go_not": _go_not, "__go_len": _go_len, "__go_index": _go_index,
    "__go_print": _go_print, "__go_printf": _go_printf, "__go_println": _go_println,
    "__go_range": _go_range, "__go_range_items": _go_range_items,
}


# --- Translation -------------------------------------------------------------

def _tokenize(body: str, name: Optional[str], lineno: int) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    pos = 0
    while pos < len(body):
        m = _TOKEN.match(body, pos)
        if not m:
            raise TemplateSyntaxError(f"unexpected {body[pos]!r} in command", lineno, name)
        kind = m.lastgroup
        text = m.group()
        if kind == "field" and tokens and tokens[-1][0] == "var" and _adjacent(body, m.start()):
            tokens[-1] = ("var", tokens[-1][1] + text)
        elif kind != "ws":
            tokens.append((kind, text))
        pos = m.end()
    return tokens


def _adjacent(body: str, start: int) -> bool:
    return start > 0 and not body[start - 1].isspace()


def _looks_like_go(body: str) -> bool:
    stripped = body.strip()
    if not stripped:
        return False
    if stripped.startswith("/*"):
        return True
    if stripped[0] == "$":
        return True
    if stripped[0] == "." and (len(stripped) == 1 or not stripped[1].isdigit()):
        return True
    if stripped[0] == "(":
        return _looks_like_go(stripped[1:])
    word = re.match(r"[A-Za-z_]+", stripped)
    if word is None:
        return False
    rest = stripped[word.end():]
    if word.group() in GO_KEYWORDS:
        return rest == "" or rest[0].isspace()
    if word.group() in GO_FUNCS:
        return rest != "" and rest[0].isspace()
    return False


class _Block:
    def __init__(self, kind: str, outer_dot: str):
        self.kind = kind
        self.outer_dot = outer_dot


class _GoTranslator:
    """Rewrites one template source; keeps the block stack and the current dot."""

    def __init__(self, source: str, name: Optional[str]):
        self.source = source
        self.name = name
        self.dot = ROOT_VAR
        self.stack: List[_Block] = []
        self.counter = 0
        self.lineno = 1

    def translate(self) -> str:
        out = []
        last = 0
        for m in _ACTION.finditer(self.source):
            out.append(self.source[last:m.start()])
            self.lineno = self.source.count("\n", 0, m.start()) + 1
            body = m.group(2)
            if _looks_like_go(body):
                out.append(self._action(body.strip(), bool(m.group(1)), bool(m.group(3))))
            else:
                out.append(m.group())
            last = m.end()
        out.append(self.source[last:])
        if self.stack:
            raise TemplateSyntaxError(f"unexpected EOF: unclosed {self.stack[-1].kind} action",
                                      self.lineno, self.name)
        return "".join(out)

    def _error(self, msg: str) -> TemplateSyntaxError:
        return TemplateSyntaxError(msg, self.lineno, self.name)

    @staticmethod
    def _tag(body: str, ltrim: bool, rtrim: bool, open_: str = BLOCK_START, close: str = BLOCK_END) -> str:
        return f"{open_}{'-' if ltrim else ''} {body} {'-' if rtrim else ''}{close}"

    def _new_dot(self) -> str:
        self.counter += 1
        return f"__dot{self.counter}"

    def _action(self, body: str, ltrim: bool, rtrim: bool) -> str:
        if body.startswith("/*"):
            if not body.endswith("*/"):
                raise self._error("unclosed comment")
            return self._tag("", ltrim, rtrim, COMMENT_START, COMMENT_END)

        tokens = _tokenize(body, self.name, self.lineno)
        head = tokens[0]
        if head[0] == "ident" and head[1] in GO_KEYWORDS:
            return self._keyword(head[1], tokens[1:], ltrim, rtrim)

        if head[0] == "var" and len(tokens) > 1 and tokens[1][0] in ("decl", "assign"):
            expr = self._pipeline_all(tokens[2:])
            return self._tag(f"set {self._var(head[1])} = {expr}", ltrim, rtrim)

        expr = self._pipeline_all(tokens)
        return self._tag(expr, ltrim, rtrim, "{{", "}}")

    def _keyword(self, word: str, rest: List[Tuple[str, str]], ltrim: bool, rtrim: bool) -> str:
        if word == "if":
            expr = self._pipeline_all(rest)
            self.stack.append(_Block("if", self.dot))
            return self._tag(f"if {expr}", ltrim, rtrim)

        if word == "else":
            if not self.stack:
                raise self._error("unexpected {{else}}")
            block = self.stack[-1]
            if rest:
                if rest[0] != ("ident", "if") or block.kind != "if":
                    raise self._error("unexpected tokens after {{else}}")
                return self._tag(f"elif {self._pipeline_all(rest[1:])}", ltrim, rtrim)
            if block.kind in ("range", "with"):
                self.dot = block.outer_dot
            return self._tag("else", ltrim, rtrim)

        if word == "end":
            if rest:
                raise self._error("unexpected tokens after {{end}}")
            if not self.stack:
                raise self._error("unexpected {{end}}")
            block = self.stack.pop()
            self.dot = block.outer_dot
            if block.kind == "if":
                return self._tag("endif", ltrim, rtrim)
            if block.kind == "range":
                return self._tag("endfor", ltrim, rtrim)
            return self._tag("endif", ltrim, False) + self._tag("endwith", False, rtrim)

        if word == "range":
            decl, rest = self._declaration(rest, allow_pair=True)
            expr = self._pipeline_all(rest)
            inner = self._new_dot()
            self.stack.append(_Block("range", self.dot))
            self.dot = inner
            if len(decl) == 2:
                head = f"for {self._var(decl[0])}, {inner} in __go_range_items({expr})"
            else:
                head = f"for {inner} in __go_range({expr})"
            out = self._tag(head, ltrim, rtrim if not decl else False)
            if decl:
                out += self._tag(f"set {self._var(decl[-1])} = {inner}", False, rtrim)
            return out

        if word == "with":
            decl, rest = self._declaration(rest, allow_pair=False)
            expr = self._pipeline_all(rest)
            inner = self._new_dot()
            self.stack.append(_Block("with", self.dot))
            self.dot = inner
            out = self._tag(f"with {inner} = {expr}", ltrim, False)
            if decl:
                out += self._tag(f"set {self._var(decl[0])} = {inner}", False, False)
            return out + self._tag(f"if {inner}", False, rtrim)

        if word in ("break", "continue"):
            if not any(b.kind == "range" for b in self.stack):
                raise self._error(f"{{{{{word}}}}} outside {{{{range}}}}")
            return self._tag(word, ltrim, rtrim)

        raise self._error(f"{{{{{word}}}}} actions are not supported")

    def _declaration(self, tokens: List[Tuple[str, str]], allow_pair: bool) -> Tuple[List[str], List[Tuple[str, str]]]:
        """Splits a leading "$x :=" or "$i, $e :=" off a range/with pipeline."""
        if len(tokens) >= 2 and tokens[0][0] == "var" and tokens[1][0] == "decl":
            return [tokens[0][1]], tokens[2:]
        if (allow_pair and len(tokens) >= 4 and tokens[0][0] == "var" and tokens[1][0] == "comma"
                and tokens[2][0] == "var" and tokens[3][0] == "decl"):
            return [tokens[0][1], tokens[2][1]], tokens[4:]
        return [], tokens

    def _var(self, text: str) -> str:
        head, _, chain = text.partition(".")
        base = ROOT_VAR if head == "$" else f"__v_{head[1:]}"
        return base + self._subscripts(chain)

    @staticmethod
    def _subscripts(chain: str) -> str:
        if not chain:
            return ""
        return "".join(f'["{part}"]' for part in chain.split("."))

    def _field(self, text: str) -> str:
        if text == ".":
            return self.dot
        return self.dot + self._subscripts(text[1:])

    def _pipeline_all(self, tokens: List[Tuple[str, str]]) -> str:
        if not tokens:
            raise self._error("missing value for command")
        expr, pos = self._pipeline(tokens, 0)
        if pos != len(tokens):
            raise self._error(f"unexpected {tokens[pos][1]!r} in command")
        return expr

    def _pipeline(self, tokens: List[Tuple[str, str]], pos: int) -> Tuple[str, int]:
        expr, pos = self._command(tokens, pos, None)
        while pos < len(tokens) and tokens[pos][0] == "pipe":
            expr, pos = self._command(tokens, pos + 1, expr)
        return expr, pos

    def _command(self, tokens: List[Tuple[str, str]], pos: int, piped: Optional[str]) -> Tuple[str, int]:
        if pos >= len(tokens):
            raise self._error("missing command")
        kind, text = tokens[pos]
        if kind == "ident" and text in GO_FUNCS:
            args = []
            pos += 1
            while pos < len(tokens) and tokens[pos][0] not in ("pipe", "rparen"):
                arg, pos = self._operand(tokens, pos)
                args.append(arg)
            if piped is not None:
                args.append(piped)
            return f"__go_{text}({', '.join(args)})", pos
        if kind == "ident" and text not in _LITERAL_IDENTS:
            raise self._error(f'function "{text}" not defined')
        operand, pos = self._operand(tokens, pos)
        if piped is not None or (pos < len(tokens) and tokens[pos][0] not in ("pipe", "rparen")):
            raise self._error(f"can't give argument to non-function {text}")
        return operand, pos

    def _operand(self, tokens: List[Tuple[str, str]], pos: int) -> Tuple[str, int]:
        kind, text = tokens[pos]
        if kind in ("str", "num"):
            return text, pos + 1
        if kind == "raw":
            return repr(text[1:-1]), pos + 1
        if kind == "field":
            return self._field(text), pos + 1
        if kind == "var":
            return self._var(text), pos + 1
        if kind == "ident" and text in _LITERAL_IDENTS:
            return _LITERAL_IDENTS[text], pos + 1
        if kind == "lparen":
            expr, pos = self._pipeline(tokens, pos + 1)
            if pos >= len(tokens) or tokens[pos][0] != "rparen":
                raise self._error("unclosed left paren")
            return f"({expr})", pos + 1
        raise self._error(f"unexpected {text!r} in operand")


def translate_go_actions(source: str, name: Optional[str] = None) -> str:
    """Rewrites the Go-style actions of a template into Jinja syntax."""
    return _GoTranslator(source, name).translate()


class GoActionExtension(Extension):
    """Jinja extension that accepts Go template actions."""

    def __init__(self, environment: Environment):
        super().__init__(environment)
        environment.globals.update(GO_GLOBALS)

    def preprocess(self, source: str, name: Optional[str], filename: Optional[str] = None) -> str:
        return translate_go_actions(source, name)


# --- Environments ------------------------------------------------------------

class MissingKeyUndefined(StrictUndefined):
    """Fails on any use, naming the missing key."""

    @property
    def _undefined_message(self) -> str:
        if self._undefined_hint:
            return self._undefined_hint
        return f"map has no entry for key {self._undefined_name!r}"


class NoValueUndefined(Undefined):
    """Renders as Go's "<no value>"."""

    def __str__(self) -> str:
        return NO_VALUE


_UNDEFINED = {
    MISSING_KEY_ERROR: MissingKeyUndefined,
    MISSING_KEY_ZERO: Undefined,
    MISSING_KEY_DEFAULT: NoValueUndefined,
    MISSING_KEY_INVALID: NoValueUndefined,
}


def finalize_value(value: Any) -> Any:
    """Renders option values the way they read in YAML."""
    if isinstance(value, Undefined):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return value


def _yaml_scalar_safe(text: str) -> bool:
    if not text or text != text.strip() or "\n" in text:
        return False
    try:
        return codec.load_yaml(text) == text
    except StructuralError:
        return False


def finalize_safe_value(value: Any) -> Any:
    """Like finalize_value, but strings that would not read back as themselves are quoted."""
    if isinstance(value, str) and not _yaml_scalar_safe(value):
        return json.dumps(value)
    return finalize_value(value)


def create_environment(safe_yaml: bool = False, missing_key: str = MISSING_KEY_ERROR) -> Environment:
    check_missing_key(missing_key)
    env_cls = SandboxedEnvironment if safe_yaml else Environment
    return env_cls(
        autoescape=False,
        keep_trailing_newline=True,
        undefined=_UNDEFINED[missing_key],
        finalize=finalize_safe_value if safe_yaml else finalize_value,
        block_start_string=BLOCK_START,
        block_end_string=BLOCK_END,
        comment_start_string=COMMENT_START,
        comment_end_string=COMMENT_END,
        extensions=[GoActionExtension, "jinja2.ext.loopcontrols"],
    )


def has_safe_yaml_annotation(metadata: Optional[Dict[str, Any]]) -> bool:
    annotations = (metadata or {}).get("annotations") or {}
    return SAFE_YAML_ANNOTATION in annotations


class Templater:
    """
    A parsed template plus the environment to run it in. Parse and execution
    failures are raised as TemplateError carrying the template name.
    """

    def __init__(self, tmpl_name: str, template_doc: str, safe_yaml: bool = False,
                 missing_key: str = MISSING_KEY_ERROR):
        self.name = tmpl_name + ("-safetmpl" if safe_yaml else "-tmpl")
        self.safe_yaml = safe_yaml
        env = create_environment(safe_yaml, missing_key)
        try:
            self.template = env.from_string(template_doc)
        except JinjaTemplateError as e:
            raise TemplateError(f"error parsing template {self.name!r}: {e}", self.name) from e

    def execute(self, data: Optional[Dict[str, Any]]) -> str:
        data = data or {}
        context = dict(data)
        context[ROOT_VAR] = data
        try:
            return self.template.render(context)
        except JinjaTemplateError as e:
            raise TemplateError(f"error executing template {self.name!r}: {e}", self.name) from e
