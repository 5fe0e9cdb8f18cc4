"""
Module Signature Scanner
========================

A small tokenizer for JavaScript/TypeScript module syntax.

``parse_module_signature(text)`` returns the imports, exports and top-level
definitions of a module. It understands comments, quoted strings, template
literals and regular-expression literals well enough that an ``import`` or
``export`` appearing inside any of them is never mistaken for a real one.
It is deliberately not a parser: malformed input yields a partial result,
never an exception.

Usage:
    from forgeheal.module_signature import parse_module_signature

    sig = parse_module_signature(source_text)
    for spec in sig.imports:
        print(spec.source, spec.symbols)
    print(sig.exports)
"""

from dataclasses import dataclass, field
from typing import Iterator, Optional

from forgeheal.models import ImportSpec


JS_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")

# Tokens after which a "/" starts a regex literal rather than a division.
# Angle brackets and "}" are excluded so JSX tags are not read as regexes.
_REGEX_PRECEDERS = set("(,=:[!&|?{;+-*%~^")
_REGEX_KEYWORDS = {"return", "typeof", "case", "do", "else", "in", "of", "new", "delete", "void", "throw"}

_DECLARATION_MODIFIERS = {"declare", "async", "abstract", "const"}
_DECLARATION_KEYWORDS = {"function", "class", "interface", "type", "enum", "const", "let", "var", "namespace", "module"}
_ITERATION_CALLS = {"map", "forEach", "reduce"}

_RESERVED = {
    "function", "class", "interface", "type", "enum", "const", "let", "var",
    "new", "this", "null", "undefined", "true", "false", "async", "await",
    "typeof", "void", "return", "import", "export", "default",
}


@dataclass
class Token:
    """A lexical token. ``kind`` is ident, string, template, regex, number or punct."""
    kind: str
    value: str
    line: int


@dataclass
class ModuleSignature:
    """Import/export surface of one module."""
    imports: list[ImportSpec] = field(default_factory=list)
    exports: list[str] = field(default_factory=list)
    definitions: list[str] = field(default_factory=list)
    local_export_refs: list[str] = field(default_factory=list)
    reexport_sources: list[str] = field(default_factory=list)

    @property
    def import_sources(self) -> list[str]:
        return [spec.source for spec in self.imports]

    def to_dict(self) -> dict:
        return {
            "imports": [spec.to_dict() for spec in self.imports],
            "exports": list(self.exports),
            "definitions": list(self.definitions),
            "local_export_refs": list(self.local_export_refs),
            "reexport_sources": list(self.reexport_sources),
        }


def is_script_path(path: str) -> bool:
    """True when ``path`` names a JavaScript/TypeScript module."""
    return path.lower().endswith(JS_EXTENSIONS)


# =============================================================================
# Lexer
# =============================================================================

def _is_ident_start(ch: str) -> bool:
    return ch.isalpha() or ch in "_$"


def _is_ident_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_$"


def _scan_quoted(text: str, i: int) -> int:
    """Return the index just past the string literal starting at ``i``."""
    quote = text[i]
    i += 1
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote or ch == "\n":
            return i + 1
        i += 1
    return n


def _scan_template(text: str, i: int) -> int:
    """Return the index just past the template literal starting at ``i``."""
    i += 1
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "`":
            return i + 1
        if text.startswith("${", i):
            i = _scan_interpolation(text, i + 2)
            continue
        i += 1
    return n


def _scan_interpolation(text: str, i: int) -> int:
    depth = 1
    n = len(text)
    while i < n and depth:
        ch = text[i]
        if ch in "'\"":
            i = _scan_quoted(text, i)
            continue
        if ch == "`":
            i = _scan_template(text, i)
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        i += 1
    return i


def _scan_regex(text: str, i: int) -> int:
    i += 1
    n = len(text)
    in_class = False
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "\n":
            return i
        if ch == "[":
            in_class = True
        elif ch == "]":
            in_class = False
        elif ch == "/" and not in_class:
            i += 1
            while i < n and _is_ident_char(text[i]):
                i += 1
            return i
        i += 1
    return n


def _regex_allowed(prev: Optional[Token]) -> bool:
    if prev is None:
        return True
    if prev.kind == "punct":
        return prev.value in _REGEX_PRECEDERS or prev.value == "=>"
    return prev.kind == "ident" and prev.value in _REGEX_KEYWORDS


def tokenize(text: str) -> Iterator[Token]:
    """
    Split JS/TS source into tokens, dropping whitespace and comments.

    String and template literals become single tokens whose value is the
    literal body without quotes.
    """
    i = 0
    n = len(text)
    line = 1
    prev: Optional[Token] = None

    while i < n:
        ch = text[i]

        if ch == "\n":
            line += 1
            i += 1
            continue
        if ch.isspace():
            i += 1
            continue

        if text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            end = n if end == -1 else end + 2
            line += text.count("\n", i, end)
            i = end
            continue

        start = i
        if ch in "'\"":
            i = _scan_quoted(text, i)
            body = text[start + 1:i - 1] if i - start >= 2 else ""
            token = Token("string", body, line)
        elif ch == "`":
            i = _scan_template(text, i)
            token = Token("template", text[start + 1:i - 1], line)
            line += text.count("\n", start, i)
        elif ch == "/" and _regex_allowed(prev):
            i = _scan_regex(text, i)
            token = Token("regex", text[start:i], line)
        elif _is_ident_start(ch):
            while i < n and _is_ident_char(text[i]):
                i += 1
            token = Token("ident", text[start:i], line)
        elif ch.isdigit():
            while i < n and (_is_ident_char(text[i]) or text[i] == "."):
                i += 1
            token = Token("number", text[start:i], line)
        elif text.startswith("...", i):
            i += 3
            token = Token("punct", "...", line)
        elif text.startswith("=>", i):
            i += 2
            token = Token("punct", "=>", line)
        else:
            i += 1
            token = Token("punct", ch, line)

        prev = token
        yield token


# =============================================================================
# Signature Extraction
# =============================================================================

class _Cursor:
    """Index-based walker over a token list."""

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0

    def peek(self, offset: int = 0) -> Optional[Token]:
        idx = self.pos + offset
        if 0 <= idx < len(self.tokens):
            return self.tokens[idx]
        return None

    def is_value(self, value: str, offset: int = 0) -> bool:
        token = self.peek(offset)
        return token is not None and token.value == value and token.kind in ("ident", "punct")

    def is_ident(self, offset: int = 0) -> bool:
        token = self.peek(offset)
        return token is not None and token.kind == "ident"

    def advance(self, count: int = 1) -> None:
        self.pos += count


def _parse_named_list(cur: _Cursor) -> list[tuple[str, str]]:
    """
    Parse ``{ a, b as c, type d, 'e' as f }`` starting at the ``{``.

    Returns (imported_or_local_name, bound_or_exported_name) pairs.
    """
    pairs: list[tuple[str, str]] = []
    cur.advance()
    while cur.peek() is not None and not cur.is_value("}"):
        token = cur.peek()
        if token.kind == "ident" and token.value == "type" and cur.peek(1) is not None \
                and cur.peek(1).kind in ("ident", "string") and not cur.is_value("as", 1):
            cur.advance()
            token = cur.peek()
        if token.kind in ("ident", "string"):
            name = token.value
            alias = name
            cur.advance()
            if cur.is_value("as") and cur.peek(1) is not None:
                alias = cur.peek(1).value
                cur.advance(2)
            pairs.append((name, alias))
            continue
        cur.advance()
    cur.advance()
    return pairs


def _parse_from_source(cur: _Cursor) -> Optional[str]:
    if cur.is_value("from") and cur.peek(1) is not None and cur.peek(1).kind == "string":
        source = cur.peek(1).value
        cur.advance(2)
        return source
    return None


def _parse_import(cur: _Cursor, sig: ModuleSignature) -> None:
    """Parse a static import statement; the cursor sits on ``import``."""
    cur.advance()
    token = cur.peek()
    if token is None:
        return

    if token.kind == "string":
        sig.imports.append(ImportSpec(source=token.value, symbols=[]))
        cur.advance()
        return

    if token.value == "type" and cur.peek(1) is not None and not cur.is_value("from", 1) \
            and not cur.is_value(",", 1):
        cur.advance()

    symbols: list[str] = []
    bindings: list[str] = []

    if cur.is_ident() and not cur.is_value("from"):
        symbols.append("default")
        bindings.append(cur.peek().value)
        cur.advance()
        if cur.is_value(","):
            cur.advance()

    if cur.is_value("*"):
        cur.advance()
        if cur.is_value("as") and cur.is_ident(1):
            symbols.append("*")
            bindings.append(cur.peek(1).value)
            cur.advance(2)
    elif cur.is_value("{"):
        for name, alias in _parse_named_list(cur):
            symbols.append(name)
            bindings.append(alias)

    source = _parse_from_source(cur)
    if source is not None:
        sig.imports.append(ImportSpec(source=source, symbols=symbols))
        sig.definitions.extend(bindings)


def _parse_declaration_names(cur: _Cursor) -> list[str]:
    """
    Parse the name(s) introduced by a declaration at the cursor.

    Handles function/class/interface/type/enum/namespace declarations and
    simple or destructured variable declarations.
    """
    while cur.is_ident() and cur.peek().value in _DECLARATION_MODIFIERS \
            and cur.is_ident(1) and cur.peek(1).value in _DECLARATION_KEYWORDS | {"function"}:
        cur.advance()

    token = cur.peek()
    if token is None or token.kind != "ident" or token.value not in _DECLARATION_KEYWORDS:
        return []
    keyword = token.value
    cur.advance()
    if keyword == "function" and cur.is_value("*"):
        cur.advance()

    if keyword in ("const", "let", "var") and (cur.is_value("{") or cur.is_value("[")):
        return _parse_destructured_names(cur)

    if cur.is_ident() and cur.peek().value not in _RESERVED:
        name = cur.peek().value
        cur.advance()
        return [name]
    return []


def _parse_destructured_names(cur: _Cursor) -> list[str]:
    opener = cur.peek().value
    closer = "}" if opener == "{" else "]"
    names: list[str] = []
    depth = 0
    while cur.peek() is not None:
        token = cur.peek()
        if token.value == opener and token.kind == "punct":
            depth += 1
        elif token.value == closer and token.kind == "punct":
            depth -= 1
            if depth == 0:
                cur.advance()
                break
        elif token.kind == "ident" and depth == 1:
            nxt = cur.peek(1)
            if nxt is not None and nxt.value in (",", "}", "]", "="):
                names.append(token.value)
        cur.advance()
    return names


def _parse_export(cur: _Cursor, sig: ModuleSignature) -> None:
    """Parse an export statement; the cursor sits on ``export``."""
    cur.advance()
    token = cur.peek()
    if token is None:
        return

    if token.value == "default" and token.kind == "ident":
        sig.exports.append("default")
        cur.advance()
        if cur.is_ident() and cur.peek().value in _DECLARATION_KEYWORDS | _DECLARATION_MODIFIERS:
            sig.definitions.extend(_parse_declaration_names(cur))
            return
        ref = cur.peek()
        nxt = cur.peek(1)
        if ref is not None and ref.kind == "ident" and ref.value not in _RESERVED and (
            nxt is None or nxt.value == ";" or nxt.line > ref.line
        ):
            sig.local_export_refs.append(ref.value)
            cur.advance()
        return

    if token.value == "*":
        cur.advance()
        alias = None
        if cur.is_value("as") and cur.peek(1) is not None:
            alias = cur.peek(1).value
            cur.advance(2)
        source = _parse_from_source(cur)
        if source is not None:
            sig.imports.append(ImportSpec(source=source, symbols=["*"]))
            if alias:
                sig.exports.append(alias)
            else:
                sig.reexport_sources.append(source)
        return

    if token.value == "type" and cur.is_value("{", 1):
        cur.advance()

    if cur.is_value("{"):
        pairs = _parse_named_list(cur)
        source = _parse_from_source(cur)
        sig.exports.extend(alias for _, alias in pairs)
        if source is not None:
            sig.imports.append(ImportSpec(source=source, symbols=[name for name, _ in pairs]))
        else:
            sig.local_export_refs.extend(name for name, _ in pairs)
        return

    names = _parse_declaration_names(cur)
    sig.exports.extend(names)
    sig.definitions.extend(names)


def _parse_call_source(cur: _Cursor) -> Optional[str]:
    """Match ``(<string>)`` at the cursor; used for require() and import()."""
    if cur.is_value("(") and cur.peek(1) is not None and cur.peek(1).kind == "string" \
            and cur.is_value(")", 2):
        return cur.peek(1).value
    return None


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def parse_module_signature(text: str) -> ModuleSignature:
    """
    Extract the import/export surface of a JS/TS module.

    Args:
        text: Module source code.

    Returns:
        ModuleSignature. Never raises; unrecognized constructs are ignored.
    """
    sig = ModuleSignature()
    tokens = list(tokenize(text or ""))
    cur = _Cursor(tokens)
    depth = 0

    while cur.peek() is not None:
        token = cur.peek()
        prev = cur.peek(-1) if cur.pos > 0 else None
        after_dot = prev is not None and prev.value == "." and prev.kind == "punct"

        if token.kind == "punct":
            if token.value in "{([":
                depth += 1
            elif token.value in "})]":
                depth = max(0, depth - 1)
            cur.advance()
            continue

        if token.kind == "ident" and not after_dot:
            if token.value == "import":
                if cur.is_value("(", 1):
                    cur.advance()
                    source = _parse_call_source(cur)
                    if source is not None:
                        sig.imports.append(ImportSpec(source=source, symbols=[]))
                    continue
                if depth == 0 and not cur.is_value(".", 1):
                    _parse_import(cur, sig)
                    continue
            elif token.value == "require":
                cur.advance()
                source = _parse_call_source(cur)
                if source is not None:
                    sig.imports.append(ImportSpec(source=source, symbols=[]))
                continue
            elif token.value == "export" and depth == 0:
                _parse_export(cur, sig)
                continue
            elif depth == 0 and token.value in _DECLARATION_KEYWORDS | _DECLARATION_MODIFIERS:
                if token.value != "type" or (cur.is_ident(1) and (cur.is_value("=", 2) or cur.is_value("<", 2))):
                    start = cur.pos
                    names = _parse_declaration_names(cur)
                    sig.definitions.extend(names)
                    if cur.pos == start:
                        cur.advance()
                    continue

        cur.advance()

    sig.exports = _dedupe(sig.exports)
    sig.definitions = _dedupe(sig.definitions)
    sig.local_export_refs = _dedupe(sig.local_export_refs)
    return sig


# =============================================================================
# Complexity
# =============================================================================

def complexity_score(text: str) -> int:
    """
    Heuristic complexity: 2 per conditional, 3 per loop or iteration call,
    1 per closure, plus 10 for files longer than 200 lines.
    """
    tokens = list(tokenize(text or ""))
    conditionals = loops = closures = 0

    for idx, token in enumerate(tokens):
        nxt = tokens[idx + 1] if idx + 1 < len(tokens) else None
        prev = tokens[idx - 1] if idx > 0 else None

        if token.kind == "ident":
            if token.value == "if" and nxt is not None and nxt.value == "(":
                conditionals += 1
            elif token.value in ("for", "while") and nxt is not None and nxt.value == "(":
                loops += 1
            elif token.value in _ITERATION_CALLS and prev is not None and prev.value == "." \
                    and nxt is not None and nxt.value == "(":
                loops += 1
            elif token.value == "function":
                closures += 1
        elif token.kind == "punct":
            if token.value == "=>":
                closures += 1
            elif token.value == "?" and nxt is not None and nxt.value not in (":", ".", "?") \
                    and (prev is None or prev.value != "?"):
                conditionals += 1

    line_count = len((text or "").split("\n"))
    return conditionals * 2 + loops * 3 + closures + (10 if line_count > 200 else 0)
