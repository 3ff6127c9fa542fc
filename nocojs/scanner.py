"""
Source scanner for ``preview(...)`` call sites in JS/TS/JSX files.

The lexer understands just enough of the grammar to find call expressions
reliably: comments, strings, template literals with substitutions, regular
expression literals, numbers, identifiers, punctuators and JSX. It does not
build an AST; call sites are found on the token stream after a first pass over
the top-level import declarations has established which local names are bound
to the marker function. Brackets carry the context the lexer opened them in
(block, object literal, class body, JSX container, statement head). That
context separates regex literals from division and methods from calls. It
also locates the nested declarations that rebind an imported name.
"""

import bisect
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from .errors import ParseError
from .options import DEFAULT_IMPORT_SOURCES

logger = logging.getLogger(__name__)

MARKER_FUNCTION = "preview"

# Token kinds
IDENT = "ident"
STRING = "string"
TEMPLATE = "template"          # template literal without substitutions
TEMPLATE_HEAD = "template_head"
TEMPLATE_MIDDLE = "template_middle"
TEMPLATE_TAIL = "template_tail"
NUMBER = "number"
REGEX = "regex"
PUNCT = "punct"
JSX = "jsx"

# Bracket contexts, recorded on '(' and '{' tokens and on their closers
BLOCK = "block"
OBJECT = "object"
CLASS = "class"
FUNCTION = "function"
SWITCH = "switch"
JSX_CONTAINER = "jsx"   # {expression} inside a JSX element
HEAD = "head"           # if/while/for/with (...)
CATCH = "catch"
PARAMS = "params"       # function keyword parameter list
PAREN = "paren"

# Extensions that never contain JSX (type assertions use <T>x there)
_NO_JSX_EXTENSIONS = {".ts", ".mts", ".cts"}

_KEYWORDS_BEFORE_EXPRESSION = {
    "return", "typeof", "instanceof", "in", "of", "new", "delete", "void",
    "throw", "case", "do", "else", "yield", "await", "extends",
}

# Keywords after which '{' opens a specifier list or a destructuring pattern
_OBJECT_KEYWORDS = {"import", "export", "default", "var", "let", "const"}

_PUNCTUATORS = sorted(
    [
        ">>>=", "...", "===", "!==", "**=", "<<=", ">>=", ">>>", "&&=", "||=", "??=",
        "=>", "==", "!=", "<=", ">=", "&&", "||", "??", "?.", "++", "--", "+=", "-=",
        "*=", "/=", "%=", "&=", "|=", "^=", "<<", ">>", "**",
        "{", "}", "(", ")", "[", "]", ";", ",", "<", ">", "+", "-", "*", "/", "%",
        "&", "|", "^", "!", "~", "?", ":", "=", ".", "@",
    ],
    key=len,
    reverse=True,
)

_PAIRS = {"(": ")", "[": "]", "{": "}"}

_IDENT_RE = re.compile(r"#?(?:[$\w]|\\u[0-9a-fA-F]{4}|\\u\{[0-9a-fA-F]+\})+")
_NUMBER_RE = re.compile(
    r"0[xX][0-9a-fA-F_]+n?|0[oO][0-7_]+n?|0[bB][01_]+n?"
    r"|(?:\d[\d_]*(?:\.[\d_]*)?|\.\d[\d_]*)(?:[eE][+-]?\d[\d_]*)?n?"
)
_JSX_NAME_RE = re.compile(r"[A-Za-z_$][\w$\-]*(?:[:.][A-Za-z_$][\w$\-]*)*")

_SIMPLE_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "v": "\v"}
_LINE_TERMINATORS = "\n\r\u2028\u2029"


@dataclass(frozen=True)
class Token:
    kind: str
    value: str  # cooked text for strings and templates, raw text otherwise
    start: int
    end: int
    context: str = ""  # bracket context for '(', ')', '{' and '}'


@dataclass(frozen=True)
class PreviewCallSite:
    """One marker function call found in a source file."""
    start: int                 # whole call expression
    end: int
    line: int                  # 1-based
    column: int                # 0-based
    callee: str
    url: Optional[str]         # cooked first argument, None when not a string literal
    argument_start: int        # first argument only (the replaced part)
    argument_end: int
    argument_text: str
    options: Optional[Dict[str, object]] = None
    ignored_options: Tuple[str, ...] = ()
    rewritable: bool = True
    reason: Optional[str] = None  # why the call cannot be rewritten

    @property
    def quote(self) -> str:
        """Quote character of the original literal."""
        first = self.argument_text[:1]
        return first if first in ("'", '"') else '"'


def _is_id_start(ch: str) -> bool:
    return bool(ch) and (ch in "$_#\\" or (ch.isalpha()) or (ord(ch) > 127 and ch.isidentifier()))


class _Lexer:
    """Tokenizer with nested template, JSX and substitution handling."""

    def __init__(self, source: str, jsx: bool = True):
        self.src = source
        self.n = len(source)
        self.pos = 0
        self.jsx = jsx
        self.tokens: List[Token] = []
        self.last: Optional[Token] = None
        self._line_starts = [0] + [m.end() for m in re.finditer(r"\r\n|[\n\r\u2028\u2029]", source)]

    # -- helpers ---------------------------------------------------------

    def line_col(self, pos: int) -> Tuple[int, int]:
        index = bisect.bisect_right(self._line_starts, pos) - 1
        return index + 1, pos - self._line_starts[index]

    def error(self, message: str, pos: Optional[int] = None) -> ParseError:
        line, column = self.line_col(self.pos if pos is None else pos)
        return ParseError(message, line, column)

    def peek(self, offset: int = 0) -> str:
        index = self.pos + offset
        return self.src[index] if index < self.n else ""

    def emit(self, kind: str, value: str, start: int, end: int, context: str = "") -> Token:
        token = Token(kind, value, start, end, context)
        self.tokens.append(token)
        self.last = token
        return token

    def token_back(self, distance: int) -> Optional[Token]:
        return self.tokens[-distance] if len(self.tokens) >= distance else None

    def skip_trivia(self) -> None:
        src = self.src
        while self.pos < self.n:
            ch = src[self.pos]
            if ch.isspace() or ch == "\ufeff":
                self.pos += 1
            elif src.startswith("//", self.pos):
                while self.pos < self.n and src[self.pos] not in _LINE_TERMINATORS:
                    self.pos += 1
            elif src.startswith("/*", self.pos):
                end = src.find("*/", self.pos + 2)
                if end == -1:
                    raise self.error("Unterminated comment")
                self.pos = end + 2
            else:
                break

    def expression_allowed(self) -> bool:
        """True when the next token starts an operand (regex/JSX position)."""
        prev = self.last
        if prev is None:
            return True
        if prev.kind == IDENT:
            return prev.value in _KEYWORDS_BEFORE_EXPRESSION
        if prev.kind == PUNCT:
            # if (x) /re/ and {} /re/ start a statement; f(x) / 2 divides
            if prev.value == ")":
                return prev.context == HEAD
            if prev.value == "}":
                return prev.context in (BLOCK, SWITCH)
            return prev.value not in ("]", "++", "--")
        return prev.kind in (TEMPLATE_HEAD, TEMPLATE_MIDDLE)

    def paren_context(self) -> str:
        prev = self.last
        if _is_punct(prev, "*") and _is_ident(self.token_back(2), "function"):
            return PARAMS
        if prev is None or prev.kind != IDENT:
            return PAREN
        before = self.token_back(2)
        if _is_punct(before, ".") or _is_punct(before, "?."):
            return PAREN
        if prev.value in ("if", "while", "for", "with"):
            return HEAD
        if prev.value == "await" and _is_ident(before, "for"):
            return HEAD
        if prev.value == "switch":
            return SWITCH
        if prev.value == "catch":
            return CATCH
        if prev.value == "function" or _is_ident(before, "function"):
            return PARAMS
        if _is_punct(before, "*") and _is_ident(self.token_back(3), "function"):
            return PARAMS
        return PAREN

    def brace_context(self, stack: List[Tuple[str, int, str]], closer: Optional[str], class_body: bool) -> str:
        """Classify a '{' from the token before it."""
        prev = self.last
        if class_body:
            return CLASS
        if prev is None:
            return OBJECT if closer else BLOCK
        if prev.kind == PUNCT:
            if prev.value == "=>":
                return FUNCTION
            if prev.value == ")":
                if prev.context == SWITCH:
                    return SWITCH
                return BLOCK if prev.context in (HEAD, CATCH) else FUNCTION
            if prev.value == "{":
                return OBJECT if prev.context == JSX_CONTAINER else BLOCK
            if prev.value in ("}", ";"):
                return BLOCK
            if prev.value == ":":
                # case labels open blocks, everything else is an object value
                return BLOCK if stack and stack[-1][2] == SWITCH else OBJECT
            return OBJECT
        if prev.kind == IDENT:
            if prev.value in ("else", "try", "finally", "do"):
                return BLOCK
            if prev.value in _KEYWORDS_BEFORE_EXPRESSION or prev.value in _OBJECT_KEYWORDS:
                return OBJECT
            return BLOCK
        return OBJECT if prev.kind in (TEMPLATE_HEAD, TEMPLATE_MIDDLE) else BLOCK

    # -- entry point -----------------------------------------------------

    def tokenize(self) -> List[Token]:
        if self.src.startswith("#!"):
            while self.pos < self.n and self.src[self.pos] not in _LINE_TERMINATORS:
                self.pos += 1
        self.scan_code(closer=None)
        return self.tokens

    def scan_code(self, closer: Optional[str], jsx_container: bool = False) -> None:
        """
        Scan tokens until EOF, or until the '}' that closes a substitution.

        The closing brace of a JSX expression container is emitted as a token;
        the one ending a template substitution is not.
        """
        stack: List[Tuple[str, int, str]] = []
        class_depth = -1  # stack depth at which a class body brace is expected
        entered_at = self.pos
        if closer and not jsx_container:
            self.last = None
        while True:
            self.skip_trivia()
            if self.pos >= self.n:
                if stack:
                    raise self.error(f"Unclosed '{stack[-1][0]}'", stack[-1][1])
                if closer:
                    raise self.error("Unterminated expression", entered_at - 1)
                return
            start = self.pos
            ch = self.src[start]

            if ch in "([{":
                context = ""
                if ch == "(":
                    context = self.paren_context()
                elif ch == "{":
                    context = self.brace_context(stack, closer, class_depth == len(stack))
                    if context == CLASS:
                        class_depth = -1
                stack.append((ch, start, context))
                self.pos += 1
                self.emit(PUNCT, ch, start, self.pos, context)
            elif ch in ")]}":
                if not stack:
                    if ch == "}" and closer == "}":
                        self.pos += 1
                        if jsx_container:
                            self.emit(PUNCT, ch, start, self.pos, JSX_CONTAINER)
                        return
                    raise self.error(f"Unexpected '{ch}'")
                opener, opened_at, context = stack.pop()
                if _PAIRS[opener] != ch:
                    line, column = self.line_col(opened_at)
                    raise self.error(f"Expected '{_PAIRS[opener]}' to close '{opener}' from {line}:{column}, found '{ch}'")
                self.pos += 1
                self.emit(PUNCT, ch, start, self.pos, context)
            elif ch in "\"'":
                self.scan_string()
            elif ch == "`":
                self.scan_template()
            elif ch.isdigit() or (ch == "." and self.peek(1).isdigit()):
                match = _NUMBER_RE.match(self.src, start)
                self.pos = match.end()
                self.emit(NUMBER, match.group(0), start, self.pos)
            elif _is_id_start(ch):
                match = _IDENT_RE.match(self.src, start)
                if not match:
                    raise self.error(f"Unexpected character {ch!r}")
                self.pos = match.end()
                after_dot = _is_punct(self.last, ".") or _is_punct(self.last, "?.")
                self.emit(IDENT, match.group(0), start, self.pos)
                if match.group(0) == "class" and not after_dot:
                    class_depth = len(stack)
            elif ch == "/" and self.expression_allowed():
                self.scan_regex()
            elif ch == "<" and self.jsx and self.expression_allowed() and self.jsx_starts_here():
                first_inner = len(self.tokens)
                self.scan_jsx_element()
                # Keep the token list in source order: the element precedes its children
                element = Token(JSX, self.src[start:self.pos], start, self.pos)
                self.tokens.insert(first_inner, element)
                self.last = element
            else:
                for punct in _PUNCTUATORS:
                    if self.src.startswith(punct, start):
                        self.pos += len(punct)
                        self.emit(PUNCT, punct, start, self.pos)
                        # `{ class: 1 }` and `x = y, class` are not class declarations
                        if punct in (":", ",", ";", "=") and class_depth == len(stack):
                            class_depth = -1
                        break
                else:
                    raise self.error(f"Unexpected character {ch!r}")

    # -- literals --------------------------------------------------------

    def read_escape(self, strict: bool) -> str:
        """Cook the escape sequence at self.pos (which points at the backslash)."""
        self.pos += 1
        if self.pos >= self.n:
            raise self.error("Unterminated escape sequence")
        ch = self.src[self.pos]
        if ch == "\r" and self.peek(1) == "\n":
            self.pos += 2
            return ""
        if ch in _LINE_TERMINATORS:
            self.pos += 1
            return ""
        if ch in _SIMPLE_ESCAPES:
            self.pos += 1
            return _SIMPLE_ESCAPES[ch]
        if ch == "x":
            digits = self.src[self.pos + 1:self.pos + 3]
            if re.fullmatch(r"[0-9a-fA-F]{2}", digits):
                self.pos += 3
                return chr(int(digits, 16))
        elif ch == "u":
            match = re.compile(r"u(?:([0-9a-fA-F]{4})|\{([0-9a-fA-F]+)\})").match(self.src, self.pos)
            if match:
                code = int(match.group(1) or match.group(2), 16)
                if code <= 0x10FFFF:
                    self.pos = match.end()
                    return chr(code)
        elif ch in "01234567":
            match = re.compile(r"[0-3][0-7]{0,2}|[4-7][0-7]?").match(self.src, self.pos)
            self.pos = match.end()
            return chr(int(match.group(0), 8))
        else:
            self.pos += 1
            return ch
        if strict:
            raise self.error(f"Invalid escape sequence '\\{ch}'")
        self.pos += 1
        return "\\" + ch

    def scan_string(self) -> None:
        start = self.pos
        quote = self.src[start]
        self.pos += 1
        chars = []
        while True:
            if self.pos >= self.n:
                raise self.error("Unterminated string literal", start)
            ch = self.src[self.pos]
            if ch == quote:
                self.pos += 1
                break
            if ch == "\\":
                chars.append(self.read_escape(strict=True))
            elif ch in "\n\r":
                raise self.error("Unterminated string literal", start)
            else:
                chars.append(ch)
                self.pos += 1
        self.emit(STRING, "".join(chars), start, self.pos)

    def scan_template(self) -> None:
        start = segment_start = self.pos
        self.pos += 1
        chars = []
        has_substitutions = False
        while True:
            if self.pos >= self.n:
                raise self.error("Unterminated template literal", start)
            ch = self.src[self.pos]
            if ch == "`":
                self.pos += 1
                kind = TEMPLATE_TAIL if has_substitutions else TEMPLATE
                self.emit(kind, "".join(chars), segment_start, self.pos)
                return
            if ch == "\\":
                # Tagged templates may contain invalid escapes
                chars.append(self.read_escape(strict=False))
            elif ch == "$" and self.peek(1) == "{":
                self.pos += 2
                kind = TEMPLATE_MIDDLE if has_substitutions else TEMPLATE_HEAD
                self.emit(kind, "".join(chars), segment_start, self.pos)
                has_substitutions = True
                self.scan_code(closer="}")
                segment_start = self.pos - 1
                chars = []
            else:
                chars.append(ch)
                self.pos += 1

    def scan_regex(self) -> None:
        start = self.pos
        self.pos += 1
        in_class = False
        while True:
            if self.pos >= self.n or self.src[self.pos] in _LINE_TERMINATORS:
                raise self.error("Unterminated regular expression", start)
            ch = self.src[self.pos]
            if ch == "\\":
                self.pos += 2
                continue
            self.pos += 1
            if ch == "[":
                in_class = True
            elif ch == "]":
                in_class = False
            elif ch == "/" and not in_class:
                break
        while self.pos < self.n and (self.src[self.pos].isalnum() or self.src[self.pos] in "$_"):
            self.pos += 1
        self.emit(REGEX, self.src[start:self.pos], start, self.pos)

    # -- JSX -------------------------------------------------------------

    def jsx_starts_here(self) -> bool:
        """'<' followed by a tag name or '>' (fragment), but not TS type parameters."""
        nxt = self.peek(1)
        if nxt == ">":
            return True
        match = _JSX_NAME_RE.match(self.src, self.pos + 1)
        if not match:
            return False
        rest = self.src[match.end():match.end() + 40].lstrip()
        # <T,>(x) => x and <T extends U>(x) => x in .tsx files
        return not (rest.startswith(",") or re.match(r"extends\s", rest))

    def read_jsx_name(self) -> str:
        match = _JSX_NAME_RE.match(self.src, self.pos)
        if not match:
            return ""
        self.pos = match.end()
        return match.group(0)

    def scan_jsx_expression(self) -> None:
        start = self.pos
        self.pos += 1
        self.emit(PUNCT, "{", start, self.pos, JSX_CONTAINER)
        self.scan_code(closer="}", jsx_container=True)

    def scan_jsx_element(self) -> None:
        start = self.pos
        self.pos += 1
        self.skip_trivia()
        if self.peek() == ">":
            self.pos += 1
            self.scan_jsx_children(start, "")
            return
        name = self.read_jsx_name()
        if not name:
            raise self.error("Expected JSX tag name", start)
        while True:
            self.skip_trivia()
            if self.pos >= self.n:
                raise self.error(f"Unterminated JSX tag <{name}>", start)
            ch = self.src[self.pos]
            if self.src.startswith("/>", self.pos):
                self.pos += 2
                return
            if ch == ">":
                self.pos += 1
                self.scan_jsx_children(start, name)
                return
            if ch == "{":
                # Spread attribute {...props}
                self.scan_jsx_expression()
                continue
            attribute = self.read_jsx_name()
            if not attribute:
                raise self.error(f"Unexpected character {ch!r} in JSX tag <{name}>")
            self.skip_trivia()
            if self.peek() != "=":
                continue
            self.pos += 1
            self.skip_trivia()
            value_start = self.peek()
            if value_start in ("'", '"'):
                end = self.src.find(value_start, self.pos + 1)
                if end == -1:
                    raise self.error("Unterminated JSX attribute string")
                self.pos = end + 1
            elif value_start == "{":
                self.scan_jsx_expression()
            elif value_start == "<":
                self.scan_jsx_element()
            else:
                raise self.error(f"Invalid value for JSX attribute {attribute}")

    def scan_jsx_children(self, start: int, name: str) -> None:
        while True:
            if self.pos >= self.n:
                raise self.error(f"Unterminated JSX element <{name}>", start)
            ch = self.src[self.pos]
            if ch == "{":
                self.scan_jsx_expression()
            elif ch == "<":
                tag_start = self.pos
                self.pos += 1
                self.skip_trivia()
                if self.peek() != "/":
                    self.pos = tag_start
                    self.scan_jsx_element()
                    continue
                self.pos += 1
                self.skip_trivia()
                closing = self.read_jsx_name()
                self.skip_trivia()
                if self.peek() != ">" or closing != name:
                    raise self.error(f"Expected closing tag </{name}>", tag_start)
                self.pos += 1
                return
            else:
                self.pos += 1


def tokenize(source: str, jsx: bool = True) -> List[Token]:
    """Tokenize source text, raising ParseError on malformed input."""
    return _Lexer(source, jsx).tokenize()


def jsx_enabled(file_path: Optional[str]) -> bool:
    if not file_path:
        return True
    return os.path.splitext(file_path)[1].lower() not in _NO_JSX_EXTENSIONS


# -- import symbol table ------------------------------------------------------

@dataclass
class MarkerBindings:
    """Local names bound to the marker function by import declarations."""
    functions: Set[str] = field(default_factory=set)
    namespaces: Set[str] = field(default_factory=set)

    def __bool__(self) -> bool:
        return bool(self.functions or self.namespaces)


def _is_punct(token: Optional[Token], value: str) -> bool:
    return token is not None and token.kind == PUNCT and token.value == value


def _is_ident(token: Optional[Token], value: Optional[str] = None) -> bool:
    return token is not None and token.kind == IDENT and (value is None or token.value == value)


def find_marker_bindings(tokens: Sequence[Token], import_sources: Sequence[str],
                         marker: str = MARKER_FUNCTION) -> MarkerBindings:
    """
    Build the symbol table from top-level import declarations.

    Handles ``import { preview }``, ``import { preview as p }``,
    ``import { "preview" as p }`` and ``import * as ns``. Type-only imports are
    skipped.
    """
    bindings = MarkerBindings()
    depth = 0
    count = len(tokens)
    i = 0
    while i < count:
        token = tokens[i]
        if token.kind == PUNCT and token.value in "([{":
            depth += 1
        elif token.kind == PUNCT and token.value in ")]}":
            depth -= 1
        if depth != 0 or not _is_ident(token, "import") or (i > 0 and _is_punct(tokens[i - 1], ".")):
            i += 1
            continue
        nxt = tokens[i + 1] if i + 1 < count else None
        if nxt is None or (nxt.kind == PUNCT and nxt.value in ("(", ".")):
            i += 1
            continue

        # Collect the clause up to the module specifier string
        j = i + 1
        braces = 0
        while j < count and not (tokens[j].kind == STRING and braces == 0):
            if _is_punct(tokens[j], "{"):
                braces += 1
            elif _is_punct(tokens[j], "}"):
                braces -= 1
            j += 1
        if j >= count:
            break
        clause = tokens[i + 1:j]
        source = tokens[j].value
        i = j + 1
        if source not in import_sources:
            continue
        if clause and _is_ident(clause[0], "type") and len(clause) > 1 and not (
                _is_ident(clause[1], "from") or _is_punct(clause[1], ",")):
            continue
        _collect_specifiers(clause, marker, bindings)

    return bindings


def _collect_specifiers(clause: Sequence[Token], marker: str, bindings: MarkerBindings) -> None:
    k = 0
    while k < len(clause):
        token = clause[k]
        if _is_punct(token, "*") and k + 2 < len(clause) and _is_ident(clause[k + 1], "as"):
            bindings.namespaces.add(clause[k + 2].value)
            k += 3
            continue
        if _is_punct(token, "{"):
            k += 1
            while k < len(clause) and not _is_punct(clause[k], "}"):
                specifier = []
                while k < len(clause) and not (_is_punct(clause[k], ",") or _is_punct(clause[k], "}")):
                    specifier.append(clause[k])
                    k += 1
                if k < len(clause) and _is_punct(clause[k], ","):
                    k += 1
                _add_specifier(specifier, marker, bindings)
            k += 1
            continue
        k += 1


def _add_specifier(specifier: List[Token], marker: str, bindings: MarkerBindings) -> None:
    if specifier and _is_ident(specifier[0], "type") and len(specifier) > 1 and not _is_ident(specifier[1], "as"):
        return
    if not specifier:
        return
    imported = specifier[0]
    if imported.kind not in (IDENT, STRING) or imported.value != marker:
        return
    if len(specifier) == 3 and _is_ident(specifier[1], "as") and specifier[2].kind == IDENT:
        bindings.functions.add(specifier[2].value)
    elif len(specifier) == 1 and imported.kind == IDENT:
        bindings.functions.add(imported.value)


# -- call sites ----------------------------------------------------------------

_DECLARATION_KEYWORDS = {"function", "class", "const", "let", "var", "interface", "type", "enum"}
_METHOD_MODIFIERS = {"static", "async", "get", "set", "public", "private", "protected", "override", "readonly"}


def _matching_paren(tokens: Sequence[Token], open_index: int) -> int:
    depth = 0
    for index in range(open_index, len(tokens)):
        token = tokens[index]
        if token.kind != PUNCT:
            continue
        if token.value in "([{":
            depth += 1
        elif token.value in ")]}":
            depth -= 1
            if depth == 0:
                return index
    return -1


def _split_arguments(tokens: Sequence[Token]) -> List[List[Token]]:
    arguments: List[List[Token]] = [[]]
    depth = 0
    for token in tokens:
        if token.kind == PUNCT:
            if token.value in "([{":
                depth += 1
            elif token.value in ")]}":
                depth -= 1
            elif token.value == "," and depth == 0:
                arguments.append([])
                continue
        arguments[-1].append(token)
    if not arguments[-1]:
        arguments.pop()
    return arguments


def _literal_value(tokens: Sequence[Token]):
    """Return (True, value) for a literal expression, (False, None) otherwise."""
    tokens = list(tokens)
    # Drop TypeScript `as const` style suffixes
    if len(tokens) >= 3 and _is_ident(tokens[-2], "as"):
        tokens = tokens[:-2]
    negative = False
    if len(tokens) == 2 and _is_punct(tokens[0], "-") and tokens[1].kind == NUMBER:
        negative = True
        tokens = tokens[1:]
    if len(tokens) != 1:
        return False, None
    token = tokens[0]
    if token.kind in (STRING, TEMPLATE):
        return True, token.value
    if token.kind == NUMBER:
        text = token.value.replace("_", "")
        if text.endswith("n"):
            text = text[:-1]
        try:
            if re.fullmatch(r"0[0-7]+", text):
                value = int(text, 8)  # legacy octal
            elif re.fullmatch(r"0[xXoObB][0-9a-fA-F]+", text):
                value = int(text, 0)
            elif re.fullmatch(r"[0-9]+", text):
                value = int(text)
            else:
                value = float(text)
        except ValueError:
            return False, None
        return True, -value if negative else value
    if token.kind == IDENT and token.value in ("true", "false"):
        return True, token.value == "true"
    if token.kind == IDENT and token.value in ("null", "undefined"):
        return True, None
    return False, None


def parse_object_literal(tokens: Sequence[Token]) -> Tuple[Optional[Dict[str, object]], Tuple[str, ...]]:
    """
    Parse ``{ key: literal, ... }`` tokens.

    Returns:
        The literal properties (None if the tokens are not an object literal)
        and the names of properties whose values are not literals.
    """
    if len(tokens) < 2 or not _is_punct(tokens[0], "{") or not _is_punct(tokens[-1], "}"):
        return None, ()
    if _matching_paren(tokens, 0) != len(tokens) - 1:
        return None, ()
    values: Dict[str, object] = {}
    ignored: List[str] = []
    for prop in _split_arguments(tokens[1:-1]):
        if len(prop) >= 3 and prop[0].kind in (IDENT, STRING, NUMBER) and _is_punct(prop[1], ":"):
            ok, value = _literal_value(prop[2:])
            if ok and value is not None:
                values[prop[0].value] = value
                continue
            ignored.append(prop[0].value)
        else:
            ignored.append("".join(t.value for t in prop[:2]) or "?")
    return values, tuple(ignored)


def _bracket_structure(tokens: Sequence[Token]) -> Tuple[List[int], List[int]]:
    """
    Pair up bracket tokens.

    Returns:
        For every token, the index of its partner bracket (-1 for non-brackets)
        and the index of the innermost bracket enclosing it (-1 at top level).
    """
    partner = [-1] * len(tokens)
    enclosing = [-1] * len(tokens)
    stack: List[int] = []
    for index, token in enumerate(tokens):
        if token.kind == PUNCT and token.value in ")]}" and stack:
            opener = stack.pop()
            partner[opener], partner[index] = index, opener
        enclosing[index] = stack[-1] if stack else -1
        if token.kind == PUNCT and token.value in "([{":
            stack.append(index)
    return partner, enclosing


def _is_method_definition(tokens: Sequence[Token], enclosing: Sequence[int], index: int,
                          close_index: int) -> bool:
    """``name(...) {`` directly inside an object literal or class body."""
    container = enclosing[index]
    if container == -1 or not _is_punct(tokens[container], "{") or tokens[container].context not in (OBJECT, CLASS):
        return False
    prev = tokens[index - 1] if index > 0 else None
    after = tokens[close_index + 1] if close_index + 1 < len(tokens) else None
    if not (_is_punct(after, "{") or _is_punct(after, ":")):
        return False
    if prev is None:
        return False
    if prev.kind == PUNCT and prev.value in ("{", ",", ";", "}", "*"):
        return True
    return prev.kind == IDENT and prev.value in _METHOD_MODIFIERS


# -- local bindings ------------------------------------------------------------

_VARIABLE_KEYWORDS = {"var", "let", "const"}
_PARAMETER_MODIFIERS = {"public", "private", "protected", "readonly", "override"}
_STATEMENT_PREFIXES = {"async", "export", "default", "declare"}


@dataclass(frozen=True)
class _Scope:
    """Token range over which some names are rebound by a local declaration."""
    start: int
    end: int
    names: frozenset

    def shadows(self, index: int, name: str) -> bool:
        return self.start <= index <= self.end and name in self.names


def _property_value(prop: Sequence[Token]) -> Sequence[Token]:
    depth = 0
    for k, token in enumerate(prop):
        if token.kind != PUNCT:
            continue
        if token.value in "([{":
            depth += 1
        elif token.value in ")]}":
            depth -= 1
        elif token.value == ":" and depth == 0:
            return prop[k + 1:]
    return prop


def _binding_names(element: Sequence[Token]) -> List[str]:
    """Names bound by one parameter or declarator pattern (defaults and types ignored)."""
    tokens = list(element)
    if tokens and _is_punct(tokens[0], "..."):
        tokens = tokens[1:]
    while (len(tokens) > 1 and _is_ident(tokens[0]) and tokens[0].value in _PARAMETER_MODIFIERS
           and (tokens[1].kind == IDENT or _is_punct(tokens[1], "{") or _is_punct(tokens[1], "["))):
        tokens = tokens[1:]
    if not tokens:
        return []
    first = tokens[0]
    if first.kind == IDENT:
        return [first.value]
    if not (_is_punct(first, "{") or _is_punct(first, "[")):
        return []
    close = _matching_paren(tokens, 0)
    if close == -1:
        return []
    names: List[str] = []
    for item in _split_arguments(tokens[1:close]):
        names.extend(_binding_names(_property_value(item) if first.value == "{" else item))
    return names


class _LocalBindings:
    """
    Finds declarations that rebind the marker's local names in nested scopes.

    Covers function, arrow, method and catch parameters, var/let/const
    declarators (including destructuring and for-loop heads) and function and
    class declarations. Top-level declarations are ignored: they would clash
    with the import itself.
    """

    def __init__(self, tokens: Sequence[Token], partner: Sequence[int], enclosing: Sequence[int],
                 names: Set[str]):
        self.tokens = tokens
        self.count = len(tokens)
        self.partner = partner
        self.enclosing = enclosing
        self.names = names
        self.functions: List[Tuple[int, int]] = []
        self.scopes: List[_Scope] = []

    def collect(self) -> List[_Scope]:
        if not self.names:
            return []
        tokens = self.tokens
        for i, token in enumerate(tokens):
            if i > 0 and (_is_punct(tokens[i - 1], ".") or _is_punct(tokens[i - 1], "?.")):
                continue
            if _is_ident(token, "function"):
                self.function_keyword(i)
            elif _is_punct(token, "=>"):
                self.arrow(i)
            elif _is_ident(token, "catch") and _is_punct(self.token(i + 1), "("):
                self.catch_clause(i + 1)
            elif (_is_punct(token, "(") and token.context == PAREN and i > 0
                  and tokens[i - 1].kind in (IDENT, STRING)
                  and _is_method_definition(tokens, self.enclosing, i - 1, self.partner[i])):
                self.method(i)
        # var needs every function range first
        for i, token in enumerate(tokens):
            if token.kind != IDENT or (i > 0 and _is_punct(tokens[i - 1], ".")):
                continue
            nxt = self.token(i + 1)
            if token.value in _VARIABLE_KEYWORDS and (
                    _is_ident(nxt) or _is_punct(nxt, "{") or _is_punct(nxt, "[")):
                self.variable(i, token.value, self.declarator_names(i + 1))
            elif token.value == "class" and _is_ident(nxt) and self.starts_statement(i):
                self.add_to_block(i, [nxt.value])
        return self.scopes

    # -- helpers

    def token(self, index: int) -> Optional[Token]:
        return self.tokens[index] if 0 <= index < self.count else None

    def add(self, start: int, end: int, names: Sequence[str]) -> None:
        found = self.names.intersection(names)
        if found:
            self.scopes.append(_Scope(start, end, frozenset(found)))

    def add_to_block(self, index: int, names: Sequence[str]) -> None:
        j = self.enclosing[index]
        while j != -1:
            token = self.tokens[j]
            if token.value == "{" and token.context not in (OBJECT, JSX_CONTAINER):
                self.add(j, self.partner[j], names)
                return
            j = self.enclosing[j]

    def starts_statement(self, index: int) -> bool:
        j = index - 1
        while j >= 0 and _is_ident(self.tokens[j]) and self.tokens[j].value in _STATEMENT_PREFIXES:
            j -= 1
        if j < 0:
            return True
        prev = self.tokens[j]
        if prev.kind == PUNCT:
            return prev.value in (";", "{", "}") or (prev.value == ")" and prev.context == HEAD)
        return prev.kind == IDENT and prev.value in ("else", "do")

    def parameter_names(self, open_index: int) -> List[str]:
        names: List[str] = []
        for param in _split_arguments(self.tokens[open_index + 1:self.partner[open_index]]):
            names.extend(_binding_names(param))
        return names

    def skip(self, k: int) -> int:
        """Index after the token at k, jumping over a bracketed group."""
        token = self.tokens[k]
        if token.kind == PUNCT and token.value in "([{" and self.partner[k] > k:
            return self.partner[k] + 1
        return k + 1

    def body_after(self, k: int) -> int:
        """The '{' of a function body, skipping a return type annotation."""
        while k < self.count:
            token = self.tokens[k]
            if token.kind == PUNCT:
                if token.value == "{":
                    return k
                if token.value in (";", "=>", ",", ")", "]", "}"):
                    return -1
            k = self.skip(k)
        return -1

    def expression_end(self, k: int) -> int:
        """Last token of the expression starting at k (an arrow function body)."""
        templates = 0
        while k < self.count:
            token = self.tokens[k]
            if token.kind == PUNCT and token.value in (",", ";", ")", "]", "}"):
                return k - 1
            if token.kind == TEMPLATE_HEAD:
                templates += 1
            elif token.kind in (TEMPLATE_MIDDLE, TEMPLATE_TAIL):
                if templates == 0:
                    return k - 1
                if token.kind == TEMPLATE_TAIL:
                    templates -= 1
            k = self.skip(k)
        return self.count - 1

    def statement_end(self, k: int) -> int:
        while k < self.count:
            token = self.tokens[k]
            if token.kind == PUNCT and token.value == ";":
                return k
            if token.kind == PUNCT and token.value in ")]}":
                return k - 1
            k = self.skip(k)
        return self.count - 1

    # -- declarations

    def function_keyword(self, i: int) -> None:
        k = i + 1
        if _is_punct(self.token(k), "*"):
            k += 1
        name = None
        if _is_ident(self.token(k)):
            name = self.tokens[k].value
            k += 1
        # TypeScript type parameters
        while k < self.count and not _is_punct(self.tokens[k], "("):
            if _is_punct(self.tokens[k], ";"):
                return
            k = self.skip(k)
        if k >= self.count:
            return
        body = self.body_after(self.partner[k] + 1)
        if body == -1:
            return  # overload signature
        params = self.parameter_names(k)
        if name and self.starts_statement(i):
            self.add_to_block(i, [name])
        elif name:
            params.append(name)
        self.functions.append((k, self.partner[body]))
        self.add(k, self.partner[body], params)

    def arrow(self, a: int) -> None:
        prev = self.token(a - 1)
        if _is_punct(prev, ")"):
            start = self.partner[a - 1]
            params = self.parameter_names(start)
        elif _is_ident(prev):
            start, params = a - 1, [prev.value]
        else:
            return
        if _is_punct(self.token(a + 1), "{"):
            end = self.partner[a + 1]
        else:
            end = self.expression_end(a + 1)
        self.functions.append((start, end))
        self.add(start, end, params)

    def method(self, open_index: int) -> None:
        body = self.body_after(self.partner[open_index] + 1)
        if body == -1:
            return
        self.functions.append((open_index, self.partner[body]))
        self.add(open_index, self.partner[body], self.parameter_names(open_index))

    def catch_clause(self, open_index: int) -> None:
        body = self.partner[open_index] + 1
        if not _is_punct(self.token(body), "{"):
            return
        self.add(open_index, self.partner[body], self.parameter_names(open_index))

    def declarator_names(self, k: int) -> List[str]:
        names: List[str] = []
        while k < self.count:
            token = self.tokens[k]
            if token.kind == IDENT:
                end = k + 1
            elif _is_punct(token, "{") or _is_punct(token, "["):
                end = self.skip(k)
            else:
                break
            names.extend(_binding_names(self.tokens[k:end]))
            k = end
            # Type annotation and initializer, up to the next declarator
            while k < self.count:
                token = self.tokens[k]
                if token.kind == PUNCT and token.value in (";", ")", "]", "}"):
                    return names
                if _is_punct(token, ","):
                    break
                k = self.skip(k)
            k += 1
        return names

    def variable(self, i: int, keyword: str, names: List[str]) -> None:
        if keyword == "var":
            around = [(start, end) for start, end in self.functions if start <= i <= end]
            if around:
                self.add(*max(around), names)
            return
        head = self.token(i - 1)
        if _is_punct(head, "(") and head.context == HEAD:
            body = self.partner[i - 1] + 1
            if _is_punct(self.token(body), "{"):
                end = self.partner[body]
            else:
                end = self.statement_end(body)
            self.add(i - 1, end, names)
            return
        self.add_to_block(i, names)


def _iter_call_sites(lexer: _Lexer, tokens: List[Token], bindings: MarkerBindings,
                     marker: str) -> Iterator[PreviewCallSite]:
    source = lexer.src
    count = len(tokens)
    partner, enclosing = _bracket_structure(tokens)
    scopes = _LocalBindings(tokens, partner, enclosing, bindings.functions | bindings.namespaces).collect()
    for index, token in enumerate(tokens):
        if token.kind != IDENT:
            continue
        prev = tokens[index - 1] if index > 0 else None
        if prev is not None and (_is_punct(prev, ".") or _is_punct(prev, "?.")):
            continue
        if prev is not None and prev.kind == IDENT and prev.value in _DECLARATION_KEYWORDS:
            continue

        if token.value in bindings.functions:
            callee_end = index
        elif (token.value in bindings.namespaces and index + 2 < count
              and (_is_punct(tokens[index + 1], ".") or _is_punct(tokens[index + 1], "?."))
              and _is_ident(tokens[index + 2], marker)):
            callee_end = index + 2
        else:
            continue

        open_index = callee_end + 1
        if open_index < count and _is_punct(tokens[open_index], "?."):
            open_index += 1
        if open_index >= count or not _is_punct(tokens[open_index], "("):
            continue
        close_index = partner[open_index]
        if close_index == -1:
            continue
        if callee_end == index and _is_method_definition(tokens, enclosing, index, close_index):
            continue
        if any(scope.shadows(index, token.value) for scope in scopes):
            logger.debug(f"Skipping {token.value} at {lexer.line_col(token.start)}: rebound by a local declaration")
            continue

        yield _build_call_site(lexer, source, tokens, index, callee_end, open_index, close_index)


def _build_call_site(lexer: _Lexer, source: str, tokens: Sequence[Token], index: int, callee_end: int,
                     open_index: int, close_index: int) -> PreviewCallSite:
    start = tokens[index].start
    end = tokens[close_index].end
    line, column = lexer.line_col(start)
    callee = source[start:tokens[callee_end].end]
    arguments = _split_arguments(tokens[open_index + 1:close_index])

    if not arguments:
        position = tokens[close_index].start
        return PreviewCallSite(start, end, line, column, callee, None, position, position, "",
                               rewritable=False, reason="no image URL provided")

    first = arguments[0]
    argument_start, argument_end = first[0].start, first[-1].end
    argument_text = source[argument_start:argument_end]

    options = None
    ignored: Tuple[str, ...] = ()
    if len(arguments) > 1:
        options, ignored = parse_object_literal(arguments[1])
        if options is None:
            ignored = ("<options argument is not an object literal>",)

    if len(first) == 1 and first[0].kind in (STRING, TEMPLATE):
        return PreviewCallSite(start, end, line, column, callee, first[0].value, argument_start,
                               argument_end, argument_text, options, ignored)

    return PreviewCallSite(start, end, line, column, callee, None, argument_start, argument_end,
                           argument_text, options, ignored, rewritable=False,
                           reason="first argument is not a string literal")


def scan(source_text: str, file_path: Optional[str] = None,
         import_sources: Sequence[str] = DEFAULT_IMPORT_SOURCES,
         marker: str = MARKER_FUNCTION) -> Iterator[PreviewCallSite]:
    """
    Find marker function call sites in source order.

    The text is tokenized immediately so a syntax error raises ParseError from
    this call; the call sites themselves are produced lazily.

    Args:
        source_text: JS/TS/JSX source
        file_path: Used to decide whether JSX is allowed
        import_sources: Module names that export the marker function
        marker: Exported name of the marker function

    Returns:
        Iterator[PreviewCallSite]: A one-shot generator of call sites

    Raises:
        ParseError: If the text cannot be tokenized
    """
    lexer = _Lexer(source_text, jsx_enabled(file_path))
    tokens = lexer.tokenize()
    bindings = find_marker_bindings(tokens, import_sources, marker)
    logger.debug(f"Scanned {len(tokens)} tokens, marker bindings: "
                 f"{sorted(bindings.functions)} namespaces: {sorted(bindings.namespaces)}")
    return _iter_call_sites(lexer, tokens, bindings, marker)
