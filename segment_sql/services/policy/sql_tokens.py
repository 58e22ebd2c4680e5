"""Minimal SQL lexer for the segment query policy.

Not a SQL parser. It recognizes only what the
read-only/tenant policy needs: words, quoted identifiers, single-quoted
string literals, parentheses, commas, semicolons and dots, each tagged
with its parenthesis depth. Anything it cannot lex with confidence
(dollar quoting, prefixed string literals, unterminated quotes,
unbalanced parentheses) raises ``SQLTokenizeError`` so callers reject
the statement.
"""
from __future__ import annotations

from dataclasses import dataclass


class SQLTokenizeError(ValueError):
    pass


WORD = "word"
QUOTED = "quoted"
STRING = "string"
LPAREN = "lparen"
RPAREN = "rparen"
COMMA = "comma"
SEMICOLON = "semicolon"
DOT = "dot"
SYMBOL = "symbol"


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    start: int
    end: int
    depth: int

    @property
    def lower(self) -> str:
        return self.text.lower()

    def is_word(self, *values: str) -> bool:
        return self.kind == WORD and self.text.lower() in values


@dataclass(frozen=True)
class TableReference:
    table_name: str | None
    alias: str | None
    keyword: str

    @property
    def is_identifier(self) -> bool:
        return self.table_name is not None


_PUNCTUATION = {
    "(": LPAREN,
    ")": RPAREN,
    ",": COMMA,
    ";": SEMICOLON,
    ".": DOT,
}

# Words that end a FROM list at the depth it was opened.
FROM_CLAUSE_END_KEYWORDS = {
    "where",
    "group",
    "having",
    "order",
    "limit",
    "offset",
    "fetch",
    "window",
    "union",
    "intersect",
    "except",
    "for",
}

# Words that can follow a table name but are never its alias.
_NON_ALIAS_KEYWORDS = FROM_CLAUSE_END_KEYWORDS | {
    "as",
    "on",
    "using",
    "join",
    "inner",
    "left",
    "right",
    "full",
    "outer",
    "cross",
    "natural",
    "lateral",
    "tablesample",
}


def _is_word_start(ch: str) -> bool:
    return ch.isalpha() or ch == "_"


def _is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch in {"_", "$"}


def tokenize(sql: str) -> list[Token]:
    text = str(sql or "")
    tokens: list[Token] = []
    depth = 0
    length = len(text)
    i = 0
    while i < length:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue

        if ch == "'":
            if i > 0 and (_is_word_char(text[i - 1]) or text[i - 1] == "&"):
                raise SQLTokenizeError("prefixed string literals are not allowed")
            j = i + 1
            while True:
                if j >= length:
                    raise SQLTokenizeError("unterminated string literal")
                if text[j] == "'":
                    if j + 1 < length and text[j + 1] == "'":
                        j += 2
                        continue
                    break
                j += 1
            tokens.append(Token(STRING, text[i : j + 1], i, j + 1, depth))
            i = j + 1
            continue

        if ch == '"':
            if i > 0 and text[i - 1] == "&":
                raise SQLTokenizeError("prefixed identifiers are not allowed")
            j = i + 1
            while True:
                if j >= length:
                    raise SQLTokenizeError("unterminated quoted identifier")
                if text[j] == '"':
                    if j + 1 < length and text[j + 1] == '"':
                        j += 2
                        continue
                    break
                j += 1
            tokens.append(Token(QUOTED, text[i : j + 1], i, j + 1, depth))
            i = j + 1
            continue

        if ch == "$":
            raise SQLTokenizeError("dollar-quoted strings and positional parameters are not allowed")

        if _is_word_start(ch):
            j = i + 1
            while j < length and _is_word_char(text[j]):
                j += 1
            if "$" in text[i:j]:
                raise SQLTokenizeError("dollar-quoted strings and positional parameters are not allowed")
            tokens.append(Token(WORD, text[i:j], i, j, depth))
            i = j
            continue

        if ch.isdigit():
            j = i + 1
            while j < length and (text[j].isalnum() or text[j] == "."):
                j += 1
            tokens.append(Token(SYMBOL, text[i:j], i, j, depth))
            i = j
            continue

        kind = _PUNCTUATION.get(ch)
        if kind == LPAREN:
            tokens.append(Token(LPAREN, ch, i, i + 1, depth))
            depth += 1
        elif kind == RPAREN:
            depth -= 1
            if depth < 0:
                raise SQLTokenizeError("unbalanced parentheses")
            tokens.append(Token(RPAREN, ch, i, i + 1, depth))
        elif kind is not None:
            tokens.append(Token(kind, ch, i, i + 1, depth))
        else:
            tokens.append(Token(SYMBOL, ch, i, i + 1, depth))
        i += 1

    if depth != 0:
        raise SQLTokenizeError("unbalanced parentheses")
    return tokens


def unquote_identifier(text: str) -> str:
    value = str(text or "")
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return value[1:-1].replace('""', '"')
    return value


def _read_qualified_name(
    tokens: list[Token], index: int
) -> tuple[str | None, tuple[int, int] | None, int]:
    """Read ``name(.name)*`` at ``index``.

    Returns ``(normalized, span, next_index)``; ``normalized`` is
    lower-cased and unquoted, ``span`` locates the source text.
    """
    if index >= len(tokens) or tokens[index].kind not in {WORD, QUOTED}:
        return None, None, index
    first = tokens[index]
    if first.kind == WORD and first.lower in _NON_ALIAS_KEYWORDS:
        return None, None, index
    parts = [unquote_identifier(first.text)]
    start = first.start
    end = first.end
    i = index + 1
    while (
        i + 1 < len(tokens)
        and tokens[i].kind == DOT
        and tokens[i + 1].kind in {WORD, QUOTED}
    ):
        parts.append(unquote_identifier(tokens[i + 1].text))
        end = tokens[i + 1].end
        i += 2
    return ".".join(parts).lower(), (start, end), i


def _read_alias(tokens: list[Token], index: int) -> tuple[str | None, int]:
    i = index
    if i < len(tokens) and tokens[i].is_word("as"):
        i += 1
    if i >= len(tokens):
        return None, i
    tok = tokens[i]
    if tok.kind == QUOTED:
        return tok.text, i + 1
    if tok.kind == WORD and tok.lower not in _NON_ALIAS_KEYWORDS:
        return tok.text, i + 1
    return None, index


def _is_distinct_from(tokens: list[Token], index: int) -> bool:
    # a IS [NOT] DISTINCT FROM b
    return (
        index >= 2
        and tokens[index - 1].is_word("distinct")
        and tokens[index - 2].is_word("is", "not")
    )


def extract_table_references(sql: str, tokens: list[Token] | None = None) -> list[TableReference]:
    """Collect every FROM/JOIN (and comma-listed) table reference.

    A FROM only opens a table clause when a SELECT is pending at the same
    parenthesis depth, so ``EXTRACT(YEAR FROM x)`` is not a reference.
    References whose target is not an identifier (derived tables, table
    functions) are returned with ``table_name=None``.
    """
    toks = tokens if tokens is not None else tokenize(sql)
    refs: list[TableReference] = []
    pending_select_depths: set[int] = set()
    from_clause_depths: set[int] = set()

    def _take(index: int, keyword: str, depth: int) -> int:
        name, span, next_index = _read_qualified_name(toks, index)
        if name is None or span is None:
            refs.append(TableReference(None, None, keyword))
            return index
        written = sql[span[0] : span[1]]
        if (
            next_index < len(toks)
            and toks[next_index].kind == LPAREN
            and toks[next_index].depth == depth
        ):
            # name( ... ) in table position is a table function
            refs.append(TableReference(None, None, keyword))
            return next_index
        alias, after_alias = _read_alias(toks, next_index)
        refs.append(TableReference(name, alias or written, keyword))
        return after_alias

    i = 0
    while i < len(toks):
        tok = toks[i]
        if tok.kind == RPAREN:
            pending_select_depths = {d for d in pending_select_depths if d <= tok.depth}
            from_clause_depths = {d for d in from_clause_depths if d <= tok.depth}
            i += 1
            continue

        if tok.kind == WORD:
            word = tok.lower
            if word == "select":
                pending_select_depths.add(tok.depth)
                i += 1
                continue
            if word == "from" and tok.depth in pending_select_depths and not _is_distinct_from(toks, i):
                pending_select_depths.discard(tok.depth)
                from_clause_depths.add(tok.depth)
                i = _take(i + 1, "FROM", tok.depth)
                continue
            if word == "join":
                i = _take(i + 1, "JOIN", tok.depth)
                continue
            if tok.depth in from_clause_depths and word in FROM_CLAUSE_END_KEYWORDS:
                from_clause_depths.discard(tok.depth)
                i += 1
                continue

        if tok.kind == COMMA and tok.depth in from_clause_depths:
            i = _take(i + 1, "FROM", tok.depth)
            continue
        i += 1

    return refs
