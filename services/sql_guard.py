"""
Guards for SQL produced by the chat model.

Nothing in here touches the database. The helpers extract the statement from
a model reply, refuse anything outside the allowed shape, and rewrite SELECTs
so they only ever see the caller's rows.
"""
import re
import uuid
from datetime import datetime, timezone
from typing import Any, NamedTuple, Optional


class SqlGuardError(ValueError):
    """A generated statement was refused. The message is shown to the user."""


class UpdateTarget(NamedTuple):
    table: str
    record_id: Optional[str]


ALLOWED_TABLES = ("books", "categories", "expenses")

FORBIDDEN_KEYWORDS = {
    "insert": {"drop", "delete", "update", "alter", "create", "truncate", "exec", "select"},
    "update": {"drop", "delete", "insert", "alter", "create", "truncate", "exec", "select"},
    "select": {"drop", "delete", "update", "alter", "create", "truncate", "exec", "insert"},
}

# soft delete flag per table, the only column an UPDATE may touch
SOFT_DELETE_FLAG = {
    "books": "is_archived",
    "categories": "is_disabled",
    "expenses": "is_disabled",
}

# every SELECT is rebuilt on this chain, with b.user_id pinned to the caller
CANONICAL_ALIASES = {"expenses": "e", "categories": "c", "books": "b"}

_JOIN_CONDITIONS = {
    ("expenses", "categories"): "categories c ON e.category_id = c.id",
    ("expenses", "books"): "books b ON c.book_id = b.id",
    ("categories", "books"): "books b ON c.book_id = b.id",
    ("categories", "expenses"): "expenses e ON e.category_id = c.id",
    ("books", "categories"): "categories c ON c.book_id = b.id",
    ("books", "expenses"): "expenses e ON e.category_id = c.id",
}

_STAR_COLUMNS = {
    "expenses": "e.*, c.name AS category_name, b.name AS book_name, b.currency AS book_currency",
    "categories": "c.*, b.name AS book_name",
}

_SQL_BLOCK_RE = re.compile(r"```sql[ \t]*\r?\n?(.*?)```", re.IGNORECASE | re.DOTALL)
_STRING_LITERAL_RE = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"])*\"")
_USER_ID_RE = re.compile(r"user_id\s*=\s*'([^']*)'", re.IGNORECASE)
_INSERT_RE = re.compile(
    r"^\s*insert\s+into\s+[`\"]?(\w+)[`\"]?\s*\(([^)]*)\)\s*values\s*\(",
    re.IGNORECASE,
)
_UPDATE_RE = re.compile(r"^\s*update\s+[`\"]?(\w+)", re.IGNORECASE)
_WHERE_ID_RE = re.compile(r"where\s+(?:\w+\.)?id\s*=\s*['\"]([^'\"]+)['\"]", re.IGNORECASE)
_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")
_FROM_RE = re.compile(r"\bfrom\b", re.IGNORECASE)
_CLAUSE_RE = re.compile(r"\b(?:where|group\s+by|having|order\s+by|limit)\b", re.IGNORECASE)
_TRAILING_RE = re.compile(r"\b(?:group\s+by|having|order\s+by|limit)\b", re.IGNORECASE)
_FROM_ITEM_RE = re.compile(r"^[\s(]*[`\"]?(\w+)[`\"]?(?:\s+(?:as\s+)?(\w+))?", re.IGNORECASE)
_JOIN_RE = re.compile(
    r"\b(?:(left|right|inner|cross|natural)\s+(?:outer\s+)?)?join\b[\s(]*[`\"]?(\w+)[`\"]?(?:\s+(?:as\s+)?(\w+))?",
    re.IGNORECASE,
)
_ALIAS_STOP_WORDS = {
    "on", "using", "join", "inner", "left", "right", "cross", "natural", "outer",
    "where", "group", "order", "limit", "having",
}
_AGGREGATE_RE = re.compile(r"\b(?:sum|count|avg|min|max|group_concat)\s*\(", re.IGNORECASE)
_FORBIDDEN_SELECT_RE = re.compile(
    r"\b(?:load_file|outfile|dumpfile|sleep|benchmark|straight_join|information_schema)\b"
)


# ------------------------------------------------------------------
# Extraction
# ------------------------------------------------------------------
def extract_sql(text: str) -> Optional[str]:
    """Body of the first ```sql block in a model reply, or None."""
    match = _SQL_BLOCK_RE.search(text or "")
    if not match:
        return None

    sql = match.group(1).strip()
    return sql or None


def strip_sql_blocks(text: str) -> str:
    return _SQL_BLOCK_RE.sub("", text or "")


def classify(sql: str) -> Optional[str]:
    head = (sql or "").lstrip().lower()
    for kind in ("insert", "update", "select"):
        if head.startswith(kind):
            return kind
    return None


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------
def _without_literals(sql: str) -> str:
    return _STRING_LITERAL_RE.sub("''", sql)


def check_statement(sql: str, kind: str) -> str:
    """
    Refuse anything that is not a single plain ``kind`` statement.

    Returns the statement without its trailing semicolon. String literals are
    ignored when looking for keywords, comments and separators, so a
    description like 'update on rent' is still accepted.
    """
    statement = sql.strip().rstrip(";").strip()
    lowered = statement.lower()

    if not lowered.startswith(kind):
        if kind == "select":
            raise SqlGuardError("Only SELECT queries are allowed")
        raise SqlGuardError(f"Only {kind.upper()} queries are allowed for direct execution")

    bare = _without_literals(lowered)

    for word in bare.split():
        clean = re.sub(r"[(),;]", "", word)
        if clean in FORBIDDEN_KEYWORDS[kind]:
            raise SqlGuardError(f"Query contains dangerous SQL keyword: {clean}")

    if "--" in bare or "/*" in bare or "*/" in bare or "#" in bare:
        raise SqlGuardError("Query contains SQL comments which are not allowed")

    if ";" in bare:
        raise SqlGuardError("Multiple SQL statements are not allowed")

    return statement


# ------------------------------------------------------------------
# INSERT parsing
# ------------------------------------------------------------------
def _split_values(values: str) -> list[str]:
    parts: list[str] = []
    current = ""
    quote = ""
    depth = 0

    for i, ch in enumerate(values):
        if quote:
            current += ch
            if ch == quote and values[i - 1] != "\\":
                quote = ""
            continue

        if ch in ("'", '"'):
            quote = ch
            current += ch
        elif ch == "(":
            depth += 1
            current += ch
        elif ch == ")":
            depth -= 1
            current += ch
        elif ch == "," and depth == 0:
            parts.append(current.strip())
            current = ""
        else:
            current += ch

    if current.strip():
        parts.append(current.strip())

    return parts


def _convert_value(raw: str) -> Any:
    val = raw.strip()
    upper = val.upper()

    if upper in ("UUID()", "NOW()", "CURDATE()"):
        return upper

    if _NUMBER_RE.match(val):
        return float(val)

    if val.lower() == "true":
        return True
    if val.lower() == "false":
        return False
    if val.lower() == "null":
        return None

    if len(val) >= 2 and val[0] == val[-1] and val[0] in ("'", '"'):
        inner = val[1:-1]
        return inner.replace("''", "'") if val[0] == "'" else inner

    return val


def parse_sql_values(values: str) -> list[Any]:
    """
    Split the inside of a VALUES (...) list into Python values.

    Quotes and nested parentheses are honoured; numbers become floats,
    true/false become bools, NULL becomes None and quoted strings are
    unquoted. UUID(), NOW() and CURDATE() are kept as upper-case markers.
    """
    return [_convert_value(part) for part in _split_values(values)]


def _matching_paren(text: str, open_index: int) -> int:
    depth = 0
    quote = ""
    for i in range(open_index, len(text)):
        ch = text[i]
        if quote:
            if ch == quote and text[i - 1] != "\\":
                quote = ""
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
    return -1


def parse_insert(sql: str) -> tuple[str, list[str], list[Any]]:
    match = _INSERT_RE.match(sql)
    if not match:
        raise SqlGuardError("Could not parse INSERT statement")

    table = match.group(1).lower()
    columns = [c.strip().strip("`\"").lower() for c in match.group(2).split(",") if c.strip()]

    open_index = match.end() - 1
    close_index = _matching_paren(sql, open_index)
    if close_index == -1:
        raise SqlGuardError("Could not parse INSERT statement")

    if sql[close_index + 1:].strip().rstrip(";").strip():
        raise SqlGuardError("Only single-row INSERT statements are allowed")

    values = parse_sql_values(sql[open_index + 1:close_index])
    if len(values) != len(columns):
        raise SqlGuardError("Column count does not match value count")

    return table, columns, values


def find_duplicate_book(sql: str, books) -> Optional[Any]:
    """The existing book whose name clashes (case-insensitive) with a books INSERT."""
    if "into books" not in sql.lower():
        return None

    new_name = None
    try:
        _, columns, values = parse_insert(sql)
        row = dict(zip(columns, values))
        if isinstance(row.get("name"), str):
            new_name = row["name"]
    except SqlGuardError:
        match = re.search(r"VALUES\s*\(\s*UUID\(\)\s*,\s*'([^']+)'", sql, re.IGNORECASE)
        if match:
            new_name = match.group(1)

    if not new_name:
        return None

    lowered = new_name.lower()
    return next((b for b in books if b.name.lower() == lowered), None)


# ------------------------------------------------------------------
# Rewrites
# ------------------------------------------------------------------
def resolve_book_names(sql: str, books) -> str:
    """Swap book names the model used in place of ids for the ids."""
    resolved = sql
    for book in books:
        name = re.escape(book.name)
        resolved = re.sub(
            rf"\bname\s*=\s*'{name}'", f"id = '{book.id}'", resolved
        )
        resolved = re.sub(rf"'{name}'", f"'{book.id}'", resolved)
    return resolved


def normalize_functions(sql: str, now: Optional[datetime] = None) -> str:
    """Replace UUID(), NOW() and CURDATE() with literals any dialect accepts."""
    now = now or datetime.now(timezone.utc).replace(tzinfo=None)
    today = now.date()

    sql = re.sub(r"\bUUID\(\)", lambda _: f"'{uuid.uuid4()}'", sql, flags=re.IGNORECASE)
    sql = re.sub(r"\bNOW\(\)", f"'{now:%Y-%m-%d %H:%M:%S.%f}'", sql, flags=re.IGNORECASE)
    sql = re.sub(r"\bCURDATE\(\)", f"'{today.isoformat()}'", sql, flags=re.IGNORECASE)
    return sql


def _mask_literals(sql: str) -> str:
    """Blank out string literal contents, keeping every offset in place."""
    return _STRING_LITERAL_RE.sub(
        lambda m: m.group(0)[0] + "_" * (len(m.group(0)) - 2) + m.group(0)[-1], sql
    )


def _outside_literals(sql: str, fn) -> str:
    parts = []
    last = 0
    for match in _STRING_LITERAL_RE.finditer(sql):
        parts.append(fn(sql[last:match.start()]))
        parts.append(match.group(0))
        last = match.end()
    parts.append(fn(sql[last:]))
    return "".join(parts)


def _depths(masked: str) -> list[int]:
    """Parenthesis depth at every offset."""
    depth = 0
    depths = []
    for ch in masked:
        if ch == ")":
            depth -= 1
        depths.append(depth)
        if ch == "(":
            depth += 1
    return depths


def _top_level(pattern: re.Pattern, masked: str, start: int = 0) -> Optional[re.Match]:
    depths = _depths(masked)
    for match in pattern.finditer(masked, start):
        if depths[match.start()] == 0:
            return match
    return None


def _balanced(masked: str) -> bool:
    depth = 0
    for ch in masked:
        depth += (ch == "(") - (ch == ")")
        if depth < 0:
            return False
    return depth == 0


def _alias(word: Optional[str]) -> Optional[str]:
    if word and word.lower() not in _ALIAS_STOP_WORDS:
        return word
    return None


def _parse_from_list(masked_from: str) -> list[tuple[str, Optional[str], str]]:
    """(table, alias, join keyword) for the FROM table and every joined table."""
    base = _FROM_ITEM_RE.match(masked_from)
    if not base:
        raise SqlGuardError("Could not parse SELECT statement")

    items = [(base.group(1).lower(), _alias(base.group(2)), "")]
    for match in _JOIN_RE.finditer(masked_from, base.end(1)):
        keyword = "LEFT JOIN" if (match.group(1) or "").lower() == "left" else "JOIN"
        items.append((match.group(2).lower(), _alias(match.group(3)), keyword))

    tables = [table for table, _, _ in items]
    if not set(tables).issubset(ALLOWED_TABLES):
        raise SqlGuardError("SELECT queries are only allowed for books, categories and expenses")
    if len(tables) != len(set(tables)):
        raise SqlGuardError("Each table may only appear once in a query")

    return items


def _canonical_from(base: str, joined: dict[str, str]) -> str:
    """Base table plus the fixed expenses -> categories -> books chain it needs."""
    if base == "expenses":
        links = [("categories", "JOIN"), ("books", "JOIN")]
    elif base == "categories":
        links = [("books", "JOIN")]
        if "expenses" in joined:
            links.append(("expenses", joined["expenses"]))
    else:
        links = []
        if "categories" in joined or "expenses" in joined:
            links.append(("categories", joined.get("categories") or joined["expenses"]))
        if "expenses" in joined:
            links.append(("expenses", joined["expenses"]))

    clause = f"{base} {CANONICAL_ALIASES[base]}"
    for table, keyword in links:
        clause += f" {keyword} {_JOIN_CONDITIONS[(base, table)]}"
    return clause


def scope_select(sql: str, user_id: str) -> str:
    """
    Rebuild a SELECT so it can only see the caller's rows.

    The FROM list is always replaced by the fixed chain
    ``expenses e -> categories c -> books b`` (only the links the query needs)
    with ``b.user_id`` pinned to the caller. Hand-written join conditions are
    dropped, table names and aliases are renamed to ``e`` / ``c`` / ``b`` and
    the original WHERE condition is kept in parentheses behind the caller
    filter. Comma joins, subqueries, UNION, ``||`` / ``&&`` / XOR, other
    tables and other users' ids are refused.
    """
    for found in _USER_ID_RE.findall(sql):
        if found != user_id:
            raise SqlGuardError("Query references another user's data")

    # backslash escapes would make literal boundaries differ from the database's view
    if "\\" in sql:
        raise SqlGuardError("Backslashes are not allowed in queries")

    masked = _mask_literals(sql)
    bare = masked.lower()

    if re.search(r"\bunion\b", bare):
        raise SqlGuardError("UNION queries are not allowed")
    if "||" in bare or "&&" in bare or re.search(r"\bxor\b", bare):
        raise SqlGuardError("Use AND / OR instead of ||, && or XOR")
    if _FORBIDDEN_SELECT_RE.search(bare):
        raise SqlGuardError("Query uses a function or keyword that is not allowed")
    if len(re.findall(r"\bselect\b", bare)) > 1:
        raise SqlGuardError("Subqueries are not allowed")

    head = re.match(r"^\s*select\s", masked, re.IGNORECASE)
    from_match = _top_level(_FROM_RE, masked)
    if not head or not from_match:
        raise SqlGuardError("Could not parse SELECT statement")

    tail_match = _top_level(_CLAUSE_RE, masked, from_match.end())
    from_end = tail_match.start() if tail_match else len(sql)
    masked_from = masked[from_match.end():from_end]

    depths = _depths(masked)
    if any(ch == "," and depths[from_match.end() + i] == 0 for i, ch in enumerate(masked_from)):
        raise SqlGuardError("Comma separated table lists are not allowed, use JOIN")

    items = _parse_from_list(masked_from)
    base = items[0][0]
    joined = {table: keyword for table, _, keyword in items[1:]}

    renames = {}
    for table, alias, _ in items:
        renames[table] = CANONICAL_ALIASES[table]
        if alias:
            renames[alias.lower()] = CANONICAL_ALIASES[table]
    qualified = re.compile(
        r"(?<![\w.`])(" + "|".join(re.escape(name) for name in renames) + r")\.", re.IGNORECASE
    )

    def rename(part: str) -> str:
        return qualified.sub(lambda m: renames[m.group(1).lower()] + ".", part)

    select_list = _outside_literals(sql[head.end():from_match.start()].strip(), rename)
    tail = _outside_literals(sql[from_end:].strip(), rename)

    if select_list == "*":
        select_list = _STAR_COLUMNS.get(base, "*")
    elif (
        base == "expenses"
        and "currency" not in select_list.lower()
        and not _AGGREGATE_RE.search(_mask_literals(select_list))
        and not re.search(r"\bgroup\s+by\b", _mask_literals(tail), re.IGNORECASE)
    ):
        select_list += ", b.currency AS book_currency"

    condition, trailing = "", tail
    masked_tail = _mask_literals(tail)
    where = re.match(r"where\b", masked_tail, re.IGNORECASE)
    if where:
        end_match = _top_level(_TRAILING_RE, masked_tail, where.end())
        end = end_match.start() if end_match else len(tail)
        if not _balanced(masked_tail[where.end():end]):
            raise SqlGuardError("Unbalanced parentheses in WHERE clause")
        condition, trailing = tail[where.end():end].strip(), tail[end:].strip()

    scope = f"b.user_id = '{user_id}'"
    query = f"SELECT {select_list} FROM {_canonical_from(base, joined)} WHERE {scope}"
    if condition and " ".join(condition.split()) != scope:
        query += f" AND ({condition})"
    if trailing:
        query += f" {trailing}"

    return _outside_literals(query, lambda part: re.sub(r"\s+", " ", part)).strip()


# ------------------------------------------------------------------
# UPDATE resolution
# ------------------------------------------------------------------
def parse_update_target(sql: str, user_id: str) -> UpdateTarget:
    """
    Work out which row an UPDATE is aimed at.

    Only the soft delete flag of books, categories or expenses can change,
    whatever the SET clause says. Without a ``WHERE id = '...'`` the caller's
    most recently created row of that table is the target (``record_id`` is
    None).
    """
    for found in _USER_ID_RE.findall(sql):
        if found != user_id:
            raise SqlGuardError("Query references another user's data")

    match = _UPDATE_RE.match(sql)
    table = match.group(1).lower() if match else ""
    if table not in ALLOWED_TABLES:
        raise SqlGuardError("UPDATE queries are only allowed for expenses, categories, and books tables")

    id_match = _WHERE_ID_RE.search(sql)
    return UpdateTarget(table=table, record_id=id_match.group(1) if id_match else None)

