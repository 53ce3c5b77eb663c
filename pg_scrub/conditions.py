"""
Row predicates (scopes) used by bulk deletes, pruning and verification.

A condition renders to parameterised SQL with asyncpg-style ``$n`` placeholders
and, except for raw SQL fragments, can be evaluated against a row mapping.
"""
import operator
import re
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from pg_scrub.common.db_queries import quote_ident

COMPARE_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "=": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}
PLACEHOLDER_PATTERN = re.compile(r"\$(\d+)")


class Condition:

    def to_sql(self, params: List[Any]) -> str:
        """
        Renders condition, appending its bind values to params
        """
        raise NotImplementedError()

    def matches(self, row: Mapping[str, Any]) -> bool:
        raise NotImplementedError()

    def __and__(self, other: "Condition") -> "Condition":
        return And(self, other)

    def __or__(self, other: "Condition") -> "Condition":
        return Or(self, other)

    def __invert__(self) -> "Condition":
        return Not(self)


def _placeholder(params: List[Any], value: Any) -> str:
    params.append(value)
    return f"${len(params)}"


class Compare(Condition):
    def __init__(self, column: str, op: str, value: Any, cast: Optional[str] = None):
        if op not in COMPARE_OPERATORS:
            raise ValueError(f"Unsupported operator: {op}")
        self.column = column
        self.op = op
        self.value = value
        self.cast = cast

    def to_sql(self, params: List[Any]) -> str:
        placeholder = _placeholder(params, self.value)
        if self.cast:
            placeholder += f"::{self.cast}"
        return f"{quote_ident(self.column)} {self.op} {placeholder}"

    def matches(self, row: Mapping[str, Any]) -> bool:
        current = row.get(self.column)
        # NULL never compares, as in SQL
        if current is None or self.value is None:
            return False
        return COMPARE_OPERATORS[self.op](current, self.value)

    def __repr__(self):
        return f"{self.column} {self.op} {self.value!r}"


class Like(Condition):
    def __init__(self, column: str, pattern: str, case_insensitive: bool = False):
        self.column = column
        self.pattern = pattern
        self.case_insensitive = case_insensitive

    def _regex(self):
        parts = []
        for char in self.pattern:
            if char == "%":
                parts.append(".*")
            elif char == "_":
                parts.append(".")
            else:
                parts.append(re.escape(char))
        flags = re.DOTALL | (re.IGNORECASE if self.case_insensitive else 0)
        return re.compile("^" + "".join(parts) + "$", flags)

    def to_sql(self, params: List[Any]) -> str:
        keyword = "ILIKE" if self.case_insensitive else "LIKE"
        return f"{quote_ident(self.column)} {keyword} {_placeholder(params, self.pattern)}"

    def matches(self, row: Mapping[str, Any]) -> bool:
        current = row.get(self.column)
        if current is None:
            return False
        return bool(self._regex().match(str(current)))

    def __repr__(self):
        return f"{self.column} LIKE {self.pattern!r}"


class IsNull(Condition):
    def __init__(self, column: str, negate: bool = False):
        self.column = column
        self.negate = negate

    def to_sql(self, params: List[Any]) -> str:
        return f"{quote_ident(self.column)} IS {'NOT ' if self.negate else ''}NULL"

    def matches(self, row: Mapping[str, Any]) -> bool:
        is_null = row.get(self.column) is None
        return not is_null if self.negate else is_null

    def __repr__(self):
        return f"{self.column} IS {'NOT ' if self.negate else ''}NULL"


class In(Condition):
    def __init__(self, column: str, values: Iterable[Any]):
        self.column = column
        self.values = list(values)

    def to_sql(self, params: List[Any]) -> str:
        return f"{quote_ident(self.column)} = ANY({_placeholder(params, self.values)})"

    def matches(self, row: Mapping[str, Any]) -> bool:
        current = row.get(self.column)
        return current is not None and current in self.values

    def __repr__(self):
        return f"{self.column} IN {self.values!r}"


class And(Condition):
    def __init__(self, *conditions: Condition):
        self.conditions = [c for c in conditions if c is not None]

    def to_sql(self, params: List[Any]) -> str:
        if not self.conditions:
            return "TRUE"
        return "(" + " AND ".join(c.to_sql(params) for c in self.conditions) + ")"

    def matches(self, row: Mapping[str, Any]) -> bool:
        return all(c.matches(row) for c in self.conditions)

    def __repr__(self):
        return "(" + " AND ".join(repr(c) for c in self.conditions) + ")"


class Or(Condition):
    def __init__(self, *conditions: Condition):
        self.conditions = [c for c in conditions if c is not None]

    def to_sql(self, params: List[Any]) -> str:
        if not self.conditions:
            return "FALSE"
        return "(" + " OR ".join(c.to_sql(params) for c in self.conditions) + ")"

    def matches(self, row: Mapping[str, Any]) -> bool:
        return any(c.matches(row) for c in self.conditions)

    def __repr__(self):
        return "(" + " OR ".join(repr(c) for c in self.conditions) + ")"


class Not(Condition):
    def __init__(self, condition: Condition):
        self.condition = condition

    def to_sql(self, params: List[Any]) -> str:
        return f"NOT ({self.condition.to_sql(params)})"

    def matches(self, row: Mapping[str, Any]) -> bool:
        return not self.condition.matches(row)

    def __repr__(self):
        return f"NOT {self.condition!r}"


class Raw(Condition):
    """
    SQL fragment with its own $1..$n placeholders, renumbered when embedded
    """

    def __init__(self, sql: str, *params: Any):
        self.sql = sql
        self.params = list(params)

    def to_sql(self, params: List[Any]) -> str:
        offset = len(params)
        params.extend(self.params)
        sql = PLACEHOLDER_PATTERN.sub(lambda m: f"${int(m.group(1)) + offset}", self.sql)
        return f"({sql})"

    def matches(self, row: Mapping[str, Any]) -> bool:
        raise NotImplementedError("Raw SQL conditions can only be evaluated by the database")

    def __repr__(self):
        return self.sql


class Column:
    """
    Condition builder: col("created_at") < cutoff, col("email").like("%@example.test")
    """

    def __init__(self, name: str):
        self.name = name

    def __eq__(self, value):  # type: ignore[override]
        if value is None:
            return IsNull(self.name)
        return Compare(self.name, "=", value)

    def __ne__(self, value):  # type: ignore[override]
        if value is None:
            return IsNull(self.name, negate=True)
        return Compare(self.name, "!=", value)

    def __lt__(self, value):
        return Compare(self.name, "<", value)

    def __le__(self, value):
        return Compare(self.name, "<=", value)

    def __gt__(self, value):
        return Compare(self.name, ">", value)

    def __ge__(self, value):
        return Compare(self.name, ">=", value)

    __hash__ = None

    def like(self, pattern: str) -> Like:
        return Like(self.name, pattern)

    def ilike(self, pattern: str) -> Like:
        return Like(self.name, pattern, case_insensitive=True)

    def is_null(self) -> IsNull:
        return IsNull(self.name)

    def is_not_null(self) -> IsNull:
        return IsNull(self.name, negate=True)

    def in_(self, values: Iterable[Any]) -> In:
        return In(self.name, values)


def col(name: str) -> Column:
    return Column(name)


def where(**equals: Any) -> Condition:
    conditions = [col(name) == value for name, value in equals.items()]
    if len(conditions) == 1:
        return conditions[0]
    return And(*conditions)


def render_condition(condition: Optional[Condition], params: List[Any]) -> str:
    if condition is None:
        return "TRUE"
    return condition.to_sql(params)
