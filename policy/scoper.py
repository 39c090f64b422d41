"""
Query scoper: turns an identity into the row filters of a list query.

Filters are kept as a flat list of ``(column, op, value)`` predicates and
rendered in one pass, either to SQLAlchemy clauses or to SQL text with
numbered placeholders.
"""
import enum
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple, Union

from sqlalchemy import false
from sqlalchemy.orm import Query, Session

from core.logger import logger
from database.models import Course, Report, UserRole, column_for
from policy.errors import NotFound, enforce
from policy.evaluator import Action, Deny, DenyReason, decide
from policy.identity import Identity
from policy.resources import ResourceDescriptor, ResourceType, describe, model_for


class Op(str, enum.Enum):
    EQ = "="
    NE = "!="
    GE = ">="
    LE = "<="
    IN = "IN"
    ILIKE = "ILIKE"


@dataclass(frozen=True)
class Predicate:
    column: str  # "table.column"
    op: Op
    value: Any

    def clause(self):
        col = column_for(self.column)
        if self.op is Op.EQ:
            return col.is_(None) if self.value is None else col == self.value
        if self.op is Op.NE:
            return col.isnot(None) if self.value is None else col != self.value
        if self.op is Op.GE:
            return col >= self.value
        if self.op is Op.LE:
            return col <= self.value
        if self.op is Op.IN:
            return col.in_(list(self.value))
        if self.op is Op.ILIKE:
            return col.ilike(self.value)
        raise ValueError(f"Unsupported operator: {self.op}")


PLACEHOLDER_STYLES = ("numeric", "qmark", "named")


@dataclass(frozen=True)
class FilterSet:
    """An AND of predicates. ``matches_nothing`` short-circuits to an empty result."""
    predicates: Tuple[Predicate, ...] = ()
    matches_nothing: bool = False

    @classmethod
    def nothing(cls) -> "FilterSet":
        return cls(matches_nothing=True)

    def and_(self, *predicates: Predicate) -> "FilterSet":
        return FilterSet(self.predicates + tuple(predicates), self.matches_nothing)

    def clauses(self) -> list:
        if self.matches_nothing:
            return [false()]
        return [p.clause() for p in self.predicates]

    def apply(self, query: Query) -> Query:
        clauses = self.clauses()
        return query.filter(*clauses) if clauses else query

    def render(self, style: str = "numeric", start: int = 1) -> Tuple[str, Union[List[Any], Dict[str, Any]]]:
        """
        Render to a SQL boolean expression and its parameters.

        Placeholders are numbered in a single pass, so adding or removing a
        predicate can never shift another predicate's parameter.
        """
        if style not in PLACEHOLDER_STYLES:
            raise ValueError(f"Unknown placeholder style: {style}")
        named = style == "named"
        params: Union[List[Any], Dict[str, Any]] = {} if named else []
        if self.matches_nothing:
            return "1 = 0", params
        if not self.predicates:
            return "1 = 1", params

        counter = start

        def placeholder(value):
            nonlocal counter
            if named:
                key = f"p{counter}"
                params[key] = value
                text = f":{key}"
            else:
                params.append(value)
                text = f"${counter}" if style == "numeric" else "?"
            counter += 1
            return text

        parts = []
        for p in self.predicates:
            if p.op is Op.IN:
                values = list(p.value)
                if not values:
                    parts.append("1 = 0")
                    continue
                parts.append(f"{p.column} IN ({', '.join(placeholder(v) for v in values)})")
            elif p.value is None and p.op in (Op.EQ, Op.NE):
                parts.append(f"{p.column} IS {'NOT ' if p.op is Op.NE else ''}NULL")
            else:
                parts.append(f"{p.column} {p.op.value} {placeholder(p.value)}")
        return " AND ".join(parts), params


# Column carrying each type's (transitive) stream
STREAM_COLUMNS = {
    ResourceType.STREAM: "streams.stream_id",
    ResourceType.COURSE: "courses.stream_id",
    ResourceType.CLASS: "classes.stream_id",
    ResourceType.REPORT: "courses.stream_id",
    ResourceType.FEEDBACK: "courses.stream_id",
    ResourceType.USER: "users.stream_id",
}

# Column naming the author a lecturer is restricted to
OWNER_COLUMNS = {
    ResourceType.REPORT: "reports.lecturer_id",
    ResourceType.FEEDBACK: "reports.lecturer_id",
}


def _as_predicate(item) -> Predicate:
    if isinstance(item, Predicate):
        return item
    column, op, value = item
    return Predicate(column, op if isinstance(op, Op) else Op(op), value)


def scope(identity: Identity, resource_type: ResourceType, base_filters: Iterable = ()) -> FilterSet:
    """
    Compose the caller's own filters with the role's visibility filters.

    Raises Denied when the role may not list the type at all. A stream-scoped
    identity without a stream gets a filter that matches nothing.
    """
    filters = FilterSet(tuple(_as_predicate(f) for f in base_filters))
    decision = decide(identity, Action.LIST, ResourceDescriptor(type=resource_type))
    if isinstance(decision, Deny):
        if decision.reason is DenyReason.WRONG_STREAM:
            logger.warning(f"User {getattr(identity, 'user_id', None)} has no stream; {resource_type.value} list is empty")
            return FilterSet.nothing()
        enforce(decision, resource_type.value.capitalize())

    if identity.is_program_leader:
        return filters

    filters = filters.and_(Predicate(STREAM_COLUMNS[resource_type], Op.EQ, identity.stream_id))
    if identity.role is UserRole.LECTURER and resource_type in OWNER_COLUMNS:
        filters = filters.and_(Predicate(OWNER_COLUMNS[resource_type], Op.EQ, identity.user_id))
    return filters


def base_query(session: Session, resource_type: ResourceType) -> Query:
    """Query for a type with the joins its stream column needs."""
    query = session.query(model_for(resource_type))
    if resource_type is ResourceType.REPORT:
        query = query.join(Course, Report.course_id == Course.course_id)
    elif resource_type is ResourceType.FEEDBACK:
        query = query.join(Report).join(Course, Report.course_id == Course.course_id)
    return query


def scoped_query(session: Session, identity: Identity, resource_type: ResourceType, base_filters: Iterable = ()) -> Query:
    """``base_query`` narrowed by ``scope``."""
    return scope(identity, resource_type, base_filters).apply(base_query(session, resource_type))


def load_visible(session: Session, identity: Identity, resource_type: ResourceType, resource_id: int):
    """
    Fetch one row for a read_one, enforcing the policy.

    Raises NotFound for missing and cross-stream rows alike, Denied otherwise.
    """
    model = model_for(resource_type)
    label = resource_type.value.capitalize()
    row = session.get(model, resource_id)
    if row is None:
        raise NotFound(f"{label} not found")
    enforce(decide(identity, Action.READ_ONE, describe(resource_type, row)), label)
    return row
