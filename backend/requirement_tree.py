from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Union

from grade_scale import GRADE_POINTS


class MalformedRequirementTree(ValueError):
    """A requirement node breaks the tree shape (empty AND/OR, bad leaf, unknown operator)."""


@dataclass(frozen=True)
class Leaf:
    course: str
    min_grade: str | None = None

    def __post_init__(self):
        if not isinstance(self.course, str) or not self.course.strip():
            raise MalformedRequirementTree(f"Leaf needs a course code, got {self.course!r}")
        if self.min_grade is not None:
            object.__setattr__(self, "min_grade", str(self.min_grade).strip().upper())
        if self.min_grade is not None and self.min_grade not in GRADE_POINTS:
            raise MalformedRequirementTree(
                f"Leaf {self.course} has non-letter minimum grade {self.min_grade!r}"
            )


@dataclass(frozen=True)
class And:
    children: tuple[RequirementNode, ...]

    def __post_init__(self):
        _check_children("And", self)


@dataclass(frozen=True)
class Or:
    children: tuple[RequirementNode, ...]

    def __post_init__(self):
        _check_children("Or", self)


RequirementNode = Union[Leaf, And, Or]

OPERATORS = {"and": And, "or": Or}


def _check_children(kind: str, node) -> None:
    # Frozen dataclass: coerce list input to a tuple so nodes stay hashable.
    children = tuple(node.children or ())
    object.__setattr__(node, "children", children)
    if not children:
        raise MalformedRequirementTree(f"{kind} node needs at least one child")
    for child in children:
        if not isinstance(child, (Leaf, And, Or)):
            raise MalformedRequirementTree(f"{kind} child is not a requirement node: {child!r}")


def _build_clause(clause) -> RequirementNode:
    if isinstance(clause, dict):
        code = clause.get("id") or clause.get("course")
        grade = clause.get("grade") or clause.get("min_grade")
        grade = str(grade).strip().upper() if grade else None
        return Leaf(course=str(code or "").strip(), min_grade=grade)
    if isinstance(clause, str):
        return Leaf(course=clause.strip())
    if isinstance(clause, (list, tuple)):
        if not clause:
            raise MalformedRequirementTree("Nested clause is empty")
        operator, *rest = clause
        node_cls = OPERATORS.get(str(operator).strip().lower())
        if node_cls is None:
            raise MalformedRequirementTree(f"Unknown operator {operator!r}")
        return node_cls(tuple(_build_clause(c) for c in rest))
    raise MalformedRequirementTree(f"Unrecognized clause: {clause!r}")


def build_requirement_tree(raw) -> RequirementNode | None:
    """
    Converts the catalog wire form into a requirement tree.

    Wire form:
      []  / None                               → None (no prerequisites)
      ["and", {"id": "CS 1301"}, ...]          → And
      ["or", {"id": "CS 1301", "grade": "C"}]  → Or with a min-grade leaf
      {"id": "CS 1301"}                        → bare Leaf
      {"type": "AND", "courses": [...]}        → And over bare codes

    Raises MalformedRequirementTree on empty operators, unknown operators or
    clauses without a course id.
    """
    if raw is None:
        return None
    if isinstance(raw, (Leaf, And, Or)):
        return raw
    if isinstance(raw, (list, tuple)) and len(raw) == 0:
        return None
    if isinstance(raw, dict) and "courses" in raw:
        node_cls = OPERATORS.get(str(raw.get("type") or "and").strip().lower())
        if node_cls is None:
            raise MalformedRequirementTree(f"Unknown operator {raw.get('type')!r}")
        return node_cls(tuple(_build_clause(c) for c in raw.get("courses") or ()))
    return _build_clause(raw)


def build_requirement_tree_or_none(raw, course_code: str | None = None) -> RequirementNode | None:
    """
    Catalog-facing variant: a malformed tree is a data bug in the feed, so it
    is logged and treated as "no prerequisites" rather than blocking the student.
    """
    try:
        return build_requirement_tree(raw)
    except MalformedRequirementTree as exc:
        label = course_code or "<unknown course>"
        print(
            f"[WARN] Malformed prerequisite tree for {label}; treating as no prerequisites: {exc}",
            file=sys.stderr,
        )
        return None


def tree_to_wire(node: RequirementNode | None):
    """Inverse of build_requirement_tree for the nested-array form."""
    if node is None:
        return []
    if isinstance(node, Leaf):
        leaf = {"id": node.course}
        if node.min_grade:
            leaf["grade"] = node.min_grade
        return leaf
    op = "and" if isinstance(node, And) else "or"
    return [op, *(tree_to_wire(c) for c in node.children)]


def tree_course_codes(node: RequirementNode | None) -> list[str]:
    """Every course referenced by the tree, in source order, de-duplicated."""
    result: list[str] = []

    def _walk(n):
        if isinstance(n, Leaf):
            if n.course not in result:
                result.append(n.course)
        elif isinstance(n, (And, Or)):
            for child in n.children:
                _walk(child)

    _walk(node)
    return result


def required_course_codes(node: RequirementNode | None) -> list[str]:
    """
    Courses that every path through the tree requires: leaves reachable
    through AND nodes only. OR branches are skipped.
    """
    if isinstance(node, Leaf):
        return [node.course]
    if isinstance(node, And):
        result: list[str] = []
        for child in node.children:
            for code in required_course_codes(child):
                if code not in result:
                    result.append(code)
        return result
    return []
