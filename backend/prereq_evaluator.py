"""
Requirement-tree evaluation against a student's completed and planned courses.

Pure: nothing here mutates its inputs or performs I/O, so identical inputs
always give identical results.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field

from grade_scale import meets_min_grade
from requirement_tree import And, Leaf, MalformedRequirementTree, Or, build_requirement_tree_or_none


@dataclass(frozen=True)
class EvaluationResult:
    """
    satisfied          every leaf is hard-satisfied (can register now)
    missing            courses still needed; empty means nothing blocks the course
    soft_satisfied_via planned / in-progress courses the verdict leans on
    """
    satisfied: bool
    missing: list[str] = field(default_factory=list)
    soft_satisfied_via: list[str] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return bool(self.missing)

    @property
    def pending(self) -> bool:
        return not self.missing and bool(self.soft_satisfied_via)

    @property
    def soft_satisfied(self) -> bool:
        """Satisfied once planned courses are taken: hard-satisfied or pending."""
        return not self.missing

    def to_dict(self) -> dict:
        return {
            "satisfied": self.satisfied,
            "missing": list(self.missing),
            "soft_satisfied_via": list(self.soft_satisfied_via),
            "blocked": self.blocked,
            "pending": self.pending,
        }


def _merge(lists) -> list[str]:
    merged: list[str] = []
    for codes in lists:
        for code in codes:
            if code not in merged:
                merged.append(code)
    return merged


def _leaf_hard_satisfied(leaf: Leaf, completed) -> bool:
    if leaf.course not in completed:
        return False
    if leaf.min_grade is None or not isinstance(completed, Mapping):
        # Bare set: the permissive, no-grade-check variant.
        return True
    grade = completed.get(leaf.course)
    if grade is None:
        return True
    return meets_min_grade(grade, leaf.min_grade)


def _evaluate(node, completed, planned) -> EvaluationResult:
    if isinstance(node, Leaf):
        if _leaf_hard_satisfied(node, completed):
            return EvaluationResult(satisfied=True)
        if node.course in planned:
            return EvaluationResult(satisfied=False, soft_satisfied_via=[node.course])
        return EvaluationResult(satisfied=False, missing=[node.course])

    if isinstance(node, And):
        results = [_evaluate(child, completed, planned) for child in node.children]
        return EvaluationResult(
            satisfied=all(r.satisfied for r in results),
            missing=_merge(r.missing for r in results),
            soft_satisfied_via=_merge(r.soft_satisfied_via for r in results),
        )

    if isinstance(node, Or):
        results = [_evaluate(child, completed, planned) for child in node.children]
        for r in results:
            if r.satisfied:
                return EvaluationResult(satisfied=True)
        for r in results:
            if not r.missing:
                return EvaluationResult(satisfied=False, soft_satisfied_via=list(r.soft_satisfied_via))
        # Shortest actionable path; min() keeps the leftmost on ties.
        best = min(results, key=lambda r: len(r.missing))
        return EvaluationResult(
            satisfied=False,
            missing=list(best.missing),
            soft_satisfied_via=list(best.soft_satisfied_via),
        )

    raise MalformedRequirementTree(f"Not a requirement node: {node!r}")


def evaluate(tree, completed, planned=frozenset()) -> EvaluationResult:
    """
    Evaluates a requirement tree.

    completed: set of course codes, or mapping code → letter grade. The mapping
               form lets minimum-grade leaves check the recorded grade; a bare
               set skips grade checks.
    planned:   course codes that are planned or in progress. A leaf met only by
               a planned course is soft-satisfied: it does not block, but shows
               up in soft_satisfied_via.

    tree=None means "no prerequisites" and is always satisfied.
    """
    if tree is None:
        return EvaluationResult(satisfied=True)
    return _evaluate(tree, completed, planned)


def evaluate_prerequisites(raw_prereqs, completed, planned=frozenset(), course_code: str | None = None) -> EvaluationResult:
    """
    Catalog-facing entry point: accepts the wire form straight from the feed.
    A malformed tree is logged and treated as no prerequisites.
    """
    tree = build_requirement_tree_or_none(raw_prereqs, course_code)
    return evaluate(tree, completed, planned)


def build_prereq_check_string(tree, completed, planned=frozenset()) -> str:
    """
    Returns a human-readable string showing which prerequisites are met and how.
    Examples:
      "CS 1301 ✓"
      "CS 1301 ✓; MATH 1551 (planned) ✓"
      "(CS 1331 ✗ or CS 1371 (planned) ✓)"
    """
    def label(leaf: Leaf) -> str:
        grade_note = f" [min {leaf.min_grade}]" if leaf.min_grade else ""
        if _leaf_hard_satisfied(leaf, completed):
            return f"{leaf.course}{grade_note} ✓"
        if leaf.course in planned:
            return f"{leaf.course}{grade_note} (planned) ✓"
        return f"{leaf.course}{grade_note} ✗"

    def render(node, top: bool) -> str:
        if isinstance(node, Leaf):
            return label(node)
        if isinstance(node, And):
            text = "; ".join(render(c, False) for c in node.children)
        else:
            text = " or ".join(render(c, False) for c in node.children)
        return text if top else f"({text})"

    if tree is None:
        return "No prerequisites"
    return render(tree, True)


def get_recommended_courses(catalog: list[dict], completed, planned=frozenset(), program_codes=None) -> list[dict]:
    """
    Catalog entries the student could add next: not already completed or
    planned, optionally restricted to program_codes, and not blocked by
    prerequisites (pending is fine). Sorted by course code.
    """
    recommended = []
    for course in catalog:
        code = course.get("code")
        if not code or code in completed or code in planned:
            continue
        if program_codes is not None and code not in program_codes:
            continue
        tree = course.get("prerequisites")
        if not isinstance(tree, (Leaf, And, Or)):
            tree = build_requirement_tree_or_none(tree, code)
        if evaluate(tree, completed, planned).blocked:
            continue
        recommended.append(course)
    return sorted(recommended, key=lambda c: c["code"])
