"""
Data-quality gate for the course catalog CSV.

Checks that every course's prerequisites parse, that prerequisites only
reference catalog courses, and that no course (transitively) requires itself.
Importable for tests and runnable as a standalone CLI.

Usage:
    python scripts/validate_catalog.py
    python scripts/validate_catalog.py --path path/to/courses.csv
"""

import argparse
import os
import sys

BACKEND_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "backend")
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

from data_loader import load_data  # noqa: E402
from requirement_tree import tree_course_codes  # noqa: E402


# ── Validation result ─────────────────────────────────────────────────────────

class ValidationResult:
    """Collects errors and warnings for one catalog validation run."""

    def __init__(self, source: str):
        self.source = source
        self.errors: list[str] = []
        self.warnings: list[str] = []

    def error(self, msg: str) -> None:
        self.errors.append(msg)

    def warn(self, msg: str) -> None:
        self.warnings.append(msg)

    @property
    def passed(self) -> bool:
        return len(self.errors) == 0

    def summary(self) -> str:
        status = "PASS" if self.passed else "FAIL"
        lines = [f"[{status}] Catalog '{self.source}'"]
        for e in self.errors:
            lines.append(f"  [ERROR] {e}")
        for w in self.warnings:
            lines.append(f"  [WARN]  {w}")
        if self.passed and not self.warnings:
            lines.append("  All checks passed.")
        return "\n".join(lines)


# ── Individual checks ─────────────────────────────────────────────────────────

def check_malformed_prereqs(malformed: list[str], result: ValidationResult) -> None:
    """Unparseable prerequisites load as 'none', which silently unblocks the course."""
    for code in malformed:
        result.error(f"{code}: prerequisites could not be parsed")


def check_unknown_references(prereq_map: dict, catalog_codes: set, result: ValidationResult) -> None:
    for code, tree in sorted(prereq_map.items()):
        unknown = [c for c in tree_course_codes(tree) if c not in catalog_codes]
        if unknown:
            result.warn(f"{code}: references courses not in the catalog: {', '.join(unknown)}")


def check_credits(catalog: list[dict], result: ValidationResult) -> None:
    for course in catalog:
        if course["credits"] <= 0:
            result.warn(f"{course['code']}: has no credit hours")


def find_prereq_cycles(prereq_map: dict) -> list[list[str]]:
    """Each cycle once, as the path of codes from its first-seen course back to itself."""
    cycles: list[list[str]] = []
    state: dict[str, int] = {}  # 1 = on stack, 2 = done
    stack: list[str] = []

    def _visit(code: str) -> None:
        state[code] = 1
        stack.append(code)
        for dep in tree_course_codes(prereq_map.get(code)):
            if state.get(dep) == 1:
                cycles.append(stack[stack.index(dep):] + [dep])
            elif dep not in state and dep in prereq_map:
                _visit(dep)
        stack.pop()
        state[code] = 2

    for code in sorted(prereq_map):
        if code not in state:
            _visit(code)
    return cycles


def check_no_cycles(prereq_map: dict, result: ValidationResult) -> None:
    for cycle in find_prereq_cycles(prereq_map):
        result.error(f"Prerequisite cycle: {' -> '.join(cycle)}")


def validate_catalog(data: dict, source: str = "catalog") -> ValidationResult:
    result = ValidationResult(source)
    check_malformed_prereqs(data["malformed_prereqs"], result)
    check_unknown_references(data["prereq_map"], data["catalog_codes"], result)
    check_credits(data["catalog"], result)
    check_no_cycles(data["prereq_map"], result)
    return result


def main(args=None):
    parser = argparse.ArgumentParser(
        description="Validate the course catalog before publishing it.",
    )
    parser.add_argument(
        "--path", type=str,
        default=os.path.join(os.path.dirname(__file__), "..", "data", "courses.csv"),
        help="Path to the catalog CSV.",
    )
    opts = parser.parse_args(args)

    try:
        data = load_data(opts.path)
    except (FileNotFoundError, ValueError) as exc:
        print(f"[FATAL] Could not load catalog: {exc}", file=sys.stderr)
        return 1

    result = validate_catalog(data, opts.path)
    print(result.summary())
    return 0 if result.passed else 1


if __name__ == "__main__":
    sys.exit(main())
