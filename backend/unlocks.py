import pandas as pd

from requirement_tree import tree_course_codes


def build_reverse_prereq_map(
    courses_df: pd.DataFrame,
    prereq_map: dict,
) -> dict[str, list[str]]:
    """
    Builds a reverse prerequisite map: for each course, which courses directly
    reference it anywhere in their requirement tree (AND or OR branches).

    Returns: {"CS 1331": ["CS 1332", "CS 2340"], ...}

    Only direct prerequisites (one level deep). No transitive graph traversal.
    """
    reverse: dict[str, list[str]] = {}

    for course_code in courses_df["course_code"]:
        for prereq_code in tree_course_codes(prereq_map.get(course_code)):
            reverse.setdefault(prereq_code, [])
            if course_code not in reverse[prereq_code]:
                reverse[prereq_code].append(course_code)

    return reverse


def compute_chain_depths(
    reverse_map: dict[str, list[str]],
) -> dict[str, int]:
    """
    Compute the longest downstream prerequisite chain depth for every course.

    A course with no downstream dependents has depth 0.
    CS 1301 -> CS 1331 -> CS 1332 -> CS 3510 gives CS 1301 depth 3.

    O(V+E) with memoization.
    """
    memo: dict[str, int] = {}
    in_stack: set[str] = set()

    def _depth(course: str) -> int:
        if course in memo:
            return memo[course]
        if course in in_stack:
            return 0  # cycle guard
        in_stack.add(course)
        children = reverse_map.get(course, [])
        result = (1 + max(_depth(c) for c in children)) if children else 0
        in_stack.discard(course)
        memo[course] = result
        return result

    for course in reverse_map:
        _depth(course)

    return memo


def get_direct_unlocks(
    course_code: str,
    reverse_map: dict[str, list[str]],
    limit: int | None = None,
) -> list[str]:
    """
    Courses that list `course_code` as a direct prerequisite, up to `limit`.
    """
    unlocked = reverse_map.get(course_code, [])
    return unlocked if limit is None else unlocked[:limit]
