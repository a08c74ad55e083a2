import re
from itertools import combinations

import pandas as pd

from normalizer import normalize_code
from requirement_tree import And, Leaf, MalformedRequirementTree, Or

# Case-insensitive OR splitter; token casing is left for normalize_code()
OR_SPLIT = re.compile(r'\s+or\s+', re.IGNORECASE)
CHOOSE_N_FROM_RE = re.compile(
    r'^(?:any\s+)?(?P<count>\d+|one|two|three|four|five)\s+courses?\s+from\s*:?\s*(?P<options>.+)$',
    re.IGNORECASE,
)

# "CS 1301 Minimum Grade of C", "CS 1301 (min C)"
MIN_GRADE_RE = re.compile(
    r'^(?P<code>.+?)\s*(?:'
    r'minimum\s+grade\s+of\s+(?P<g1>[A-D])'
    r'|\(\s*min(?:imum)?\s*(?:grade\s*)?(?P<g2>[A-D])\s*\)'
    r')\s*$',
    re.IGNORECASE,
)

# Regex to strip parenthetical annotation clauses, e.g. "(may be concurrent)"
ANNOTATION_RE = re.compile(r'\s*\([^)]*\)')

# Signals that the prerequisite text contains grammar the tree cannot express.
UNSUPPORTED_SIGNALS = [
    "permission",
    "standing",
    "instructor",
    "consent",
    "admitted",
    "placement",
    "co-req",
    "coreq",
]

NONE_VALUES = {"none", "none listed", "n/a", "nan", ""}
COUNT_WORDS = {
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
}

# Guard against combinatorial blow-up when expanding "N courses from" lists.
MAX_CHOOSE_N_COMBINATIONS = 64


def _parse_count_token(token: str) -> int | None:
    raw = str(token or "").strip().lower()
    if raw.isdigit():
        return int(raw)
    return COUNT_WORDS.get(raw)


def _parse_leaf(token: str) -> Leaf:
    """One course token, optionally carrying a minimum grade."""
    token = token.strip().rstrip(".")
    min_grade = None
    match = MIN_GRADE_RE.match(token)
    if match:
        token = match.group("code")
        min_grade = (match.group("g1") or match.group("g2")).upper()
    token = ANNOTATION_RE.sub("", token).strip()
    code = normalize_code(token)
    if code is None:
        raise MalformedRequirementTree(f"Not a course code: {token!r}")
    return Leaf(course=code, min_grade=min_grade)


def _parse_or_clause(clause: str):
    leaves = [_parse_leaf(part) for part in OR_SPLIT.split(clause) if part.strip()]
    if not leaves:
        raise MalformedRequirementTree(f"Empty clause in {clause!r}")
    if len(leaves) == 1:
        return leaves[0]
    return Or(tuple(leaves))


def _parse_choose_n_from(s: str):
    """
    "Two courses from: A or B or C" has no direct AND/OR form, so it expands
    into OR over every AND-combination of the required size.
    """
    match = CHOOSE_N_FROM_RE.match(s)
    if not match:
        return None
    count = _parse_count_token(match.group("count"))
    options_raw = str(match.group("options") or "").strip().rstrip(".")
    leaves = [_parse_leaf(c) for c in re.split(r'\s+or\s+|,', options_raw, flags=re.IGNORECASE) if c.strip()]
    if count is None or count <= 0 or len(leaves) < count:
        raise MalformedRequirementTree(f"Cannot choose {match.group('count')} from {options_raw!r}")
    if count == 1:
        return leaves[0] if len(leaves) == 1 else Or(tuple(leaves))
    combos = list(combinations(leaves, count))
    if len(combos) > MAX_CHOOSE_N_COMBINATIONS:
        raise MalformedRequirementTree(f"Too many combinations for {s!r}")
    return Or(tuple(And(combo) for combo in combos))


def parse_prereqs(prereq_str):
    """
    Parses a free-text prerequisite cell from the catalog CSV into a
    requirement tree.

    Supported grammar:
      none / none listed / blank      → None (no prerequisites)
      CODE                            → Leaf
      CODE Minimum Grade of C         → Leaf(min_grade="C")
      CODE;CODE;...                   → And
      CODE or CODE                    → Or
      CODE or CODE; CODE              → And(Or, Leaf)
      Two courses from: A or B or C   → Or of every And-pair

    Parenthetical annotations (e.g. "(may be concurrent)") are stripped unless
    they carry a minimum grade.

    Anything else raises MalformedRequirementTree.
    """
    if prereq_str is None or (isinstance(prereq_str, float) and pd.isna(prereq_str)):
        return None

    s = str(prereq_str).strip()
    if s.lower() in NONE_VALUES:
        return None

    s_lower = s.lower()
    for signal in UNSUPPORTED_SIGNALS:
        if signal in s_lower:
            raise MalformedRequirementTree(f"Unsupported prerequisite grammar: {s!r}")

    choose_n = _parse_choose_n_from(s)
    if choose_n is not None:
        return choose_n

    clauses = [_parse_or_clause(tok) for tok in s.split(";") if tok.strip()]
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return And(tuple(clauses))
