"""
Letter-grade lookups used by GPA aggregation and minimum-grade prerequisites.
No Flask or data-loader imports.
"""

GRADE_POINTS: dict[str, float] = {
    "A": 4.0,
    "B": 3.0,
    "C": 2.0,
    "D": 1.0,
    "F": 0.0,
}

# Withdrawal, incomplete, in-progress, satisfactory, unsatisfactory.
# These carry no grade points and are left out of both sides of a GPA.
ADMINISTRATIVE_GRADES = frozenset({"W", "I", "IP", "S", "U"})

KNOWN_GRADES = frozenset(GRADE_POINTS) | ADMINISTRATIVE_GRADES


def normalize_grade(raw) -> str | None:
    """' b ' → 'B'. None/blank → None. Unknown strings raise ValueError."""
    if raw is None:
        return None
    grade = str(raw).strip().upper()
    if not grade:
        return None
    if grade not in KNOWN_GRADES:
        raise ValueError(f"Unknown grade: {raw!r}")
    return grade


def is_grade_point_bearing(grade) -> bool:
    return grade is not None and str(grade).strip().upper() in GRADE_POINTS


def grade_points(grade) -> float | None:
    """
    Grade points for a letter grade, or None when the grade does not bear
    points (administrative grades, missing grade).

    Never maps an administrative grade to 0.0: a withdrawal is not an F.
    """
    if grade is None:
        return None
    return GRADE_POINTS.get(str(grade).strip().upper())


def meets_min_grade(grade, min_grade) -> bool:
    """
    True when `grade` is at or above `min_grade` on the point scale.

    No minimum → always met. A grade with no points (W, I, S, ...) never
    meets a minimum.
    """
    if min_grade is None:
        return True
    required = grade_points(min_grade)
    if required is None:
        raise ValueError(f"Minimum grade must be a letter grade, got {min_grade!r}")
    earned = grade_points(grade)
    return earned is not None and earned >= required


def weighted_gpa(graded: list[tuple[str | None, int]]) -> dict:
    """
    Credit-weighted GPA over (grade, credits) pairs.

    Only grade-point-bearing grades enter the numerator and denominator.
    Returns {"gpa", "quality_points", "credits"}; gpa is 0.0 when no credits count.
    """
    quality_points = 0.0
    credits = 0
    for grade, course_credits in graded:
        points = grade_points(grade)
        if points is None:
            continue
        quality_points += points * course_credits
        credits += course_credits
    gpa = quality_points / credits if credits > 0 else 0.0
    return {"gpa": gpa, "quality_points": quality_points, "credits": credits}
