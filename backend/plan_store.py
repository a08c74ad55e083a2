"""
In-memory source of truth for one student's semester-by-semester plan.

Credits and GPA are derived from the course lists on every read, so they can
never drift from the courses they summarize. All mutations are synchronous and
are applied in the order they are issued.
"""

import json
import sys
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import NamedTuple

from grade_scale import normalize_grade, weighted_gpa
from prereq_evaluator import evaluate
from timeline import chronological_key, format_term, generate_terms, semester_id, term_from_semester_id

COURSE_STATUSES = ("completed", "in-progress", "planned")
OVERLOAD_CREDITS = 18
LIGHT_CREDITS = 12
DEFAULT_MAX_CREDITS = 18
EXPORT_VERSION = "1.0"


class PlanError(Exception):
    """Base class for locally recoverable plan mutation failures."""


class DuplicateCourseError(PlanError):
    pass


class UnknownSemesterError(PlanError):
    pass


class CourseNotFoundError(PlanError):
    pass


class NoActiveSessionError(PlanError):
    """A mutation was attempted while no signed-in identity owns the plan."""


@dataclass(frozen=True)
class PlannedCourseEntry:
    id: object
    code: str
    title: str
    credits: int
    status: str
    semester_id: int
    grade: str | None = None

    def __post_init__(self):
        if isinstance(self.credits, bool) or not isinstance(self.credits, int) or self.credits < 0:
            raise ValueError(f"credits must be a non-negative integer, got {self.credits!r}")
        if self.status not in COURSE_STATUSES:
            raise ValueError(f"status must be one of {COURSE_STATUSES}, got {self.status!r}")
        object.__setattr__(self, "grade", normalize_grade(self.grade))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "title": self.title,
            "credits": self.credits,
            "status": self.status,
            "grade": self.grade,
            "semester_id": self.semester_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PlannedCourseEntry":
        return cls(
            id=data["id"],
            code=str(data["code"]),
            title=str(data.get("title") or ""),
            credits=int(data.get("credits") or 0),
            status=str(data.get("status") or "planned"),
            semester_id=int(data.get("semester_id", data.get("semesterId"))),
            grade=data.get("grade"),
        )


def classify_credit_load(total_credits: int) -> str:
    """Advisory only: 'overloaded' above 18, 'light' under 12, else 'normal'."""
    if total_credits > OVERLOAD_CREDITS:
        return "overloaded"
    if total_credits < LIGHT_CREDITS:
        return "light"
    return "normal"


def _gpa_of(entries) -> float:
    return weighted_gpa(
        [(e.grade, e.credits) for e in entries if e.status == "completed"]
    )["gpa"]


@dataclass
class Semester:
    id: int
    year: int
    season: str
    courses: list[PlannedCourseEntry] = field(default_factory=list)
    max_credits: int = DEFAULT_MAX_CREDITS
    is_active: bool = False

    @property
    def label(self) -> str:
        return format_term(self.season, self.year)

    @property
    def total_credits(self) -> int:
        return sum(c.credits for c in self.courses)

    @property
    def gpa(self) -> float:
        return _gpa_of(self.courses)

    @property
    def credit_load(self) -> str:
        return classify_credit_load(self.total_credits)

    def find(self, course_id) -> PlannedCourseEntry | None:
        for course in self.courses:
            if course.id == course_id:
                return course
        return None

    def freeze(self) -> "SemesterState":
        return SemesterState(
            id=self.id,
            year=self.year,
            season=self.season,
            courses=tuple(self.courses),
            max_credits=self.max_credits,
            is_active=self.is_active,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "year": self.year,
            "season": self.season,
            "courses": [c.to_dict() for c in self.courses],
            "total_credits": self.total_credits,
            "gpa": self.gpa,
            "credit_load": self.credit_load,
            "max_credits": self.max_credits,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Semester":
        sem_id = int(data["id"])
        season, year = term_from_semester_id(sem_id)
        courses = [PlannedCourseEntry.from_dict(c) for c in data.get("courses") or []]
        for course in courses:
            if course.semester_id != sem_id:
                raise ValueError(f"Course {course.code} claims semester {course.semester_id}, found in {sem_id}")
        return cls(
            id=sem_id,
            year=int(data.get("year", year)),
            season=str(data.get("season", season)),
            courses=courses,
            max_credits=int(data.get("max_credits") or DEFAULT_MAX_CREDITS),
            is_active=bool(data.get("is_active", False)),
        )


class SemesterState(NamedTuple):
    id: int
    year: int
    season: str
    courses: tuple
    max_credits: int
    is_active: bool


@dataclass(frozen=True)
class SyncSnapshot:
    """Immutable copy of a plan, taken right before an optimistic mutation."""
    user_id: str | None
    version: int
    semesters: tuple[SemesterState, ...]

    def course_ids(self) -> set:
        return {c.id for s in self.semesters for c in s.courses}


class PlanStore:
    """
    One student's plan. Instances are scoped to a single identity; a
    different user always gets a fresh store.
    """

    def __init__(self, user_id: str | None = None):
        self.user_id = user_id
        self._semesters: dict[int, Semester] = {}
        self.version = 0

    # ── Reads ────────────────────────────────────────────────────────────────
    def __len__(self) -> int:
        return len(self._semesters)

    def has_semester(self, sem_id: int) -> bool:
        return sem_id in self._semesters

    def get_semester(self, sem_id: int) -> Semester:
        semester = self._semesters.get(sem_id)
        if semester is None:
            raise UnknownSemesterError(f"No semester with id {sem_id!r}")
        return semester

    def get_semesters(self) -> list[Semester]:
        return sorted(self._semesters.values(), key=lambda s: chronological_key(s.season, s.year))

    def get_all_courses(self) -> list[PlannedCourseEntry]:
        return [c for s in self.get_semesters() for c in s.courses]

    def get_courses_by_status(self, status: str) -> list[PlannedCourseEntry]:
        if status not in COURSE_STATUSES:
            raise ValueError(f"status must be one of {COURSE_STATUSES}, got {status!r}")
        return [c for c in self.get_all_courses() if c.status == status]

    def find_course(self, course_id) -> PlannedCourseEntry | None:
        for semester in self._semesters.values():
            found = semester.find(course_id)
            if found is not None:
                return found
        return None

    def find_course_by_code(self, code: str) -> PlannedCourseEntry | None:
        for semester in self._semesters.values():
            for course in semester.courses:
                if course.code == code:
                    return course
        return None

    def calculate_semester_gpa(self, sem_id: int) -> float:
        return self.get_semester(sem_id).gpa

    def calculate_gpa(self) -> float:
        """Credit-weighted over every completed, graded course; not a mean of semester GPAs."""
        return _gpa_of(self.get_all_courses())

    @property
    def overall_gpa(self) -> float:
        return self.calculate_gpa()

    def completed_grades(self) -> dict[str, str | None]:
        """code → grade for completed courses, the grade-aware shape the evaluator takes."""
        return {c.code: c.grade for c in self.get_courses_by_status("completed")}

    def planned_codes(self) -> set[str]:
        return {c.code for c in self.get_all_courses() if c.status in ("planned", "in-progress")}

    def evaluate_requirements(self, tree):
        return evaluate(tree, self.completed_grades(), self.planned_codes())

    def get_completion_stats(self) -> dict:
        courses = self.get_all_courses()
        completed = sum(1 for c in courses if c.status == "completed")
        in_progress = sum(1 for c in courses if c.status == "in-progress")
        planned = sum(1 for c in courses if c.status == "planned")
        return {
            "total_courses": len(courses),
            "completed_courses": completed,
            "in_progress_courses": in_progress,
            "planned_courses": planned,
            "completion_rate": (completed / len(courses) * 100) if courses else 0.0,
        }

    def validate_semester_plan(self, sem_id: int, prereq_map: dict | None = None) -> dict:
        """
        Advisory check of one semester. Credit limits produce errors/warnings,
        prerequisite gaps (when prereq_map is given) produce warnings.
        Never blocks anything by itself.
        """
        semester = self._semesters.get(sem_id)
        if semester is None:
            return {"is_valid": False, "warnings": [], "errors": ["Semester not found"]}

        warnings: list[str] = []
        errors: list[str] = []
        total = semester.total_credits
        if total > semester.max_credits:
            errors.append(f"Semester exceeds maximum credits ({total}/{semester.max_credits})")
        if total < LIGHT_CREDITS and semester.courses:
            warnings.append(f"Semester has fewer than {LIGHT_CREDITS} credits ({total})")

        if prereq_map:
            completed = self.completed_grades()
            planned = self.planned_codes()
            for course in semester.courses:
                result = evaluate(prereq_map.get(course.code), completed, planned)
                if result.missing:
                    warnings.append(f"{course.code} is missing prerequisites: {', '.join(result.missing)}")
                elif result.pending:
                    warnings.append(
                        f"{course.code} relies on planned prerequisites: {', '.join(result.soft_satisfied_via)}"
                    )

        return {"is_valid": not errors, "warnings": warnings, "errors": errors}

    # ── Mutations ────────────────────────────────────────────────────────────
    def _touch(self) -> None:
        self.version += 1

    def add_semester(self, season: str, year: int, max_credits: int = DEFAULT_MAX_CREDITS) -> Semester:
        sem_id = semester_id(season, year)
        if sem_id in self._semesters:
            return self._semesters[sem_id]
        semester = Semester(id=sem_id, year=int(year), season=season, max_credits=max_credits)
        self._semesters[sem_id] = semester
        self._touch()
        return semester

    def generate_semesters(self, start: str, graduation: str, current_term: tuple[str, int] | None = None) -> list[Semester]:
        """
        Expands 'Fall 2024' → 'Spring 2028' into empty semesters. Only runs on
        an empty plan; an existing plan is returned unchanged.
        """
        if self._semesters:
            return self.get_semesters()
        for season, year in generate_terms(start, graduation):
            semester = Semester(id=semester_id(season, year), year=year, season=season)
            semester.is_active = current_term == (season, year)
            self._semesters[semester.id] = semester
        self._touch()
        return self.get_semesters()

    def add_course(self, entry: PlannedCourseEntry) -> PlannedCourseEntry:
        semester = self.get_semester(entry.semester_id)
        if any(c.code == entry.code for c in semester.courses):
            raise DuplicateCourseError(f"{entry.code} is already in {semester.label}")
        existing = self.find_course_by_code(entry.code)
        if existing is not None:
            other = self._semesters[existing.semester_id]
            raise DuplicateCourseError(
                f"{entry.code} is already planned in {other.label}; move it instead"
            )
        if self.find_course(entry.id) is not None:
            raise DuplicateCourseError(f"Course id {entry.id!r} is already in the plan")
        semester.courses = [*semester.courses, entry]
        self._touch()
        return entry

    def remove_course(self, sem_id: int, course_id) -> PlannedCourseEntry | None:
        """Returns the removed entry, or None when there was nothing to remove."""
        semester = self._semesters.get(sem_id)
        if semester is None:
            return None
        removed = semester.find(course_id)
        if removed is None:
            return None
        semester.courses = [c for c in semester.courses if c.id != course_id]
        self._touch()
        return removed

    def move_course(self, course_id, from_sem_id: int, to_sem_id: int) -> PlannedCourseEntry:
        source = self.get_semester(from_sem_id)
        target = self.get_semester(to_sem_id)
        course = source.find(course_id)
        if course is None:
            raise CourseNotFoundError(f"Course {course_id!r} is not in {source.label}")
        if from_sem_id == to_sem_id:
            return course

        moved = replace(course, semester_id=to_sem_id)
        new_source = [c for c in source.courses if c.id != course_id]
        new_target = [*target.courses, moved]
        # Both lists are swapped in together so derived values never see a half-move.
        source.courses, target.courses = new_source, new_target
        self._touch()
        return moved

    def _replace_course(self, sem_id: int, course_id, **changes) -> PlannedCourseEntry:
        semester = self.get_semester(sem_id)
        course = semester.find(course_id)
        if course is None:
            raise CourseNotFoundError(f"Course {course_id!r} is not in {semester.label}")
        updated = replace(course, **changes)
        semester.courses = [updated if c.id == course_id else c for c in semester.courses]
        self._touch()
        return updated

    def update_course_status(self, sem_id: int, course_id, status: str, grade: str | None = None) -> PlannedCourseEntry:
        """Changes status; the grade is replaced only when one is given."""
        changes = {"status": status}
        if grade is not None:
            changes["grade"] = grade
        return self._replace_course(sem_id, course_id, **changes)

    def update_course_grade(self, sem_id: int, course_id, grade: str | None) -> PlannedCourseEntry:
        return self._replace_course(sem_id, course_id, grade=grade)

    def clear_planned_courses(self) -> list[PlannedCourseEntry]:
        """Drops every 'planned' entry; completed and in-progress courses stay."""
        removed = [c for c in self.get_all_courses() if c.status == "planned"]
        if not removed:
            return []
        for semester in self._semesters.values():
            semester.courses = [c for c in semester.courses if c.status != "planned"]
        self._touch()
        return removed

    def clear(self) -> None:
        self._semesters = {}
        self._touch()

    # ── Snapshots ────────────────────────────────────────────────────────────
    def snapshot(self) -> SyncSnapshot:
        return SyncSnapshot(
            user_id=self.user_id,
            version=self.version,
            semesters=tuple(s.freeze() for s in self.get_semesters()),
        )

    def restore(self, snapshot: SyncSnapshot) -> None:
        if snapshot.user_id != self.user_id:
            raise ValueError("Snapshot belongs to a different user")
        self._semesters = {
            s.id: Semester(
                id=s.id,
                year=s.year,
                season=s.season,
                courses=list(s.courses),
                max_credits=s.max_credits,
                is_active=s.is_active,
            )
            for s in snapshot.semesters
        }
        self._touch()

    # ── Export / import ──────────────────────────────────────────────────────
    def to_dict(self) -> dict:
        return {str(s.id): s.to_dict() for s in self.get_semesters()}

    def load_semesters(self, semesters: dict | list) -> None:
        """
        Replaces the plan with serialized semesters (export format or the
        persistence service's payloads). Raises ValueError on invalid data and
        leaves the current plan untouched.
        """
        items = semesters.values() if isinstance(semesters, dict) else semesters
        loaded: dict[int, Semester] = {}
        seen_codes: set[str] = set()
        seen_ids: set = set()
        for raw in items:
            semester = Semester.from_dict(raw)
            for course in semester.courses:
                if course.code in seen_codes or course.id in seen_ids:
                    raise ValueError(f"Course {course.code} appears more than once in the plan")
                seen_codes.add(course.code)
                seen_ids.add(course.id)
            loaded[semester.id] = semester
        self._semesters = loaded
        self._touch()

    def export_planning_data(self) -> str:
        return json.dumps(
            {
                "semesters": self.to_dict(),
                "exported_at": datetime.now(timezone.utc).isoformat(),
                "version": EXPORT_VERSION,
            },
            indent=2,
        )

    def import_planning_data(self, data: str) -> bool:
        try:
            imported = json.loads(data)
            if not isinstance(imported, dict) or "semesters" not in imported:
                print("[WARN] Invalid import data: missing semesters", file=sys.stderr)
                return False
            self.load_semesters(imported["semesters"])
        except (ValueError, KeyError, TypeError) as exc:
            print(f"[WARN] Failed to import planning data: {exc}", file=sys.stderr)
            return False
        return True
