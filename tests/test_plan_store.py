import json

import pytest
from plan_store import (
    CourseNotFoundError,
    DuplicateCourseError,
    PlanStore,
    PlannedCourseEntry,
    UnknownSemesterError,
    classify_credit_load,
)
from requirement_tree import Leaf, Or

FALL = 202400
SPRING = 202501


def entry(course_id, code, sem_id=FALL, credits=3, status="planned", grade=None):
    return PlannedCourseEntry(
        id=course_id,
        code=code,
        title=f"{code} title",
        credits=credits,
        status=status,
        semester_id=sem_id,
        grade=grade,
    )


@pytest.fixture
def store():
    s = PlanStore("user-a")
    s.add_semester("Fall", 2024)
    s.add_semester("Spring", 2025)
    return s


class TestPlannedCourseEntry:
    def test_negative_credits_rejected(self):
        with pytest.raises(ValueError):
            entry(1, "CS 1301", credits=-1)

    def test_bad_status_rejected(self):
        with pytest.raises(ValueError):
            entry(1, "CS 1301", status="dropped")

    def test_grade_normalized(self):
        assert entry(1, "CS 1301", status="completed", grade=" a ").grade == "A"

    def test_from_dict_accepts_camel_case_semester(self):
        data = {"id": 7, "code": "CS 1301", "credits": 3, "status": "planned", "semesterId": FALL}
        assert PlannedCourseEntry.from_dict(data).semester_id == FALL


class TestSemesters:
    def test_chronological_order(self):
        s = PlanStore("u")
        s.add_semester("Fall", 2025)
        s.add_semester("Spring", 2025)
        s.add_semester("Summer", 2025)
        assert [x.label for x in s.get_semesters()] == ["Spring 2025", "Summer 2025", "Fall 2025"]

    def test_add_existing_semester_is_noop(self, store):
        version = store.version
        store.add_semester("Fall", 2024)
        assert store.version == version
        assert len(store) == 2

    def test_generate_semesters(self):
        s = PlanStore("u")
        semesters = s.generate_semesters("Fall 2024", "Spring 2026", current_term=("Spring", 2025))
        assert semesters[0].id == FALL
        assert [x.label for x in semesters if x.is_active] == ["Spring 2025"]

    def test_generate_keeps_existing_plan(self, store):
        store.generate_semesters("Fall 2030", "Fall 2031")
        assert len(store) == 2


class TestDerivedValues:
    def test_add_then_remove_restores_credits_and_gpa(self, store):
        store.add_course(entry(1, "CS 1301", status="completed", grade="B"))
        before = (store.get_semester(FALL).total_credits, store.calculate_gpa())
        store.add_course(entry(2, "MATH 1551", credits=4, status="completed", grade="A"))
        assert store.get_semester(FALL).total_credits == 7
        store.remove_course(FALL, 2)
        assert (store.get_semester(FALL).total_credits, store.calculate_gpa()) == before

    def test_withdrawal_excluded_from_gpa(self, store):
        store.add_course(entry(1, "CS 1301", status="completed", grade="W"))
        store.add_course(entry(2, "CS 1331", status="completed", grade="A"))
        assert store.calculate_semester_gpa(FALL) == 4.0

    def test_planned_courses_do_not_count_toward_gpa(self, store):
        store.add_course(entry(1, "CS 1301", status="completed", grade="C"))
        store.add_course(entry(2, "CS 1331", status="planned"))
        assert store.overall_gpa == 2.0

    def test_overall_gpa_is_credit_weighted(self, store):
        store.add_course(entry(1, "CS 1301", credits=1, status="completed", grade="A"))
        store.add_course(entry(2, "CS 1331", sem_id=SPRING, credits=3, status="completed", grade="C"))
        assert store.calculate_gpa() == pytest.approx((4.0 + 6.0) / 4)

    def test_empty_semester_gpa(self, store):
        assert store.calculate_semester_gpa(FALL) == 0.0

    def test_credit_load(self):
        assert classify_credit_load(19) == "overloaded"
        assert classify_credit_load(18) == "normal"
        assert classify_credit_load(11) == "light"


class TestAddCourse:
    def test_duplicate_in_same_semester(self, store):
        store.add_course(entry(1, "CS 1301"))
        with pytest.raises(DuplicateCourseError):
            store.add_course(entry(2, "CS 1301"))
        assert store.get_semester(FALL).total_credits == 3

    def test_duplicate_in_other_semester(self, store):
        store.add_course(entry(1, "CS 1301"))
        with pytest.raises(DuplicateCourseError):
            store.add_course(entry(2, "CS 1301", sem_id=SPRING))
        assert store.get_semester(SPRING).courses == []

    def test_duplicate_id(self, store):
        store.add_course(entry(1, "CS 1301"))
        with pytest.raises(DuplicateCourseError):
            store.add_course(entry(1, "CS 1331", sem_id=SPRING))

    def test_unknown_semester(self, store):
        with pytest.raises(UnknownSemesterError):
            store.add_course(entry(1, "CS 1301", sem_id=202900))

    def test_version_increments(self, store):
        version = store.version
        store.add_course(entry(1, "CS 1301"))
        assert store.version == version + 1


class TestRemoveAndMove:
    def test_remove_missing_returns_none(self, store):
        assert store.remove_course(FALL, 99) is None
        assert store.remove_course(209900, 1) is None

    def test_move(self, store):
        store.add_course(entry(1, "CS 1301", credits=3))
        moved = store.move_course(1, FALL, SPRING)
        assert moved.semester_id == SPRING
        assert store.get_semester(FALL).total_credits == 0
        assert store.get_semester(SPRING).total_credits == 3
        assert store.find_course(1).semester_id == SPRING

    def test_move_same_semester_is_noop(self, store):
        store.add_course(entry(1, "CS 1301"))
        version = store.version
        store.move_course(1, FALL, FALL)
        assert store.version == version

    def test_move_missing_course(self, store):
        with pytest.raises(CourseNotFoundError):
            store.move_course(1, FALL, SPRING)

    def test_move_to_unknown_semester(self, store):
        store.add_course(entry(1, "CS 1301"))
        with pytest.raises(UnknownSemesterError):
            store.move_course(1, FALL, 203000)
        assert store.find_course(1).semester_id == FALL


class TestStatusAndGrade:
    def test_status_keeps_grade_when_not_given(self, store):
        store.add_course(entry(1, "CS 1301", status="completed", grade="B"))
        updated = store.update_course_status(FALL, 1, "in-progress")
        assert updated.status == "in-progress"
        assert updated.grade == "B"

    def test_status_with_grade(self, store):
        store.add_course(entry(1, "CS 1301"))
        store.update_course_status(FALL, 1, "completed", "A")
        assert store.calculate_gpa() == 4.0

    def test_invalid_status(self, store):
        store.add_course(entry(1, "CS 1301"))
        with pytest.raises(ValueError):
            store.update_course_status(FALL, 1, "audited")

    def test_update_grade(self, store):
        store.add_course(entry(1, "CS 1301", status="completed", grade="C"))
        store.update_course_grade(FALL, 1, "A")
        assert store.find_course(1).grade == "A"

    def test_clear_planned(self, store):
        store.add_course(entry(1, "CS 1301", status="completed", grade="A"))
        store.add_course(entry(2, "CS 1331"))
        removed = store.clear_planned_courses()
        assert [c.code for c in removed] == ["CS 1331"]
        assert [c.code for c in store.get_all_courses()] == ["CS 1301"]


class TestQueries:
    def test_completion_stats(self, store):
        store.add_course(entry(1, "CS 1301", status="completed", grade="A"))
        store.add_course(entry(2, "CS 1331", status="in-progress"))
        store.add_course(entry(3, "CS 1332", sem_id=SPRING))
        store.add_course(entry(4, "CS 2050", sem_id=SPRING))
        stats = store.get_completion_stats()
        assert stats["total_courses"] == 4
        assert stats["in_progress_courses"] == 1
        assert stats["completion_rate"] == 25.0

    def test_courses_by_status_invalid(self, store):
        with pytest.raises(ValueError):
            store.get_courses_by_status("bogus")

    def test_evaluate_requirements_uses_grades(self, store):
        store.add_course(entry(1, "CS 1301", status="completed", grade="D"))
        store.add_course(entry(2, "CS 1371", sem_id=SPRING))
        tree = Or((Leaf("CS 1301", "C"), Leaf("CS 1371", "C")))
        result = store.evaluate_requirements(tree)
        assert result.pending
        assert result.soft_satisfied_via == ["CS 1371"]

    def test_validate_semester_plan(self, store):
        for i, code in enumerate(["CS 1331", "CS 1332", "CS 2050", "MATH 1551", "MATH 1552", "ENGL 1101", "PSYC 1101"]):
            store.add_course(entry(i, code))
        report = store.validate_semester_plan(FALL, {"CS 1331": Leaf("CS 1301")})
        assert report["is_valid"] is False
        assert any("maximum credits" in e for e in report["errors"])
        assert any("CS 1331" in w for w in report["warnings"])

    def test_validate_unknown_semester(self, store):
        assert store.validate_semester_plan(201000)["errors"] == ["Semester not found"]


class TestSnapshots:
    def test_restore(self, store):
        store.add_course(entry(1, "CS 1301"))
        snap = store.snapshot()
        store.move_course(1, FALL, SPRING)
        store.restore(snap)
        assert store.snapshot().semesters == snap.semesters

    def test_restore_other_user(self, store):
        with pytest.raises(ValueError):
            store.restore(PlanStore("user-b").snapshot())

    def test_snapshot_is_immutable(self, store):
        store.add_course(entry(1, "CS 1301"))
        snap = store.snapshot()
        store.add_course(entry(2, "CS 1331"))
        assert snap.course_ids() == {1}


class TestExportImport:
    def test_round_trip(self, store):
        store.add_course(entry(1, "CS 1301", status="completed", grade="A"))
        exported = store.export_planning_data()
        assert json.loads(exported)["version"] == "1.0"

        other = PlanStore("user-a")
        assert other.import_planning_data(exported) is True
        assert other.snapshot().semesters == store.snapshot().semesters

    def test_invalid_json(self, store, capsys):
        assert store.import_planning_data("not json") is False
        assert "[WARN]" in capsys.readouterr().err
        assert len(store) == 2

    def test_missing_semesters_key(self, store):
        assert store.import_planning_data(json.dumps({"version": "1.0"})) is False

    def test_duplicate_codes_rejected(self, store):
        payload = {"semesters": {
            str(FALL): {"id": FALL, "courses": [entry(1, "CS 1301").to_dict()]},
            str(SPRING): {"id": SPRING, "courses": [entry(2, "CS 1301", sem_id=SPRING).to_dict()]},
        }}
        assert store.import_planning_data(json.dumps(payload)) is False
        assert store.get_all_courses() == []
