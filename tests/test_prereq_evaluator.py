import pytest
from prereq_evaluator import (
    EvaluationResult,
    build_prereq_check_string,
    evaluate,
    evaluate_prerequisites,
    get_recommended_courses,
)
from requirement_tree import And, Leaf, MalformedRequirementTree, Or

CS_1331 = Or((Leaf("CS 1301", "C"), Leaf("CS 1371", "C"), Leaf("CS 1315", "C")))


class TestEmptyTrees:
    def test_none_tree_satisfied(self):
        assert evaluate(None, set()) == EvaluationResult(satisfied=True)

    def test_empty_wire_array_satisfied(self):
        assert evaluate_prerequisites([], set()).satisfied is True

    def test_unknown_node(self):
        with pytest.raises(MalformedRequirementTree):
            evaluate("CS 1301", set())


class TestLeaf:
    def test_completed(self):
        assert evaluate(Leaf("CS 1301"), {"CS 1301"}).satisfied is True

    def test_planned_is_soft(self):
        result = evaluate(Leaf("CS 1301"), set(), {"CS 1301"})
        assert result.satisfied is False
        assert result.missing == []
        assert result.soft_satisfied_via == ["CS 1301"]
        assert result.pending and not result.blocked

    def test_missing(self):
        result = evaluate(Leaf("CS 1301"), set())
        assert result.missing == ["CS 1301"]
        assert result.blocked


class TestMinimumGrade:
    def test_bare_set_skips_grade_check(self):
        assert evaluate(Leaf("CS 1301", "C"), {"CS 1301"}).satisfied is True

    def test_grade_meets_minimum(self):
        assert evaluate(Leaf("CS 1301", "C"), {"CS 1301": "B"}).satisfied is True

    def test_grade_below_minimum_is_missing(self):
        result = evaluate(Leaf("CS 1301", "C"), {"CS 1301": "D"})
        assert result.missing == ["CS 1301"]

    def test_below_minimum_but_retake_planned(self):
        result = evaluate(Leaf("CS 1301", "C"), {"CS 1301": "D"}, {"CS 1301"})
        assert result.pending

    def test_unrecorded_grade_is_permissive(self):
        assert evaluate(Leaf("CS 1301", "C"), {"CS 1301": None}).satisfied is True

    def test_withdrawal_never_meets_minimum(self):
        assert evaluate(Leaf("CS 1301", "D"), {"CS 1301": "W"}).blocked


class TestAnd:
    TREE = And((Leaf("CS 1332"), Leaf("CS 2050"), Leaf("MATH 1554")))

    def test_all_completed(self):
        assert evaluate(self.TREE, {"CS 1332", "CS 2050", "MATH 1554"}).satisfied

    def test_merges_missing_and_soft(self):
        result = evaluate(self.TREE, {"CS 1332"}, {"CS 2050"})
        assert result.satisfied is False
        assert result.missing == ["MATH 1554"]
        assert result.soft_satisfied_via == ["CS 2050"]

    def test_duplicate_codes_listed_once(self):
        tree = And((Leaf("CS 1331"), Or((Leaf("CS 1331"), Leaf("CS 1371")))))
        assert evaluate(tree, set()).missing == ["CS 1331"]


class TestOr:
    def test_completed_branch_wins_over_planned(self):
        result = evaluate(CS_1331, {"CS 1371"}, {"CS 1301"})
        assert result == EvaluationResult(satisfied=True)

    def test_planned_branch(self):
        result = evaluate(CS_1331, set(), {"CS 1371"})
        assert result.missing == []
        assert result.soft_satisfied_via == ["CS 1371"]

    def test_nothing_gives_first_branch(self):
        assert evaluate(CS_1331, set()).missing == ["CS 1301"]

    def test_shortest_missing_path(self):
        tree = Or((And((Leaf("CS 1331"), Leaf("CS 1332"))), Leaf("CS 2050")))
        assert evaluate(tree, set()).missing == ["CS 2050"]

    def test_tie_goes_leftmost(self):
        tree = Or((Leaf("MATH 1551"), And((Leaf("MATH 1552"), Leaf("MATH 1554")))))
        assert evaluate(tree, {"MATH 1552"}).missing == ["MATH 1551"]

    def test_nested(self):
        tree = And((Leaf("CS 1332"), Or((Leaf("CS 2050"), Leaf("MATH 3012")))))
        result = evaluate(tree, {"CS 1332"}, {"MATH 3012"})
        assert result.satisfied is False
        assert result.pending
        assert result.soft_satisfied_via == ["MATH 3012"]


class TestDeterminism:
    def test_same_inputs_same_result(self):
        completed = {"CS 1301": "B"}
        planned = frozenset({"CS 1371"})
        assert evaluate(CS_1331, completed, planned) == evaluate(CS_1331, completed, planned)

    def test_inputs_not_mutated(self):
        completed = {"CS 1301"}
        planned = {"CS 1371"}
        evaluate(CS_1331, completed, planned)
        assert completed == {"CS 1301"}
        assert planned == {"CS 1371"}


class TestEvaluatePrerequisites:
    def test_wire_form(self):
        raw = ["and", {"id": "CS 1332", "grade": "C"}, ["or", {"id": "CS 2050"}, {"id": "MATH 3012"}]]
        result = evaluate_prerequisites(raw, {"CS 1332": "C", "MATH 3012": "A"})
        assert result.satisfied

    def test_malformed_is_permissive(self, capsys):
        assert evaluate_prerequisites(["or"], set(), course_code="CS 4999").satisfied
        assert "CS 4999" in capsys.readouterr().err


class TestBuildPrereqCheckString:
    def test_no_prereqs(self):
        assert build_prereq_check_string(None, set()) == "No prerequisites"

    def test_and(self):
        tree = And((Leaf("CS 1332"), Leaf("CS 2050")))
        assert build_prereq_check_string(tree, {"CS 1332"}, {"CS 2050"}) == "CS 1332 ✓; CS 2050 (planned) ✓"

    def test_nested_or_parenthesized(self):
        tree = And((Leaf("CS 1332"), Or((Leaf("CS 2050"), Leaf("MATH 3012")))))
        assert build_prereq_check_string(tree, set()) == "CS 1332 ✗; (CS 2050 ✗ or MATH 3012 ✗)"

    def test_min_grade_shown(self):
        assert build_prereq_check_string(Leaf("CS 1301", "C"), {"CS 1301": "D"}) == "CS 1301 [min C] ✗"


class TestGetRecommendedCourses:
    CATALOG = [
        {"code": "CS 1331", "prerequisites": Leaf("CS 1301")},
        {"code": "CS 1301", "prerequisites": None},
        {"code": "CS 1332", "prerequisites": ["and", {"id": "CS 1331"}]},
        {"code": "MATH 1552", "prerequisites": Leaf("MATH 1551")},
    ]

    def test_filters_taken_and_blocked(self):
        result = get_recommended_courses(self.CATALOG, {"CS 1301"}, {"CS 1331"})
        assert [c["code"] for c in result] == ["CS 1332"]

    def test_sorted_by_code(self):
        result = get_recommended_courses(self.CATALOG, {"CS 1301", "MATH 1551"})
        assert [c["code"] for c in result] == ["CS 1331", "MATH 1552"]

    def test_program_filter(self):
        result = get_recommended_courses(self.CATALOG, {"CS 1301", "MATH 1551"}, program_codes={"MATH 1552"})
        assert [c["code"] for c in result] == ["MATH 1552"]
