import copy
import threading
from collections import defaultdict

from grade_scale import weighted_gpa


def _validate_semester_payload(payload) -> tuple[int, dict]:
    if not isinstance(payload, dict):
        raise ValueError("Semester payload must be an object.")
    sem_id = payload.get("id", payload.get("semester_id"))
    try:
        sem_id = int(sem_id)
    except (TypeError, ValueError):
        raise ValueError("Semester payload needs an integer 'id'.") from None
    if not payload.get("season") or payload.get("year") in (None, ""):
        raise ValueError("Semester payload needs 'season' and 'year'.")
    courses = payload.get("courses") or []
    if not isinstance(courses, list):
        raise ValueError("'courses' must be a list.")
    for course in courses:
        if not isinstance(course, dict) or "id" not in course or "code" not in course:
            raise ValueError("Every course needs 'id' and 'code'.")
    return sem_id, payload


class PlanRepository:
    """
    Persistence service for semesters, partitioned by user id.

    Every read and write takes the user id explicitly; there is no call that
    crosses partitions. Stored rows carry server-side totals recomputed from
    the submitted courses rather than trusting client values.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: dict[str, dict[int, dict]] = defaultdict(dict)

    def create_or_update_semester(self, user_id: str, payload: dict) -> dict:
        if not user_id:
            raise PermissionError("A user id is required.")
        sem_id, payload = _validate_semester_payload(payload)
        courses = copy.deepcopy(payload.get("courses") or [])
        graded = [
            (c.get("grade"), int(c.get("credits") or 0))
            for c in courses
            if c.get("status") == "completed"
        ]
        row = {
            "id": sem_id,
            "year": int(payload["year"]),
            "season": str(payload["season"]),
            "courses": courses,
            "total_credits": sum(int(c.get("credits") or 0) for c in courses),
            "gpa": weighted_gpa(graded)["gpa"],
            "max_credits": int(payload.get("max_credits") or 18),
            "is_active": bool(payload.get("is_active", False)),
        }
        with self._lock:
            self._rows[user_id][sem_id] = row
        return copy.deepcopy(row)

    def delete_courses(self, user_id: str, course_ids) -> int:
        if not user_id:
            raise PermissionError("A user id is required.")
        wanted = set(course_ids or [])
        removed = 0
        with self._lock:
            for row in self._rows.get(user_id, {}).values():
                kept = [c for c in row["courses"] if c.get("id") not in wanted]
                removed += len(row["courses"]) - len(kept)
                row["courses"] = kept
                row["total_credits"] = sum(int(c.get("credits") or 0) for c in kept)
                row["gpa"] = weighted_gpa(
                    [(c.get("grade"), int(c.get("credits") or 0)) for c in kept if c.get("status") == "completed"]
                )["gpa"]
        return removed

    def get_semesters(self, user_id: str) -> dict[int, dict]:
        with self._lock:
            return copy.deepcopy(dict(self._rows.get(user_id, {})))

    def delete_user(self, user_id: str) -> None:
        with self._lock:
            self._rows.pop(user_id, None)


class UserScopedBackend:
    """
    Binds a repository to one identity, giving the sync coordinator the
    two-call persistence contract it expects.
    """

    def __init__(self, repository: PlanRepository, user_id: str):
        self.repository = repository
        self.user_id = user_id

    def create_or_update_semester(self, payload: dict) -> bool:
        self.repository.create_or_update_semester(self.user_id, payload)
        return True

    def delete_course(self, course_ids) -> bool:
        self.repository.delete_courses(self.user_id, course_ids)
        return True

    def load_semesters(self) -> dict:
        return self.repository.get_semesters(self.user_id)
