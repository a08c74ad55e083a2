import os
import sys
import threading
import time

# Ensure backend/ is on sys.path so sibling imports work
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from flask import Flask, g, jsonify, request
from dotenv import load_dotenv

from data_loader import load_data
from grade_scale import normalize_grade
from normalizer import normalize_code, normalize_code_list
from plan_repository import PlanRepository
from prereq_evaluator import build_prereq_check_string, evaluate, get_recommended_courses
from requirement_tree import build_requirement_tree_or_none, tree_to_wire
from unlocks import build_reverse_prereq_map, compute_chain_depths, get_direct_unlocks

load_dotenv()

app = Flask(__name__)

# ── Paths ─────────────────────────────────────────────────────────────────────
BACKEND_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(BACKEND_DIR)
_DEFAULT_DATA_PATH = os.path.join(PROJECT_ROOT, "data", "courses.csv")
_env_data_path = os.environ.get("DATA_PATH")
if not _env_data_path:
    DATA_PATH = _DEFAULT_DATA_PATH
elif not os.path.isabs(_env_data_path):
    DATA_PATH = os.path.join(PROJECT_ROOT, _env_data_path)
else:
    DATA_PATH = _env_data_path
_data_lock = threading.Lock()
_data_mtime = None


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.environ.get(name, "")
    try:
        return max(minimum, float(raw))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(name, "")
    try:
        return max(minimum, int(raw))
    except (TypeError, ValueError):
        return default


_SLOW_REQUEST_LOG_MS = _env_float("SLOW_REQUEST_LOG_MS", 750.0, minimum=0.0)
_MAX_LIST_INPUT = _env_int("MAX_LIST_INPUT", 500, minimum=1)


def _data_file_mtime(path: str):
    try:
        return os.path.getmtime(path)
    except OSError:
        return None


# ── Startup data load ──────────────────────────────────────────────────────────
try:
    _data = load_data(DATA_PATH)
    _data_mtime = _data_file_mtime(DATA_PATH)
    print(f"[OK] Loaded {len(_data['catalog_codes'])} courses from {DATA_PATH}")
except FileNotFoundError:
    if DATA_PATH != _DEFAULT_DATA_PATH and os.path.exists(_DEFAULT_DATA_PATH):
        print(
            f"[WARN] DATA_PATH not found ({DATA_PATH}); "
            f"falling back to default catalog ({_DEFAULT_DATA_PATH}).",
            file=sys.stderr,
        )
        DATA_PATH = _DEFAULT_DATA_PATH
        _data = load_data(DATA_PATH)
        _data_mtime = _data_file_mtime(DATA_PATH)
        print(f"[OK] Loaded {len(_data['catalog_codes'])} courses from {DATA_PATH}")
    else:
        print(f"[FATAL] Data file not found: {DATA_PATH}", file=sys.stderr)
        sys.exit(1)
except Exception as exc:
    print(f"[FATAL] Failed to load data: {exc}", file=sys.stderr)
    sys.exit(1)

_reverse_map = build_reverse_prereq_map(_data["courses_df"], _data["prereq_map"])
_chain_depths = compute_chain_depths(_reverse_map)
_repository = PlanRepository()


def _reload_data_if_changed(force: bool = False) -> bool:
    """
    Hot-reload the catalog when DATA_PATH changes on disk.

    Returns True when a reload occurred, else False.
    """
    global _data, _reverse_map, _chain_depths, _data_mtime

    with _data_lock:
        latest_mtime = _data_file_mtime(DATA_PATH)
        if not force:
            if latest_mtime is None:
                return False
            if _data_mtime is not None and latest_mtime <= _data_mtime:
                return False

        try:
            new_data = load_data(DATA_PATH)
            new_reverse_map = build_reverse_prereq_map(new_data["courses_df"], new_data["prereq_map"])
            new_chain_depths = compute_chain_depths(new_reverse_map)
        except Exception as exc:
            print(f"[WARN] Data reload failed; keeping previous catalog: {exc}", file=sys.stderr)
            return False

        _data = new_data
        _reverse_map = new_reverse_map
        _chain_depths = new_chain_depths
        _data_mtime = latest_mtime
        print(f"[OK] Reloaded {len(new_data['catalog_codes'])} courses from {DATA_PATH}")
        return True


def _refresh_data_if_needed() -> None:
    try:
        _reload_data_if_changed()
    except Exception as exc:
        print(f"[WARN] Data reload check failed: {exc}", file=sys.stderr)


# -- Security headers ------------------------------------------------------
@app.before_request
def _start_request_timer():
    g._request_start_time = time.perf_counter()


@app.after_request
def _add_security_headers(response):
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "same-origin"

    started = getattr(g, "_request_start_time", None)
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000.0
        if duration_ms >= _SLOW_REQUEST_LOG_MS:
            endpoint = request.endpoint or "unknown"
            print(
                f"[SLOW] {request.method} {request.path} "
                f"endpoint={endpoint} status={response.status_code} duration_ms={duration_ms:.1f}"
            )
    return response


def _error(error_code: str, message: str, status: int):
    return jsonify({"error": {"error_code": error_code, "message": message}}), status


# -- Health endpoint --------------------------------------------------------
@app.route("/health", methods=["GET"])
def health_endpoint():
    return jsonify({
        "status": "ok",
        "courses_loaded": len(_data["catalog_codes"]),
        "malformed_prereqs": len(_data["malformed_prereqs"]),
    })


# -- Input parsing ---------------------------------------------------------
def _parse_completed(raw):
    """
    Completed courses as either a list/comma string (no grade checks) or an
    object of code → grade (minimum grades enforced).
    """
    if raw is None:
        return set()
    if isinstance(raw, dict):
        if len(raw) > _MAX_LIST_INPUT:
            raise ValueError("Too many completed courses.")
        completed = {}
        for code, grade in raw.items():
            normalized = normalize_code(code)
            if normalized is None:
                raise ValueError(f"'{code}' is not a valid course code.")
            completed[normalized] = normalize_grade(grade)
        return completed
    return set(_parse_codes(raw, "completed_courses"))


def _parse_codes(raw, field: str) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, (str, list)):
        raise ValueError(f"'{field}' must be a list or a comma-separated string.")
    codes = normalize_code_list(raw)
    if len(codes) > _MAX_LIST_INPUT:
        raise ValueError(f"Too many entries in '{field}'.")
    return codes


def _course_payload(course: dict) -> dict:
    return {
        "code": course["code"],
        "title": course["title"],
        "credits": course["credits"],
        "offerings": course["offerings"],
        "prerequisites": tree_to_wire(course["prerequisites"]),
    }


# -- Evaluation ------------------------------------------------------------
@app.route("/evaluate", methods=["POST"])
def evaluate_endpoint():
    """
    Body:
      requested_course  catalog code whose prerequisites to check, or
      prerequisites     a tree in wire form
      completed_courses list / string, or {code: grade}
      planned_courses   list / string (planned and in-progress)
    """
    _refresh_data_if_needed()
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return _error("INVALID_INPUT", "Request body must be valid JSON.", 400)

    try:
        completed = _parse_completed(body.get("completed_courses"))
        planned = set(_parse_codes(body.get("planned_courses"), "planned_courses"))
    except ValueError as exc:
        return _error("INVALID_INPUT", str(exc), 400)

    requested = body.get("requested_course")
    if requested:
        code = normalize_code(str(requested))
        if code is None:
            return _error("INVALID_INPUT", f"'{requested}' is not a valid course code.", 400)
        if code not in _data["prereq_map"]:
            return _error("COURSE_NOT_FOUND", f"{code} is not in the catalog.", 404)
        tree = _data["prereq_map"][code]
    elif "prerequisites" in body:
        code = None
        tree = build_requirement_tree_or_none(body.get("prerequisites"))
    else:
        return _error("INVALID_INPUT", "Provide 'requested_course' or 'prerequisites'.", 400)

    result = evaluate(tree, completed, planned)
    return jsonify({
        "mode": "evaluate",
        "requested_course": code,
        **result.to_dict(),
        "check": build_prereq_check_string(tree, completed, planned),
        "prerequisites": tree_to_wire(tree),
    })


@app.route("/courses/<path:course_code>", methods=["GET"])
def course_endpoint(course_code):
    _refresh_data_if_needed()
    code = normalize_code(course_code)
    course = next((c for c in _data["catalog"] if c["code"] == code), None)
    if course is None:
        return _error("COURSE_NOT_FOUND", f"{course_code} is not in the catalog.", 404)
    return jsonify({
        **_course_payload(course),
        "unlocks": get_direct_unlocks(code, _reverse_map),
        "chain_depth": _chain_depths.get(code, 0),
    })


@app.route("/recommend", methods=["POST"])
def recommend_endpoint():
    _refresh_data_if_needed()
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return _error("INVALID_INPUT", "Request body must be valid JSON.", 400)
    try:
        completed = _parse_completed(body.get("completed_courses"))
        planned = set(_parse_codes(body.get("planned_courses"), "planned_courses"))
        program = body.get("program_courses")
        program_codes = set(_parse_codes(program, "program_courses")) if program is not None else None
    except ValueError as exc:
        return _error("INVALID_INPUT", str(exc), 400)

    recommended = get_recommended_courses(_data["catalog"], completed, planned, program_codes)
    return jsonify({
        "mode": "recommend",
        "courses": [_course_payload(c) for c in recommended],
    })


# -- Plan persistence (user-scoped) ----------------------------------------
def _request_user_id():
    user_id = (request.headers.get("X-User-Id") or "").strip()
    return user_id or None


@app.route("/semesters", methods=["GET"])
def list_semesters_endpoint():
    user_id = _request_user_id()
    if user_id is None:
        return _error("AUTH_REQUIRED", "Authentication required.", 401)
    rows = _repository.get_semesters(user_id)
    return jsonify({"semesters": {str(k): v for k, v in sorted(rows.items())}})


@app.route("/semesters", methods=["POST"])
def save_semester_endpoint():
    user_id = _request_user_id()
    if user_id is None:
        return _error("AUTH_REQUIRED", "Authentication required.", 401)
    body = request.get_json(silent=True)
    try:
        row = _repository.create_or_update_semester(user_id, body)
    except ValueError as exc:
        return _error("INVALID_INPUT", str(exc), 400)
    return jsonify({"semester": row})


@app.route("/semesters/courses", methods=["DELETE"])
def delete_courses_endpoint():
    user_id = _request_user_id()
    if user_id is None:
        return _error("AUTH_REQUIRED", "Authentication required.", 401)
    body = request.get_json(silent=True)
    if not isinstance(body, dict) or not isinstance(body.get("course_ids"), list):
        return _error("INVALID_INPUT", "'course_ids' must be a list.", 400)
    if any(isinstance(cid, bool) or not isinstance(cid, (str, int)) for cid in body["course_ids"]):
        return _error("INVALID_INPUT", "'course_ids' must hold strings or integers.", 400)
    removed = _repository.delete_courses(user_id, body["course_ids"])
    return jsonify({"removed": removed})


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    debug = os.environ.get("FLASK_DEBUG", "1") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
