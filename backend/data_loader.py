import json
import os
import sys

import pandas as pd

from normalizer import normalize_code
from prereq_parser import parse_prereqs
from requirement_tree import MalformedRequirementTree, build_requirement_tree

REQUIRED_COLUMNS = ("course_code", "credits")
SEASONS = ("Fall", "Spring", "Summer")


def _safe_int(val, default: int = 0) -> int:
    try:
        if val is None or pd.isna(val):
            return default
        return int(float(val))
    except (TypeError, ValueError):
        return default


def _parse_offerings(raw) -> list[str]:
    """'Fall; Spring' → ['Fall', 'Spring']. Blank means offered every term."""
    if raw is None or (isinstance(raw, float) and pd.isna(raw)) or not str(raw).strip():
        return list(SEASONS)
    tokens = [t.strip().capitalize() for t in str(raw).replace(",", ";").split(";")]
    return [s for s in SEASONS if s in tokens]


def _parse_tree(row) -> tuple[object, str | None]:
    """
    Returns (tree, problem). prereq_json (nested-array wire form) wins over the
    free-text prereqs column when both are present.
    """
    raw_json = row.get("prereq_json")
    if raw_json is not None and not (isinstance(raw_json, float) and pd.isna(raw_json)) and str(raw_json).strip():
        try:
            return build_requirement_tree(json.loads(str(raw_json))), None
        except (ValueError, MalformedRequirementTree) as exc:
            return None, str(exc)
    try:
        return parse_prereqs(row.get("prereqs")), None
    except MalformedRequirementTree as exc:
        return None, str(exc)


def load_data(data_path: str) -> dict:
    """
    Loads the course catalog CSV.

    Columns: course_code, title, credits, prereqs (free text) and/or
    prereq_json (wire form), offerings ('Fall;Spring').

    Returns:
      {
        "courses_df":   DataFrame (normalized codes, int credits),
        "catalog":      [{"code", "title", "credits", "prerequisites", "offerings"}, ...],
        "catalog_codes": {"CS 1301", ...},
        "prereq_map":   {"CS 1331": <RequirementNode or None>, ...},
        "malformed_prereqs": ["CS 4999", ...],
      }
    """
    if os.path.isdir(data_path):
        data_path = os.path.join(data_path, "courses.csv")
    if not os.path.isfile(data_path):
        raise FileNotFoundError(data_path)

    courses_df = pd.read_csv(data_path, dtype=str, keep_default_na=True)
    courses_df.columns = [str(c).strip().lower() for c in courses_df.columns]
    missing = [c for c in REQUIRED_COLUMNS if c not in courses_df.columns]
    if missing:
        raise ValueError(f"Catalog is missing column(s): {missing}")
    for col in ("title", "prereqs", "prereq_json", "offerings"):
        if col not in courses_df.columns:
            courses_df[col] = None

    raw_codes = courses_df["course_code"].fillna("")
    courses_df["course_code"] = raw_codes.apply(lambda c: normalize_code(c) or "")
    bad_codes = sorted(set(raw_codes[courses_df["course_code"] == ""]) - {""})
    if bad_codes:
        print(f"[WARN] {len(bad_codes)} catalog row(s) have unparseable course codes: {bad_codes}")
    courses_df = courses_df[courses_df["course_code"] != ""]
    courses_df = courses_df.drop_duplicates(subset="course_code", keep="first").reset_index(drop=True)
    courses_df["credits"] = courses_df["credits"].apply(_safe_int)
    courses_df["title"] = courses_df["title"].fillna("").astype(str).str.strip()

    catalog: list[dict] = []
    prereq_map: dict = {}
    malformed: list[str] = []
    for row in courses_df.to_dict(orient="records"):
        code = row["course_code"]
        tree, problem = _parse_tree(row)
        if problem:
            malformed.append(code)
        prereq_map[code] = tree
        catalog.append({
            "code": code,
            "title": row["title"],
            "credits": row["credits"],
            "prerequisites": tree,
            "offerings": _parse_offerings(row.get("offerings")),
        })

    if malformed:
        print(
            f"[WARN] {len(malformed)} course(s) have malformed prerequisites "
            f"(treated as none): {sorted(malformed)}",
            file=sys.stderr,
        )

    return {
        "courses_df": courses_df,
        "catalog": catalog,
        "catalog_codes": set(prereq_map),
        "prereq_map": prereq_map,
        "malformed_prereqs": sorted(malformed),
    }
