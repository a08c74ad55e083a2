import re

SEASONS = ("Spring", "Summer", "Fall")  # chronological order within a calendar year

# Persistence ids use year * 100 + season code; the codes are not chronological.
SEASON_CODES = {"Fall": 0, "Spring": 1, "Summer": 2}

TERM_RE = re.compile(r'^\s*(Spring|Summer|Fall)\s+(\d{4})\s*$', re.IGNORECASE)

MAX_GENERATED_SEMESTERS = 25


def parse_term(s: str) -> tuple[str, int]:
    """'Fall 2026' → ('Fall', 2026). Anything else raises ValueError."""
    m = TERM_RE.match(str(s or ""))
    if not m:
        raise ValueError(f"Cannot parse term from: {s!r} (expected e.g. 'Fall 2024')")
    return m.group(1).capitalize(), int(m.group(2))


def format_term(season: str, year: int) -> str:
    return f"{season} {year}"


def semester_id(season: str, year: int) -> int:
    """Fall 2024 → 202400, Spring 2025 → 202501, Summer 2025 → 202502."""
    if season not in SEASON_CODES:
        raise ValueError(f"Unknown season: {season!r}")
    return int(year) * 100 + SEASON_CODES[season]


def term_from_semester_id(sem_id: int) -> tuple[str, int]:
    year, code = divmod(int(sem_id), 100)
    for season, season_code in SEASON_CODES.items():
        if season_code == code:
            return season, year
    raise ValueError(f"Not a semester id: {sem_id!r}")


def chronological_key(season: str, year: int) -> tuple[int, int]:
    return int(year), SEASONS.index(season)


def next_term(season: str, year: int) -> tuple[str, int]:
    idx = SEASONS.index(season)
    if idx == len(SEASONS) - 1:
        return SEASONS[0], year + 1
    return SEASONS[idx + 1], year


def generate_terms(start: str, graduation: str, buffer_terms: int = 3) -> list[tuple[str, int]]:
    """
    Consecutive (season, year) terms from `start` through `graduation`, plus
    `buffer_terms` extra terms after graduation so late plans still have room.

    Capped at MAX_GENERATED_SEMESTERS. Raises ValueError on unparseable terms or
    a graduation term before the start term.
    """
    start_season, start_year = parse_term(start)
    grad_season, grad_year = parse_term(graduation)
    if chronological_key(grad_season, grad_year) < chronological_key(start_season, start_year):
        raise ValueError(f"Graduation term {graduation!r} is before start term {start!r}")

    terms: list[tuple[str, int]] = []
    season, year = start_season, start_year
    remaining_buffer = max(0, int(buffer_terms))
    while len(terms) < MAX_GENERATED_SEMESTERS:
        terms.append((season, year))
        if chronological_key(season, year) >= chronological_key(grad_season, grad_year):
            if remaining_buffer == 0:
                break
            remaining_buffer -= 1
        season, year = next_term(season, year)
    return terms
