import re

# Matches: CS 1331, cs1331, CS-1331, MATH 1551, ECE 2020L
CANONICAL = re.compile(r'^([A-Za-z]{2,5})\s*[-_]?\s*(\d{4}[A-Za-z]?)$')
LIST_SPLIT = re.compile(r'[,\n;]+')


def normalize_code(raw: str) -> str | None:
    """
    Normalizes a course code to canonical 'DEPT NUMBER' format.
    Handles: 'cs1331', 'CS-1331', 'CS 1331', 'math 1551', 'ECE 2020L'
    Returns None if the string cannot be parsed as a course code.

    The planning core compares codes by exact string match, so everything
    coming from user input or a catalog feed goes through here first.
    """
    if not raw or not str(raw).strip():
        return None
    m = CANONICAL.match(str(raw).strip())
    if m:
        return f"{m.group(1).upper()} {m.group(2).upper()}"
    return None


def normalize_code_list(raw) -> list[str]:
    """
    Accepts a delimited string or an iterable of codes and returns the
    normalized, de-duplicated codes in input order. Unparseable tokens are dropped.
    """
    if raw is None:
        return []
    tokens = LIST_SPLIT.split(raw) if isinstance(raw, str) else list(raw)
    result: list[str] = []
    for token in tokens:
        code = normalize_code(token)
        if code and code not in result:
            result.append(code)
    return result
