import hashlib
import json
import os
import sys
import threading

CACHE_PREFIX = "plan-"
DEFAULT_CACHE_DIR = os.environ.get(
    "PLAN_CACHE_DIR",
    os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".plan_cache"),
)


def _user_key(user_id: str) -> str:
    # Hashed so user ids never become path components.
    return hashlib.sha256(str(user_id).encode("utf-8")).hexdigest()


class PlanCache:
    """
    Local on-disk copy of each user's plan, one JSON file per identity.

    Entries are only ever read back for the identity that wrote them; the sync
    coordinator deletes an identity's file when that identity leaves the session.
    """

    def __init__(self, directory: str | None = None):
        self.directory = directory or DEFAULT_CACHE_DIR
        self._lock = threading.Lock()

    def _path(self, user_id: str) -> str:
        return os.path.join(self.directory, f"{CACHE_PREFIX}{_user_key(user_id)}.json")

    def save(self, user_id: str, semesters: dict) -> None:
        payload = {"user_key": _user_key(user_id), "semesters": semesters}
        path = self._path(user_id)
        tmp_path = f"{path}.tmp"
        with self._lock:
            os.makedirs(self.directory, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as fh:
                json.dump(payload, fh)
            os.replace(tmp_path, path)

    def load(self, user_id: str) -> dict | None:
        path = self._path(user_id)
        with self._lock:
            if not os.path.isfile(path):
                return None
            try:
                with open(path, encoding="utf-8") as fh:
                    payload = json.load(fh)
            except (OSError, ValueError) as exc:
                print(f"[WARN] Discarding unreadable plan cache {path}: {exc}", file=sys.stderr)
                self._remove(path)
                return None
        if payload.get("user_key") != _user_key(user_id):
            return None
        return payload.get("semesters") or {}

    def has(self, user_id: str) -> bool:
        return os.path.isfile(self._path(user_id))

    def clear(self, user_id: str) -> None:
        with self._lock:
            self._remove(self._path(user_id))

    def clear_all(self) -> None:
        with self._lock:
            if not os.path.isdir(self.directory):
                return
            for name in os.listdir(self.directory):
                if name.startswith(CACHE_PREFIX):
                    self._remove(os.path.join(self.directory, name))

    @staticmethod
    def _remove(path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
