"""
Optimistic plan mutations with coalesced remote persistence.

Every mutation lands in the PlanStore immediately and in issue order. Remote
writes are batched: mutations issued within one quiet period share a single
write per affected semester. A failed write restores the plan to the snapshot
taken before the batch's first mutation and notifies on_sync_failed listeners.

Per batch:  Idle → Applying (local) → Pending (remote) → Committed | RolledBack → Idle

The coordinator also owns identity isolation: any change of identity throws
away the in-memory plan and the departing identity's local cache before the
next identity's data is loaded.
"""

import os
import sys
import threading
from dataclasses import dataclass, field
from enum import Enum

from plan_store import NoActiveSessionError, PlanError, PlannedCourseEntry, PlanStore, SyncSnapshot


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.environ.get(name, "")
    try:
        return max(minimum, float(raw))
    except (TypeError, ValueError):
        return default


DEFAULT_QUIET_PERIOD = _env_float("SYNC_QUIET_PERIOD_MS", 400.0) / 1000.0

SIGNED_IN = "signedIn"
SIGNED_OUT = "signedOut"
TOKEN_REFRESHED = "tokenRefreshed"

_EVENT_ALIASES = {
    "signedin": SIGNED_IN,
    "signed_in": SIGNED_IN,
    "signedout": SIGNED_OUT,
    "signed_out": SIGNED_OUT,
    "tokenrefreshed": TOKEN_REFRESHED,
    "token_refreshed": TOKEN_REFRESHED,
}


class SyncState(Enum):
    IDLE = "idle"
    APPLYING = "applying"
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class IdentityEvent:
    user_id: str | None
    event_kind: str


class SyncFailed(Exception):
    """A remote write failed and the plan was rolled back. Recoverable via retry()."""

    def __init__(self, user_id, mutations, semester_ids, cause=None):
        self.user_id = user_id
        self.mutations = list(mutations)
        self.semester_ids = sorted(semester_ids)
        self.cause = cause
        super().__init__(
            f"Sync failed for semesters {self.semester_ids}; "
            f"rolled back {len(self.mutations)} change(s): {cause}"
        )


# ── Mutations ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MutationEffect:
    semester_ids: frozenset = frozenset()
    deleted_course_ids: tuple = ()


@dataclass(frozen=True)
class AddCourse:
    entry: PlannedCourseEntry

    def apply(self, store: PlanStore) -> MutationEffect:
        store.add_course(self.entry)
        return MutationEffect(frozenset({self.entry.semester_id}))


@dataclass(frozen=True)
class RemoveCourse:
    semester_id: int
    course_id: object

    def apply(self, store: PlanStore) -> MutationEffect:
        removed = store.remove_course(self.semester_id, self.course_id)
        if removed is None:
            return MutationEffect()
        return MutationEffect(frozenset({self.semester_id}), (self.course_id,))


@dataclass(frozen=True)
class MoveCourse:
    course_id: object
    from_semester_id: int
    to_semester_id: int

    def apply(self, store: PlanStore) -> MutationEffect:
        store.move_course(self.course_id, self.from_semester_id, self.to_semester_id)
        return MutationEffect(frozenset({self.from_semester_id, self.to_semester_id}))


@dataclass(frozen=True)
class UpdateCourseStatus:
    semester_id: int
    course_id: object
    status: str
    grade: str | None = None

    def apply(self, store: PlanStore) -> MutationEffect:
        store.update_course_status(self.semester_id, self.course_id, self.status, self.grade)
        return MutationEffect(frozenset({self.semester_id}))


@dataclass(frozen=True)
class UpdateCourseGrade:
    semester_id: int
    course_id: object
    grade: str | None

    def apply(self, store: PlanStore) -> MutationEffect:
        store.update_course_grade(self.semester_id, self.course_id, self.grade)
        return MutationEffect(frozenset({self.semester_id}))


@dataclass(frozen=True)
class GenerateSemesters:
    start: str
    graduation: str

    def apply(self, store: PlanStore) -> MutationEffect:
        before = {s.id for s in store.get_semesters()}
        created = {s.id for s in store.generate_semesters(self.start, self.graduation)} - before
        return MutationEffect(frozenset(created))


@dataclass(frozen=True)
class ClearPlannedCourses:
    def apply(self, store: PlanStore) -> MutationEffect:
        removed = store.clear_planned_courses()
        return MutationEffect(
            frozenset(c.semester_id for c in removed),
            tuple(c.id for c in removed),
        )


# ── Coordinator ───────────────────────────────────────────────────────────────

@dataclass
class PendingSync:
    snapshot: SyncSnapshot
    epoch: int
    mutations: list = field(default_factory=list)
    semester_ids: set = field(default_factory=set)
    deleted_course_ids: list = field(default_factory=list)
    state: SyncState = SyncState.APPLYING
    closed_at_version: int | None = None


def _thread_timer(delay: float, fn):
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    timer.start()
    return timer


class SyncCoordinator:
    """
    backend_factory(user_id) returns the persistence collaborator for that
    identity: an object with create_or_update_semester(payload) and
    delete_course(ids), each returning truthy on success. An exception counts
    as a failure. If it also has load_semesters(), that is used to load the
    plan on sign-in.

    scheduler(delay, fn) must return an object with cancel(); the default
    runs fn on a daemon threading.Timer.
    """

    def __init__(self, backend_factory, cache=None, quiet_period: float = DEFAULT_QUIET_PERIOD, scheduler=None):
        self._backend_factory = backend_factory
        self._cache = cache
        self.quiet_period = max(0.0, float(quiet_period))
        self._scheduler = scheduler or _thread_timer
        self._lock = threading.RLock()
        self._listeners: list = []

        self._epoch = 0
        self._owner: str | None = None
        self._backend = None
        self.store = PlanStore(None)

        self._open: PendingSync | None = None
        self._in_flight: list[PendingSync] = []
        self._timer = None
        self._state = SyncState.IDLE
        self.last_outcome: SyncState | None = None
        self.last_failure: SyncFailed | None = None

    # ── Introspection ────────────────────────────────────────────────────────
    @property
    def owner(self) -> str | None:
        return self._owner

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return self._open is not None or bool(self._in_flight)

    def on_sync_failed(self, callback):
        """Registers callback(SyncFailed). Returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(callback)

        def _unsubscribe():
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return _unsubscribe

    # ── Local mutation ───────────────────────────────────────────────────────
    def apply_optimistic(self, mutation) -> None:
        """
        Applies `mutation` to the plan right away and schedules its remote write.
        PlanErrors (duplicate, unknown semester, course not found) propagate
        unchanged and nothing is scheduled for them.
        """
        with self._lock:
            if self._owner is None:
                raise NoActiveSessionError("Sign in before changing the plan.")
            self._state = SyncState.APPLYING
            snapshot = self.store.snapshot()
            try:
                effect = mutation.apply(self.store)
            except (PlanError, ValueError):
                self._settle_state()
                raise

            if effect.semester_ids or effect.deleted_course_ids:
                batch = self._open
                if batch is None:
                    batch = PendingSync(snapshot=snapshot, epoch=self._epoch)
                    self._open = batch
                batch.mutations.append(mutation)
                batch.semester_ids.update(effect.semester_ids)
                batch.deleted_course_ids.extend(effect.deleted_course_ids)
                batch.state = SyncState.PENDING
                self._restart_timer()
                self._save_cache()
            self._settle_state()

    def _settle_state(self) -> None:
        if self._open is not None or self._in_flight:
            self._state = SyncState.PENDING
        else:
            self._state = SyncState.IDLE

    def _restart_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self._scheduler(self.quiet_period, self.flush)

    def _save_cache(self) -> None:
        if self._cache is None or self._owner is None:
            return
        try:
            self._cache.save(self._owner, self.store.to_dict())
        except OSError as exc:
            print(f"[WARN] Could not write plan cache: {exc}", file=sys.stderr)

    # ── Remote persistence ───────────────────────────────────────────────────
    def flush(self) -> SyncState | None:
        """
        Sends the open batch now: one write per affected semester plus one
        delete call. Returns the outcome, or None when nothing was pending.
        """
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            batch = self._open
            if batch is None:
                return None
            self._open = None
            backend = self._backend
            batch.closed_at_version = self.store.version
            payloads = [
                self.store.get_semester(sem_id).to_dict()
                for sem_id in sorted(batch.semester_ids)
                if self.store.has_semester(sem_id)
            ]
            live_ids = {c.id for c in self.store.get_all_courses()}
            deleted = [cid for cid in dict.fromkeys(batch.deleted_course_ids) if cid not in live_ids]
            self._in_flight.append(batch)
            self._state = SyncState.PENDING

        ok, cause = self._write(backend, payloads, deleted)

        failure = None
        with self._lock:
            self._in_flight.remove(batch)
            if batch.epoch != self._epoch:
                print("[SYNC] Ignoring result of a write issued for a previous session.")
                self._settle_state()
                return batch.state
            if ok:
                batch.state = SyncState.COMMITTED
            elif self.store.version != batch.closed_at_version:
                # Newer local changes exist; keep them and rewrite these semesters later.
                print(
                    f"[SYNC] Write for semesters {sorted(batch.semester_ids)} failed after newer "
                    f"changes; keeping local state and retrying with the next batch: {cause}",
                    file=sys.stderr,
                )
                batch.state = SyncState.PENDING
                self._requeue(batch)
                return batch.state
            else:
                self.store.restore(batch.snapshot)
                self._save_cache()
                batch.state = SyncState.ROLLED_BACK
                failure = SyncFailed(self._owner, batch.mutations, batch.semester_ids, cause)
                self.last_failure = failure
                print(f"[SYNC] Rolled back: {failure}", file=sys.stderr)
            self.last_outcome = batch.state
            self._settle_state()
            listeners = list(self._listeners)

        if failure is not None:
            self._notify(listeners, failure)
        return batch.state

    def _requeue(self, batch: PendingSync) -> None:
        # The failed batch was never persisted, so its snapshot stays the rollback point.
        target = self._open
        if target is None:
            target = PendingSync(snapshot=batch.snapshot, epoch=self._epoch, state=SyncState.PENDING)
            self._open = target
        else:
            target.snapshot = batch.snapshot
        target.semester_ids.update(batch.semester_ids)
        target.deleted_course_ids.extend(batch.deleted_course_ids)
        target.mutations[:0] = batch.mutations
        self._restart_timer()
        self._settle_state()

    @staticmethod
    def _write(backend, payloads, deleted) -> tuple[bool, Exception | None]:
        if backend is None:
            return False, RuntimeError("No persistence backend for this session")
        try:
            if deleted and not backend.delete_course(deleted):
                return False, RuntimeError(f"delete_course rejected {deleted}")
            for payload in payloads:
                if not backend.create_or_update_semester(payload):
                    return False, RuntimeError(f"create_or_update_semester rejected semester {payload.get('id')}")
        except Exception as exc:
            return False, exc
        return True, None

    @staticmethod
    def _notify(listeners, failure: SyncFailed) -> None:
        for callback in listeners:
            try:
                callback(failure)
            except Exception as exc:
                print(f"[WARN] on_sync_failed listener raised: {exc}", file=sys.stderr)

    def retry(self, failure: SyncFailed) -> list[PlanError]:
        """
        Re-applies the mutations of a rolled-back batch. Mutations that no
        longer apply are skipped; their errors are returned.
        """
        with self._lock:
            if failure.user_id != self._owner:
                raise NoActiveSessionError("That failure belongs to a different session.")
        errors: list[PlanError] = []
        for mutation in failure.mutations:
            try:
                self.apply_optimistic(mutation)
            except PlanError as exc:
                errors.append(exc)
        return errors

    # ── Identity isolation ───────────────────────────────────────────────────
    def handle_identity_event(self, event) -> None:
        """
        event: {"user_id": ..., "event_kind": "signedIn" | "signedOut" | "tokenRefreshed"}
        (camelCase keys and snake_case kinds are accepted too).

        Any identity other than the current owner, and any sign-out, discards
        the plan and the previous owner's cache before anything else happens.
        """
        user_id, kind = _parse_identity_event(event)
        with self._lock:
            if kind == SIGNED_OUT:
                self._end_session()
                return
            if not user_id:
                raise ValueError(f"{kind} event needs a user id")
            if user_id == self._owner:
                return
            self._end_session()
            self._begin_session(user_id)

    def _end_session(self) -> None:
        previous = self._owner
        self._epoch += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._open = None
        self.store.clear()
        self.store = PlanStore(None)
        self._owner = None
        self._backend = None
        self.last_failure = None
        if self._cache is not None and previous is not None:
            self._cache.clear(previous)
        self._settle_state()
        if previous is not None:
            print("[SYNC] Session ended; discarded plan data for the previous identity.")

    def _begin_session(self, user_id: str) -> None:
        self._owner = user_id
        self.store = PlanStore(user_id)
        self._backend = self._backend_factory(user_id)

        data = None
        loader = getattr(self._backend, "load_semesters", None)
        if callable(loader):
            try:
                data = loader()
            except Exception as exc:
                print(f"[WARN] Could not load remote plan; falling back to cache: {exc}", file=sys.stderr)
        if not data and self._cache is not None:
            data = self._cache.load(user_id)
        if data:
            try:
                self.store.load_semesters(data)
            except (ValueError, KeyError, TypeError) as exc:
                print(f"[WARN] Ignoring unreadable plan data on sign-in: {exc}", file=sys.stderr)
                self.store = PlanStore(user_id)
        self._save_cache()

    def close(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


def _parse_identity_event(event) -> tuple[str | None, str]:
    if isinstance(event, dict):
        user_id = event.get("user_id", event.get("userId"))
        kind = event.get("event_kind", event.get("eventKind"))
    else:
        user_id = getattr(event, "user_id", None)
        kind = getattr(event, "event_kind", None)
    normalized = _EVENT_ALIASES.get(str(kind or "").strip().lower())
    if normalized is None:
        raise ValueError(f"Unknown identity event kind: {kind!r}")
    return (str(user_id) if user_id not in (None, "") else None), normalized
