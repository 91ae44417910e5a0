import threading
from contextlib import contextmanager


class UserLockRegistry:
    """One re-entrant lock per user id.

    Uploads and final-selection changes for the same user run one at a time
    inside this process; different users never wait on each other. Cross-process
    exclusion comes from the row lock on the user's account.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, user_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def hold(self, user_id: str):
        lock = self._lock_for(user_id)
        with lock:
            yield
