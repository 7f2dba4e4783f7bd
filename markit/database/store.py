"""Realtime tree store persisted through SQLAlchemy.

State is a JSON tree addressed by slash separated paths. Every leaf lives in
its own ``StoreNodes`` row, so any subtree can be read or replaced with a
prefix query. Multi path updates run in a single transaction; listeners are
notified on the writing thread once the transaction has committed.
"""
import logging
import random
import threading
import time
from typing import Any, Callable, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from markit.models.storeNode import StoreNode
from markit.services.errors import StoreWriteFailed

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

Listener = Callable[[Any], None]


def normalize_path(path: str) -> str:
    return "/".join(part for part in path.split("/") if part)


def is_under(path: str, ancestor: str) -> bool:
    """True when ``path`` equals ``ancestor`` or lies below it."""
    if ancestor == "":
        return True
    return path == ancestor or path.startswith(ancestor + "/")


def _ancestors(path: str) -> list[str]:
    parts = path.split("/")
    return ["/".join(parts[:i]) for i in range(1, len(parts))]


def _flatten(path: str, value: Any, leaves: dict) -> None:
    if isinstance(value, dict):
        if not value:
            leaves[path] = {}
            return
        for key, child in value.items():
            if child is None:
                continue
            _flatten(f"{path}/{key}" if path else str(key), child, leaves)
    elif value is not None:
        leaves[path] = value


def _checked_paths(updates: dict[str, Any]) -> list[str]:
    paths = sorted(updates)
    for path in paths:
        if not path:
            raise ValueError("Writing the root of the tree is not allowed")
    for i, second in enumerate(paths):
        # "a/b-c" sorts between "a/b" and "a/b/c", so neighbours are not enough
        for first in paths[:i]:
            if is_under(second, first):
                raise ValueError(f"Path {second} overlaps {first} in one update")
    return paths


class PushKeyGenerator:
    """Chronologically ordered 20 character keys.

    8 characters of millisecond timestamp followed by 12 random characters.
    Keys generated within the same millisecond increment the random part so
    that ordering is kept.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._last_ms = 0
        self._last_rand = [0] * 12

    def __call__(self) -> str:
        with self._lock:
            now = int(time.time() * 1000)
            duplicate = now == self._last_ms
            self._last_ms = now

            ts_chars = []
            for _ in range(8):
                ts_chars.append(PUSH_CHARS[now % 64])
                now //= 64
            key = "".join(reversed(ts_chars))

            if not duplicate:
                self._last_rand = [random.randrange(64) for _ in range(12)]
            else:
                i = 11
                while i >= 0 and self._last_rand[i] == 63:
                    self._last_rand[i] = 0
                    i -= 1
                if i >= 0:
                    self._last_rand[i] += 1

            return key + "".join(PUSH_CHARS[n] for n in self._last_rand)


class Subscription:
    """Handle returned by ``TreeStore.subscribe``. Release it with
    ``unsubscribe()`` or by using it as a context manager."""

    def __init__(self, store: "TreeStore", path: str, listener: Listener):
        self.store = store
        self.path = path
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self.store._remove_subscription(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.unsubscribe()


class TreeStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self.generate_key = PushKeyGenerator()
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()

    # ------------------------------------------------------------------ reads
    def read(self, path: str) -> Any:
        path = normalize_path(path)
        with self.session_factory() as db:
            return self._read(db, path)

    def _read(self, db: Session, path: str) -> Any:
        query = db.query(StoreNode)
        if path:
            query = query.filter(
                or_(
                    StoreNode.path == path,
                    StoreNode.path.startswith(path + "/", autoescape=True),
                )
            )
        rows = query.order_by(StoreNode.path).all()
        if not rows:
            return None

        for row in rows:
            if row.path == path:
                return row.value

        tree: dict = {}
        offset = len(path) + 1 if path else 0
        for row in rows:
            parts = row.path[offset:].split("/")
            node = tree
            for part in parts[:-1]:
                node = node.setdefault(part, {})
            node[parts[-1]] = row.value
        return tree

    # ----------------------------------------------------------------- writes
    def write(self, path: str, value: Any) -> None:
        self.multi_path_update({path: value})

    def delete(self, path: str) -> None:
        self.write(path, None)

    def append(self, path: str, value: Any) -> str:
        key = self.generate_key()
        self.write(f"{normalize_path(path)}/{key}", value)
        return key

    def multi_path_update(self, updates: dict[str, Any]) -> None:
        """Atomically replace every listed path. ``None`` deletes."""
        updates = {normalize_path(path): value for path, value in updates.items()}
        paths = _checked_paths(updates)

        with self._write_lock, self.session_factory() as db:
            self._commit(db, paths, updates)

        self._notify(paths)

    def conditional_update(
        self, path: str, build_updates: Callable[[Any], Optional[dict[str, Any]]]
    ) -> Optional[dict[str, Any]]:
        """Read ``path`` and apply ``build_updates(value)`` as one step.

        Writers are serialized, so no other write commits between the read
        and the update. ``build_updates`` returns the multi path updates to
        apply, or None to leave the tree untouched. Returns what was applied.
        """
        with self._write_lock, self.session_factory() as db:
            updates = build_updates(self._read(db, normalize_path(path)))
            if not updates:
                return None
            updates = {normalize_path(p): value for p, value in updates.items()}
            paths = _checked_paths(updates)
            self._commit(db, paths, updates)

        self._notify(paths)
        return updates

    def _commit(self, db: Session, paths: list[str], updates: dict[str, Any]) -> None:
        try:
            for path in paths:
                self._replace(db, path, updates[path])
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logging.error(f"Store update failed for {paths}: {e}")
            raise StoreWriteFailed() from e

    def _replace(self, db: Session, path: str, value: Any) -> None:
        ancestors = _ancestors(path)
        if ancestors:
            # a scalar or empty object above the target is replaced by the new subtree
            db.query(StoreNode).filter(StoreNode.path.in_(ancestors)).delete(
                synchronize_session=False
            )
        db.query(StoreNode).filter(
            or_(
                StoreNode.path == path,
                StoreNode.path.startswith(path + "/", autoescape=True),
            )
        ).delete(synchronize_session=False)

        leaves: dict = {}
        _flatten(path, value, leaves)
        for leaf_path, leaf_value in leaves.items():
            db.add(StoreNode(path=leaf_path, value=leaf_value))

    # ---------------------------------------------------------- subscriptions
    def subscribe(self, path: str, on_change: Listener) -> Subscription:
        """Call ``on_change`` with the value at ``path`` now and after every
        committed change at, above or below it."""
        subscription = Subscription(self, normalize_path(path), on_change)
        with self._lock:
            self._subscriptions.append(subscription)
        self._deliver(subscription)
        return subscription

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def _remove_subscription(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _notify(self, changed: list[str]) -> None:
        with self._lock:
            targets = [
                sub
                for sub in self._subscriptions
                if any(is_under(c, sub.path) or is_under(sub.path, c) for c in changed)
            ]
        for subscription in targets:
            self._deliver(subscription)

    def _deliver(self, subscription: Subscription) -> None:
        if not subscription.active:
            return
        try:
            subscription.listener(self.read(subscription.path))
        except Exception as e:
            logging.exception(f"Listener on {subscription.path} failed: {e}")


def build_store(session_factory: Optional[sessionmaker] = None) -> TreeStore:
    if session_factory is None:
        from markit.database.session import SessionLocal

        session_factory = SessionLocal
    return TreeStore(session_factory)


_store: Optional[TreeStore] = None


def get_store() -> TreeStore:
    global _store
    if _store is None:
        _store = build_store()
    return _store
