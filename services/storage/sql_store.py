import copy
from datetime import datetime
from typing import Any, Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import flag_modified
from sqlmodel import Session, select

from models.storage import KeyValueEntry
from services.storage.base import KeyValueStore
from utils.keyed_lock import KeyedLock
from utils.logger import setup_logger

logger = setup_logger(__name__)


class SQLModelStore(KeyValueStore):
    """
    Persistent store on a single ``key_value_entry`` table.

    Rows are addressed by the composite primary key (namespace, key) and hold
    the JSON value. Read-modify-write runs inside one transaction while the
    per-key lock is held, so in-process writers to one key never interleave;
    ``set_if_absent`` relies on the primary-key constraint so that racing
    writers in different processes still agree on a single stored value.
    """

    def __init__(self, engine):
        self.engine = engine
        self._locks = KeyedLock()

    def get(self, namespace: str, key: str, default: Any = None) -> Any:
        with Session(self.engine) as session:
            entry = session.get(KeyValueEntry, (namespace, key))
            if entry is None:
                return default
            return entry.value

    def set(self, namespace: str, key: str, value: Any) -> None:
        with self._locks.hold((namespace, key)):
            with Session(self.engine) as session:
                self._write(session, namespace, key, value)
                session.commit()

    def delete(self, namespace: str, key: str) -> bool:
        with self._locks.hold((namespace, key)):
            with Session(self.engine) as session:
                entry = session.get(KeyValueEntry, (namespace, key))
                if entry is None:
                    return False
                session.delete(entry)
                session.commit()
                return True

    def set_if_absent(self, namespace: str, key: str, value: Any) -> Any:
        with self._locks.hold((namespace, key)):
            with Session(self.engine) as session:
                existing = session.get(KeyValueEntry, (namespace, key))
                if existing is not None:
                    return existing.value

                session.add(KeyValueEntry(namespace=namespace, key=key, value=value))
                try:
                    session.commit()
                    return value
                except IntegrityError:
                    session.rollback()
                    logger.info(
                        "Concurrent first write resolved by primary key",
                        extra={"namespace": namespace, "key": key}
                    )

            with Session(self.engine) as session:
                entry = session.get(KeyValueEntry, (namespace, key))
                return entry.value if entry is not None else value

    def update(self, namespace: str, key: str, fn: Callable[[Optional[Any]], Any]) -> Any:
        with self._locks.hold((namespace, key)):
            with Session(self.engine) as session:
                entry = session.get(KeyValueEntry, (namespace, key))
                current = copy.deepcopy(entry.value) if entry is not None else None
                replacement = fn(current)
                self._write(session, namespace, key, replacement, entry)
                session.commit()
                return replacement

    def keys(self, namespace: str) -> List[str]:
        with Session(self.engine) as session:
            statement = select(KeyValueEntry.key).where(KeyValueEntry.namespace == namespace)
            return list(session.exec(statement).all())

    def close(self) -> None:
        self.engine.dispose()

    def _write(self, session: Session, namespace: str, key: str, value: Any, entry: Optional[KeyValueEntry] = None):
        if entry is None:
            entry = session.get(KeyValueEntry, (namespace, key))
        if entry is None:
            entry = KeyValueEntry(namespace=namespace, key=key, value=value)
        else:
            entry.value = value
            entry.updated_at = datetime.utcnow()
            # plain JSON columns do not track in-place mutation
            flag_modified(entry, "value")
        session.add(entry)
