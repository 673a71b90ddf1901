import threading

import pytest

from config.database import build_engine, create_db_and_tables
from services.storage import InMemoryStore, SQLModelStore
from utils.keyed_lock import KeyedLock


def make_sql_store():
    engine = build_engine("sqlite://")
    create_db_and_tables(engine)
    return SQLModelStore(engine)


STORES = [InMemoryStore, make_sql_store]


@pytest.mark.parametrize("factory", STORES)
def test_get_set_delete(factory):
    store = factory()
    assert store.get("ns", "missing") is None
    assert store.get("ns", "missing", default={}) == {}

    store.set("ns", "a", {"x": 1, "items": [1, 2]})
    assert store.get("ns", "a") == {"x": 1, "items": [1, 2]}
    assert store.keys("ns") == ["a"]
    assert store.keys("other") == []

    assert store.delete("ns", "a") is True
    assert store.delete("ns", "a") is False
    assert store.get("ns", "a") is None


@pytest.mark.parametrize("factory", STORES)
def test_returned_values_are_private_copies(factory):
    store = factory()
    store.set("ns", "a", {"items": [1]})
    value = store.get("ns", "a")
    value["items"].append(2)
    assert store.get("ns", "a") == {"items": [1]}


@pytest.mark.parametrize("factory", STORES)
def test_set_if_absent_keeps_first_value(factory):
    store = factory()
    assert store.set_if_absent("assign", "t:u", "control") == "control"
    assert store.set_if_absent("assign", "t:u", "variant") == "control"
    assert store.get("assign", "t:u") == "control"


@pytest.mark.parametrize("factory", STORES)
def test_append_evicts_oldest(factory):
    store = factory()
    for i in range(7):
        length = store.append("history", "user", {"i": i}, max_length=5)
    assert length == 5
    assert [item["i"] for item in store.get_list("history", "user")] == [2, 3, 4, 5, 6]
    assert store.get_list("history", "nobody") == []


@pytest.mark.parametrize("factory", STORES)
def test_update_is_read_modify_write(factory):
    store = factory()
    assert store.update("counters", "c", lambda v: (v or 0) + 1) == 1
    assert store.update("counters", "c", lambda v: (v or 0) + 1) == 2
    assert store.get("counters", "c") == 2


@pytest.mark.parametrize("factory", STORES)
def test_failed_update_leaves_value_untouched(factory):
    store = factory()
    store.set("ns", "k", [1, 2, 3])

    def _boom(value):
        value.append(4)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        store.update("ns", "k", _boom)
    assert store.get("ns", "k") == [1, 2, 3]


def test_concurrent_appends_to_one_key_are_not_lost():
    store = InMemoryStore()

    def _writer(offset):
        for i in range(200):
            store.append("history", "shared", offset + i, max_length=10000)

    threads = [threading.Thread(target=_writer, args=(n * 1000,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(store.get_list("history", "shared")) == 800


def test_concurrent_set_if_absent_agrees_on_one_value():
    store = InMemoryStore()
    results = []
    barrier = threading.Barrier(8)

    def _racer(value):
        barrier.wait()
        results.append(store.set_if_absent("assign", "t:u", value))

    threads = [threading.Thread(target=_racer, args=(f"v{n}",)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(set(results)) == 1
    assert store.get("assign", "t:u") == results[0]


@pytest.mark.parametrize("factory", STORES)
def test_key_locks_are_released_after_use(factory):
    store = factory()
    for i in range(50):
        store.set_if_absent("assign", f"t:user-{i}", "control")
        store.append("history", f"user-{i}", i, max_length=5)
    assert len(store._locks) == 0


def test_keyed_lock_serializes_one_key_and_drops_idle_entries():
    locks = KeyedLock()
    counter = {"value": 0}

    def _increment():
        for _ in range(500):
            with locks.hold("shared"):
                current = counter["value"]
                counter["value"] = current + 1

    threads = [threading.Thread(target=_increment) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert counter["value"] == 2000
    assert len(locks) == 0

    with locks.hold("outer"):
        with locks.hold("outer"):
            assert len(locks) == 1
    assert len(locks) == 0
