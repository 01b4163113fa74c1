from __future__ import annotations

import threading

import allure
import pytest

from trivia_refiner.pool.credentials import CredentialPool

pytestmark = [
    allure.epic("Batch Rewriting"),
    allure.feature("Credential Rotation"),
]


def test_empty_pool_is_rejected() -> None:
    with pytest.raises(ValueError, match="at least one key"):
        CredentialPool([])


def test_credential_repr_never_shows_key() -> None:
    credential = CredentialPool(["secret-value"]).current()

    assert "secret-value" not in repr(credential)
    assert credential.label == "key 1"


def test_two_of_three_exhausted_still_rotates_to_third() -> None:
    pool = CredentialPool(["k1", "k2", "k3"])

    first = pool.report_exhausted(pool.current())
    second = pool.report_exhausted(pool.current())

    assert first.rotated
    assert second.rotated
    assert not second.exhausted_all
    assert pool.current().key == "k3"
    assert pool.available_count == 1
    assert not pool.is_dead


def test_all_three_exhausted_signals_dead_pool() -> None:
    pool = CredentialPool(["k1", "k2", "k3"])
    for _ in range(2):
        pool.report_exhausted(pool.current())

    result = pool.report_exhausted(pool.current())

    assert result.exhausted_all
    assert result.available == 0
    assert pool.is_dead


def test_rotation_wraps_past_exhausted_keys() -> None:
    pool = CredentialPool(["k1", "k2", "k3"])
    pool.report_exhausted(pool.current())  # k1 -> k2
    k2 = pool.current()
    pool.report_exhausted(k2)  # k2 -> k3

    result = pool.report_exhausted(pool.current())

    assert result.exhausted_all


def test_stale_report_does_not_skip_a_valid_key() -> None:
    pool = CredentialPool(["k1", "k2", "k3"])
    seen_by_both = pool.current()

    first = pool.report_exhausted(seen_by_both)
    second = pool.report_exhausted(seen_by_both)

    assert first.rotated
    assert not second.rotated
    assert pool.current().key == "k2"
    assert pool.available_count == 2


def test_concurrent_reports_of_same_key_advance_once() -> None:
    pool = CredentialPool(["k1", "k2", "k3", "k4"])
    credential = pool.current()
    barrier = threading.Barrier(8)
    results = []
    lock = threading.Lock()

    def _report() -> None:
        barrier.wait(timeout=5)
        result = pool.report_exhausted(credential)
        with lock:
            results.append(result)

    threads = [threading.Thread(target=_report) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert sum(1 for result in results if result.rotated) == 1
    assert pool.current().key == "k2"
