"""TokenRepository + storage tests.

Learn: Tests cover:
1. Alias fan-out on write, priority order on read
2. Partial pairs only touch the access token
3. clear() removes everything and reports whether a session existed
4. No torn reads while another thread swaps pairs
5. Storage failures are logged, never raised
"""

import json
import threading

import jwt
import pytest

from shopdeck.auth.storage import FileStorage, MemoryStorage, storage_from_path
from shopdeck.auth.tokens import (
    ACCESS_TOKEN_KEYS,
    REFRESH_TOKEN_KEYS,
    TokenPair,
    TokenRepository,
)


# ═══════════════════════════════════════════════════════════
# Read / write
# ═══════════════════════════════════════════════════════════


def test_set_writes_every_alias():
    storage = MemoryStorage()
    repo = TokenRepository(storage)

    repo.set(TokenPair("a1", "r1"))

    data = storage.load()
    assert all(data[k] == "a1" for k in ACCESS_TOKEN_KEYS)
    assert all(data[k] == "r1" for k in REFRESH_TOKEN_KEYS)
    assert repo.get() == TokenPair("a1", "r1")


def test_get_reads_first_non_empty_alias():
    """A legacy build that only wrote adminToken still reads as logged in."""
    repo = TokenRepository(MemoryStorage({"token": "", "adminToken": "legacy"}))
    assert repo.get() == TokenPair("legacy", None)

    repo = TokenRepository(MemoryStorage({"accessToken": "new", "token": "old"}))
    assert repo.get().access_token == "new"


def test_get_returns_none_without_access_token():
    """A stale refresh token alone is not a session."""
    repo = TokenRepository(MemoryStorage({"refreshToken": "r-stale"}))
    assert repo.get() is None
    assert not repo.is_authenticated()


def test_partial_pair_keeps_refresh_token():
    repo = TokenRepository()
    repo.set(TokenPair("a1", "r1"))

    repo.set(TokenPair("a2"))

    assert repo.get() == TokenPair("a2", "r1")


def test_replace_drops_previous_refresh_token():
    repo = TokenRepository()
    repo.set(TokenPair("a1", "r1"))
    repo.save_user({"id": "old"})

    repo.set(TokenPair("a2"), replace=True)

    assert repo.get() == TokenPair("a2", None)
    assert repo.current_user() is None


def test_clear_removes_everything_and_is_idempotent():
    storage = MemoryStorage()
    repo = TokenRepository(storage)
    repo.set(TokenPair("a1", "r1"))
    repo.save_user({"id": "u1"})

    assert repo.clear() is True
    assert repo.clear() is False
    assert repo.get() is None
    assert repo.current_user() is None
    assert storage.load() == {}


def test_user_profile_round_trip():
    repo = TokenRepository()
    repo.save_user({"id": "u1", "email": "admin@shop.test"})
    assert repo.current_user() == {"id": "u1", "email": "admin@shop.test"}


def test_claims_are_decoded_without_verification():
    token = jwt.encode({"sub": "u1", "exp": 1700000000}, "whatever-secret", algorithm="HS256")
    assert TokenPair(token).claims() == {"sub": "u1", "exp": 1700000000}
    assert TokenPair("not-a-jwt").claims() == {}


def test_from_payload_requires_access_token():
    assert TokenPair.from_payload({"accessToken": "a", "refreshToken": "r"}) == TokenPair("a", "r")
    with pytest.raises(ValueError):
        TokenPair.from_payload({"refreshToken": "r"})


# ═══════════════════════════════════════════════════════════
# Atomic swap
# ═══════════════════════════════════════════════════════════


def test_no_torn_pair_during_concurrent_set():
    """Readers only ever see a<n> paired with r<n>."""
    repo = TokenRepository()
    repo.set(TokenPair("a0", "r0"))
    stop = threading.Event()
    torn = []

    def writer():
        for n in range(1, 2000):
            repo.set(TokenPair(f"a{n}", f"r{n}"))
        stop.set()

    def reader():
        while not stop.is_set():
            pair = repo.get()
            if pair.access_token[1:] != pair.refresh_token[1:]:
                torn.append(pair)

    threads = [threading.Thread(target=writer)] + [
        threading.Thread(target=reader) for _ in range(3)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert torn == []


# ═══════════════════════════════════════════════════════════
# File storage + failure handling
# ═══════════════════════════════════════════════════════════


def test_file_storage_persists_between_repositories(tmp_path):
    path = tmp_path / "nested" / "tokens.json"
    TokenRepository(FileStorage(path)).set(TokenPair("a1", "r1"))

    assert TokenRepository(FileStorage(path)).get() == TokenPair("a1", "r1")
    assert json.loads(path.read_text())["adminToken"] == "a1"


def test_corrupt_file_reads_as_logged_out(tmp_path):
    path = tmp_path / "tokens.json"
    path.write_text("{not json")

    repo = TokenRepository(FileStorage(path))

    assert repo.get() is None
    # Writing still works and replaces the corrupt document
    repo.set(TokenPair("a1"))
    assert repo.get() == TokenPair("a1")


class BrokenStorage:
    def load(self):
        raise OSError("disk gone")

    def save(self, data):
        raise OSError("disk gone")


def test_storage_failures_are_not_raised():
    repo = TokenRepository(BrokenStorage())

    repo.set(TokenPair("a1", "r1"))
    assert repo.get() is None
    assert repo.clear() is False


def test_storage_from_path():
    assert isinstance(storage_from_path(""), MemoryStorage)
    assert isinstance(storage_from_path("/tmp/x.json"), FileStorage)
