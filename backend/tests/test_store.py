"""
SessionStore tests: code uniqueness, join errors, reverse lookups,
disconnect transitions, payload handling and idle expiry.
"""

import random
import time

import pytest

from relay.codes import CodeGenerator
from relay.errors import SessionNotFound, SessionOccupied
from store import Role, SessionStore


def _store(seed: int = 1) -> SessionStore:
    return SessionStore(CodeGenerator(rng=random.Random(seed)))


class TestCreate:

    def test_create_returns_open_session(self):
        store = _store()
        session = store.create_session("web-1")
        assert session.producer_connection == "web-1"
        assert session.consumer_connection is None
        assert session.last_payload == ""
        assert not session.occupied
        assert len(store) == 1

    def test_live_codes_pairwise_distinct(self):
        store = _store()
        codes = [store.create_session(f"web-{i}").code for i in range(500)]
        assert len(set(codes)) == 500
        assert store.codes() == set(codes)

    def test_code_space_collisions_are_avoided(self):
        # 4 possible codes, 4 sessions: all must differ
        store = SessionStore(CodeGenerator(alphabet="AB", length=2, max_attempts=10_000, rng=random.Random(3)))
        codes = {store.create_session(f"web-{i}").code for i in range(4)}
        assert codes == {"AA", "AB", "BA", "BB"}

    def test_stores_are_independent(self):
        a, b = _store(), _store()
        a.create_session("web-1")
        assert len(a) == 1
        assert len(b) == 0

    def test_returned_session_is_a_copy(self):
        store = _store()
        session = store.create_session("web-1")
        session.last_payload = "tampered"
        assert store.get_session(session.code).last_payload == ""


class TestJoin:

    def setup_method(self):
        self.store = _store()
        self.session = self.store.create_session("web-1")

    def test_join_binds_consumer(self):
        joined = self.store.join_session(self.session.code, "mobile-1")
        assert joined.consumer_connection == "mobile-1"
        assert self.store.find_by_consumer("mobile-1").code == self.session.code

    def test_join_is_case_insensitive(self):
        joined = self.store.join_session(self.session.code.lower(), "mobile-1")
        assert joined.code == self.session.code

    def test_join_tolerates_surrounding_whitespace(self):
        joined = self.store.join_session(f"  {self.session.code} ", "mobile-1")
        assert joined.code == self.session.code

    def test_join_unknown_code(self):
        with pytest.raises(SessionNotFound):
            self.store.join_session("000000", "mobile-1")

    def test_join_occupied_keeps_existing_binding(self):
        self.store.join_session(self.session.code, "mobile-1")
        with pytest.raises(SessionOccupied):
            self.store.join_session(self.session.code, "mobile-2")
        assert self.store.get_session(self.session.code).consumer_connection == "mobile-1"
        assert self.store.find_by_consumer("mobile-2") is None

    def test_join_returns_last_payload(self):
        self.store.update_payload(self.session.code, "print('hi')")
        joined = self.store.join_session(self.session.code, "mobile-1")
        assert joined.last_payload == "print('hi')"
        assert joined.has_payload

    def test_join_removed_session(self):
        self.store.remove_session(self.session.code)
        with pytest.raises(SessionNotFound):
            self.store.join_session(self.session.code, "mobile-1")


class TestLookups:

    def test_find_by_producer(self):
        store = _store()
        session = store.create_session("web-1")
        assert store.find_by_producer("web-1").code == session.code
        assert store.find_by_producer("web-2") is None

    def test_find_by_producer_returns_newest(self):
        store = _store()
        first = store.create_session("web-1")
        second = store.create_session("web-1")
        assert store.find_by_producer("web-1").code == second.code
        assert [s.code for s in store.sessions_of_producer("web-1")] == [first.code, second.code]

    def test_second_create_keeps_first_session(self):
        store = _store()
        first = store.create_session("web-1")
        store.join_session(first.code, "mobile-1")
        store.create_session("web-1")

        kept = store.get_session(first.code)
        assert kept is not None
        assert kept.consumer_connection == "mobile-1"
        assert store.find_by_consumer("mobile-1").code == first.code
        assert len(store) == 2

    def test_find_by_consumer_absent(self):
        store = _store()
        store.create_session("web-1")
        assert store.find_by_consumer("web-1") is None

    def test_get_session_case_insensitive(self):
        store = _store()
        session = store.create_session("web-1")
        assert store.get_session(session.code.lower()).code == session.code


class TestPayload:

    def test_update_overwrites(self):
        store = _store()
        session = store.create_session("web-1")
        store.update_payload(session.code, "v1")
        store.update_payload(session.code, "v2")
        assert store.get_session(session.code).last_payload == "v2"

    def test_update_missing_session_is_noop(self):
        store = _store()
        store.update_payload("ABCDEF", "lost")
        assert len(store) == 0


class TestDisconnect:

    def setup_method(self):
        self.store = _store()
        self.session = self.store.create_session("web-1")

    def test_producer_disconnect_removes_session(self):
        self.store.join_session(self.session.code, "mobile-1")
        outcome = self.store.handle_disconnect("web-1")

        assert outcome.role is Role.PRODUCER
        assert outcome.session.consumer_connection == "mobile-1"
        assert self.store.get_session(self.session.code) is None
        assert self.store.find_by_producer("web-1") is None
        assert self.store.find_by_consumer("mobile-1") is None
        with pytest.raises(SessionNotFound):
            self.store.join_session(self.session.code, "mobile-2")

    def test_consumer_disconnect_keeps_session_open(self):
        self.store.update_payload(self.session.code, "state")
        self.store.join_session(self.session.code, "mobile-1")
        outcome = self.store.handle_disconnect("mobile-1")

        assert outcome.role is Role.CONSUMER
        assert outcome.session.producer_connection == "web-1"
        remaining = self.store.get_session(self.session.code)
        assert remaining.consumer_connection is None
        assert remaining.last_payload == "state"

        rejoined = self.store.join_session(self.session.code, "mobile-2")
        assert rejoined.last_payload == "state"

    def test_unbound_disconnect(self):
        assert self.store.handle_disconnect("stranger") is None
        assert len(self.store) == 1

    def test_second_disconnect_is_noop(self):
        self.store.handle_disconnect("web-1")
        assert self.store.handle_disconnect("web-1") is None

    def test_producer_disconnect_removes_all_its_sessions(self):
        second = self.store.create_session("web-1")
        other = self.store.create_session("web-2")
        self.store.join_session(self.session.code, "mobile-1")

        outcome = self.store.handle_disconnect("web-1")

        assert [s.code for s in outcome.sessions] == [self.session.code, second.code]
        assert outcome.session.code == second.code
        assert self.store.codes() == {other.code}
        assert self.store.sessions_of_producer("web-1") == []
        assert self.store.find_by_consumer("mobile-1") is None

    def test_removing_one_session_keeps_the_others(self):
        second = self.store.create_session("web-1")
        assert self.store.remove_session(second.code)
        assert self.store.find_by_producer("web-1").code == self.session.code
        assert not self.store.remove_session(second.code)


class TestExpireIdle:

    def test_expires_sessions_past_threshold(self):
        store = _store()
        first = store.create_session("web-1")
        second = store.create_session("web-2")
        now = time.monotonic()

        expired = store.expire_idle(60, now=now + 61)
        assert {s.code for s in expired} == {first.code, second.code}

        store = _store()
        kept = store.create_session("web-1")
        assert store.expire_idle(60, now=time.monotonic() + 10) == []
        assert store.get_session(kept.code) is not None

    def test_payload_update_refreshes_activity(self):
        store = _store()
        session = store.create_session("web-1")
        before = store.get_session(session.code).last_activity
        time.sleep(0.01)
        store.update_payload(session.code, "tick")
        assert store.get_session(session.code).last_activity > before

    def test_expired_session_clears_indices(self):
        store = _store()
        session = store.create_session("web-1")
        store.join_session(session.code, "mobile-1")
        store.expire_idle(0, now=time.monotonic() + 1)
        assert store.find_by_producer("web-1") is None
        assert store.find_by_consumer("mobile-1") is None

    def test_touch_refreshes_sessions_of_either_peer(self):
        store = _store()
        session = store.create_session("web-1")
        store.join_session(session.code, "mobile-1")
        before = store.get_session(session.code).last_activity

        time.sleep(0.01)
        store.touch("mobile-1")
        after_consumer = store.get_session(session.code).last_activity
        assert after_consumer > before

        time.sleep(0.01)
        store.touch("web-1")
        assert store.get_session(session.code).last_activity > after_consumer

    def test_touch_unbound_connection_is_noop(self):
        store = _store()
        session = store.create_session("web-1")
        before = store.get_session(session.code).last_activity
        store.touch("stranger")
        assert store.get_session(session.code).last_activity == before
