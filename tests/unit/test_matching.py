"""Unit tests for troop_etl.matching."""

from __future__ import annotations

from troop_etl.matching import MatchedBy, match_person, match_profile, match_scout

UNIT_ID = "unit-42"
OTHER_UNIT_ID = "unit-99"


class TestMatchPerson:
    def test_member_id_hit(self):
        m = match_person("123", None, lambda mid: {"id": "p-1"} if mid == "123" else None)
        assert m.entity_id == "p-1"
        assert m.matched_by == MatchedBy.MEMBER_ID

    def test_member_id_miss_is_final(self):
        calls: list[str] = []

        def by_email(addr):
            calls.append(addr)
            return {"id": "p-2"}

        assert match_person("123", "a@example.com", lambda mid: None, by_email) is None
        assert calls == []

    def test_email_fallback_normalizes(self):
        m = match_person(
            "  ", " A@Example.COM ", lambda mid: None,
            lambda addr: {"id": "p-3"} if addr == "a@example.com" else None,
        )
        assert m.entity_id == "p-3"
        assert m.matched_by == MatchedBy.EMAIL

    def test_nothing_to_match_on(self):
        assert match_person(None, None, lambda mid: {"id": "x"}, lambda a: {"id": "y"}) is None

    def test_email_without_lookup(self):
        assert match_person(None, "a@example.com", lambda mid: None) is None


class TestMatchScout:
    def test_scoped_to_unit(self, store):
        scout_id = store.insert_scout(UNIT_ID, {
            "first_name": "Alex", "last_name": "Doe", "bsa_member_id": "444444",
        })
        assert match_scout(store, UNIT_ID, "444444").entity_id == scout_id
        assert match_scout(store, OTHER_UNIT_ID, "444444") is None

    def test_no_member_id(self, store):
        store.insert_scout(UNIT_ID, {"first_name": "Alex", "last_name": "Doe"})
        assert match_scout(store, UNIT_ID, None) is None


class TestMatchProfile:
    def test_by_member_id(self, store):
        pid = store.insert_profile({"first_name": "Jane", "bsa_member_id": "111111"})
        m = match_profile(store, "111111", None)
        assert (m.entity_id, m.matched_by) == (pid, MatchedBy.MEMBER_ID)

    def test_by_email_case_insensitive(self, store):
        pid = store.insert_profile({"first_name": "Jane", "email": "Jane.Doe@Example.com"})
        m = match_profile(store, None, "jane.doe@example.com")
        assert (m.entity_id, m.matched_by) == (pid, MatchedBy.EMAIL)

    def test_id_miss_does_not_use_email(self, store):
        store.insert_profile({"first_name": "Jane", "email": "jane@example.com"})
        assert match_profile(store, "999999", "jane@example.com") is None
