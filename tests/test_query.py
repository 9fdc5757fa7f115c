"""Tests for QueryEngine, storage ids and credentials."""

import pytest

from userdir import credentials
from userdir.models import UserRecord
from userdir.query import (
    EmailPolicy,
    QueryEngine,
    format_storage_id,
    paginate,
    parse_storage_id,
)


def _usernames(records):
    return [r.username for r in records]


class TestStorageId:
    def test_parse_strips_prefix(self):
        assert parse_storage_id("f:1234-abcd:jon.snow@winterfell.com") == "jon.snow@winterfell.com"

    def test_parse_keeps_colons_in_username(self):
        assert parse_storage_id("f:comp:odd:name") == "odd:name"

    def test_parse_plain_username(self):
        assert parse_storage_id("jon") == "jon"

    def test_format_then_parse(self):
        sid = format_storage_id("comp", "jon")
        assert sid == "f:comp:jon"
        assert parse_storage_id(sid) == "jon"


class TestEmailLookup:
    def test_alias_policy_lowercases(self, stark_store):
        engine = QueryEngine(stark_store)
        assert engine.by_email("Jon.Snow@Winterfell.com").first_name == "Jon"

    def test_strip_domain_policy(self, store):
        store.insert(UserRecord("ned", first_name="Eddard"))
        engine = QueryEngine(store, email_policy=EmailPolicy.STRIP_DOMAIN, email_domain="@flyer.com")
        assert engine.email_to_key("ned@flyer.com") == "ned"
        assert engine.by_email("ned@flyer.com").first_name == "Eddard"
        assert engine.by_email("ned@elsewhere.com") is None

    def test_by_key_miss(self, stark_store):
        assert QueryEngine(stark_store).by_key("nobody") is None


class TestPaging:
    def test_page_is_sorted_skip_then_take(self, store):
        for key in ["d", "b", "a", "e", "c"]:
            store.insert(UserRecord(key))
        engine = QueryEngine(store)
        assert _usernames(engine.page()) == ["a", "b", "c", "d", "e"]
        assert _usernames(engine.page(1, 2)) == ["b", "c"]
        assert _usernames(engine.page(4, 10)) == ["e"]
        assert engine.page(10, 2) == []
        assert engine.page(0, 0) == []

    def test_pages_shift_when_store_changes(self, store):
        for key in ["a", "b", "c", "d"]:
            store.insert(UserRecord(key))
        engine = QueryEngine(store)
        first = engine.page(0, 2)
        store.remove("a")
        second = engine.page(2, 2)
        assert _usernames(first) == ["a", "b"]
        assert _usernames(second) == ["d"]

    @pytest.mark.parametrize(("offset", "limit"), [(-1, None), (0, -1)])
    def test_negative_bounds_raise(self, offset, limit):
        with pytest.raises(ValueError):
            paginate([], offset, limit)


class TestSearch:
    def test_search_paginated(self, stark_store):
        engine = QueryEngine(stark_store)
        assert _usernames(engine.search("stark")) == ["arya@winterfell.com", "sansa@winterfell.com"]
        assert _usernames(engine.search("stark", 1)) == ["sansa@winterfell.com"]
        assert _usernames(engine.search("stark", 0, 1)) == ["arya@winterfell.com"]

    def test_search_params_empty_returns_everyone(self, stark_store):
        assert len(QueryEngine(stark_store).search_params({})) == 3

    def test_search_params_username(self, stark_store):
        hits = QueryEngine(stark_store).search_params({"username": "snow"})
        assert _usernames(hits) == ["jon.snow@winterfell.com"]

    def test_search_params_other_keys_return_nothing(self, stark_store):
        assert QueryEngine(stark_store).search_params({"email": "arya@winterfell.com"}) == []


class TestCredentials:
    def test_hash_is_deterministic_sha256(self):
        assert credentials.hash_credential("secret") == credentials.hash_credential("secret")
        assert len(credentials.hash_credential("secret")) == 64

    def test_only_password_kind_supported(self):
        assert credentials.supports("password")
        assert not credentials.supports("otp")

    def test_validate(self):
        rec = UserRecord("jon", password=credentials.hash_credential("ghost"))
        assert credentials.validate(rec, credentials.PASSWORD, "ghost")
        assert not credentials.validate(rec, credentials.PASSWORD, "Ghost")
        assert not credentials.validate(rec, "otp", "ghost")

    def test_placeholder_password_never_validates(self):
        rec = UserRecord.create("Jon", "Snow", "jon@w.com")
        assert credentials.is_configured_for(rec, credentials.PASSWORD)
        assert not credentials.validate(rec, credentials.PASSWORD, rec.username)

    def test_missing_password(self):
        rec = UserRecord("jon")
        assert not credentials.is_configured_for(rec, credentials.PASSWORD)
        assert not credentials.validate(rec, credentials.PASSWORD, "")
