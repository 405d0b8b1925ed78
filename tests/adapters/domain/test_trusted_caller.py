"""Tests for the TrustedCaller aggregate."""

import json

import pytest
from adapters.auth.trusted_caller import TrustedCaller, generate_api_key, hash_api_key
from protean.exceptions import ValidationError

SELLER = "0x" + "7c" * 20


class TestIssue:
    def test_stores_only_the_key_hash(self):
        caller, raw_key = TrustedCaller.issue(["fulfill"])
        assert caller.api_key_sha256 == hash_api_key(raw_key)
        assert raw_key not in caller.api_key_sha256

    def test_generated_caller_id(self):
        caller, _ = TrustedCaller.issue(["fulfill"])
        assert caller.caller_id.startswith("caller-")

    def test_explicit_caller_id_and_key(self):
        caller, raw_key = TrustedCaller.issue(["fulfill"], caller_id=" market-1 ", raw_key="known-key")
        assert caller.caller_id == "market-1"
        assert raw_key == "known-key"

    def test_scopes_normalized_and_deduplicated(self):
        caller, _ = TrustedCaller.issue([" Fulfill", "fulfill", "INVENTORY"])
        assert json.loads(caller.scopes) == ["fulfill", "inventory"]
        assert caller.scope_set == {"fulfill", "inventory"}

    def test_bindings_normalized(self):
        caller, _ = TrustedCaller.issue(["fulfill"], seller_address=SELLER.upper().replace("0X", "0x"), chain_id=100)
        assert caller.seller_address == SELLER
        assert caller.chain_id == 100

    def test_scopes_required(self):
        with pytest.raises(ValidationError) as exc:
            TrustedCaller.issue(["  "])
        assert "scopes" in exc.value.messages

    def test_unknown_scope_rejected(self):
        with pytest.raises(ValidationError) as exc:
            TrustedCaller.issue(["fulfill", "admin"])
        assert "scopes" in exc.value.messages


class TestRevoke:
    def test_revoke(self):
        caller, _ = TrustedCaller.issue(["fulfill"])
        caller.revoke()
        assert caller.is_revoked
        assert caller.enabled is False

    def test_revoke_twice_rejected(self):
        caller, _ = TrustedCaller.issue(["fulfill"])
        caller.revoke()
        with pytest.raises(ValidationError):
            caller.revoke()


class TestKeys:
    def test_generated_keys_are_unique(self):
        assert generate_api_key() != generate_api_key()

    def test_hash_is_sha256_hex(self):
        assert hash_api_key("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
