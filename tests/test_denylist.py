"""
Tests for the Redis-backed denylist cache.

Tests cover:
- Add / remove / members / is_member
- Whole-set TTL: every add resets expiry for all members together
- Backend outages surface as DenylistUnavailable, never as "not a member"
"""

import pytest

from app.denylist import DenylistCache
from app.exceptions import DenylistUnavailable


A = "+15550000001"
B = "+15550000002"


class TestMembership:
    def test_add_and_is_member(self, denylist):
        denylist.add([A])
        assert denylist.is_member(A)
        assert not denylist.is_member(B)

    def test_members_lists_everything(self, denylist):
        denylist.add([A, B])
        assert denylist.members() == {A, B}

    def test_remove(self, denylist):
        denylist.add([A, B])
        denylist.remove([A])
        assert denylist.members() == {B}
        assert not denylist.is_member(A)

    def test_empty_add_is_a_noop(self, denylist, fake_redis):
        denylist.add([])
        assert fake_redis.commands == []
        assert denylist.members() == set()

    def test_uses_configured_key(self, fake_redis):
        cache = DenylistCache(fake_redis, key="custom:key", ttl_seconds=10)
        cache.add([A])
        assert fake_redis.sets == {"custom:key": {A}}


class TestTtl:
    def test_add_sets_ttl_on_the_set(self, denylist, fake_redis):
        denylist.add([A])
        assert fake_redis.ttl("sms:blacklist") == 86400

    def test_second_add_resets_expiry_for_whole_set(self, denylist, fake_redis, clock):
        denylist.add([A])
        clock.advance(1)
        denylist.add([B])

        assert fake_redis.ttl("sms:blacklist") == 86400

        # A per-member TTL would have dropped A by now
        clock.advance(86399.5)
        assert denylist.members() == {A, B}

        # Both expire together at the second add's deadline
        clock.advance(1)
        assert denylist.members() == set()
        assert not denylist.is_member(A)
        assert not denylist.is_member(B)

    def test_remove_does_not_extend_ttl(self, denylist, fake_redis, clock):
        denylist.add([A, B])
        clock.advance(100)
        denylist.remove([B])
        assert fake_redis.ttl("sms:blacklist") == 86300


class TestOutage:
    def test_is_member_raises_instead_of_returning_false(self, denylist, fake_redis):
        denylist.add([A])
        fake_redis.down = True
        with pytest.raises(DenylistUnavailable):
            denylist.is_member(A)

    def test_writes_raise_denylist_unavailable(self, denylist, fake_redis):
        fake_redis.down = True
        with pytest.raises(DenylistUnavailable):
            denylist.add([A])
        with pytest.raises(DenylistUnavailable):
            denylist.remove([A])
        with pytest.raises(DenylistUnavailable):
            denylist.members()

    def test_ping_reports_outage(self, denylist, fake_redis):
        assert denylist.ping()
        fake_redis.down = True
        assert not denylist.ping()
