"""Session revocation on logout."""

from datetime import timedelta

import pytest

from authcycle.service.errors import StorageUnavailable
from authcycle.service.revoker import SessionRevoker
from authcycle.storage.errors import StoreUnavailable
from authcycle.storage.models import Token


class _DownTokens:
    async def delete_token_if_present(self, token_id):
        raise StoreUnavailable("connection refused")

    async def delete_tokens_for_user(self, user_id):
        raise StoreUnavailable("connection refused")


class TestRevoke:
    async def test_revoke_removes_record(self, revoker, issuer, codec, memory_store, alice):
        pair = await issuer.issue(alice)
        jti = codec.verify(pair.refresh_token)["jti"]

        assert await revoker.revoke(jti) is True
        assert await memory_store.get_token(jti) is None

    async def test_revoking_absent_token_is_not_an_error(self, revoker):
        assert await revoker.revoke("missing") is False

    async def test_revoke_all_counts_sessions(self, revoker, issuer, memory_store, alice):
        for _ in range(3):
            await issuer.issue(alice)

        assert await revoker.revoke_all(alice.id) == 3
        assert await memory_store.list_tokens_for_user(alice.id) == []

    async def test_outage_is_storage_unavailable(self, codec):
        revoker = SessionRevoker(_DownTokens(), codec)

        with pytest.raises(StorageUnavailable):
            await revoker.revoke("any")
        with pytest.raises(StorageUnavailable):
            await revoker.revoke_all("user")


class TestRevokePresented:
    async def test_presented_token_revoked(self, revoker, issuer, alice):
        pair = await issuer.issue(alice)

        assert await revoker.revoke_presented(pair.refresh_token, user_id=alice.id)

    async def test_expired_token_still_cleaned_up(self, revoker, codec, memory_store, alice):
        record = Token.new(alice.id, 60)
        await memory_store.create_token(record)
        stale = codec.sign(
            {"sub": alice.id, "jti": record.id, "token_type": "refresh"},
            timedelta(minutes=-10),
        )

        assert await revoker.revoke_presented(stale, user_id=alice.id)
        assert await memory_store.get_token(record.id) is None

    async def test_other_users_token_untouched(self, revoker, issuer, codec, memory_store, alice):
        pair = await issuer.issue(alice)

        assert not await revoker.revoke_presented(pair.refresh_token, user_id="someone-else")
        assert await memory_store.get_token(codec.verify(pair.refresh_token)["jti"])

    @pytest.mark.parametrize("token", [None, "", "garbage"])
    async def test_unreadable_token_ignored(self, revoker, alice, token):
        assert await revoker.revoke_presented(token, user_id=alice.id) is False
