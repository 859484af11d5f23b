"""EntitlementLedger: grants, access checks, credentials and listing credits."""
from datetime import timedelta

import pytest
from jose import jwt

from src.am_common.datetime_utils import utc_now
from src.am_common.enums import EntitlementKind
from src.am_common.errors import (
    AccessDeniedError,
    DuplicateGrantError,
    InsufficientListingCreditError,
    InvalidCredentialsError,
)
from src.am_entitlement.domain.models import access_not_after, has_access
from src.am_identity.auth.jwt_handler import ACCESS_CREDENTIAL_TYPE, decode_token


async def _grant_sub(world, intent_id: str, days: int, user: str = "usr_b"):
    return await world.entitlements.grant(
        world.session(), intent_id, user, "agent_alpha", EntitlementKind.SUBSCRIPTION,
        expires_at=world.clock() + timedelta(days=days),
    )


class TestGrant:
    @pytest.mark.asyncio
    async def test_one_grant_per_intent(self, world) -> None:
        await world.entitlements.grant(
            world.session(), "pi_1", "usr_b", "agent_alpha", EntitlementKind.OWNED
        )
        with pytest.raises(DuplicateGrantError):
            await world.entitlements.grant(
                world.session(), "pi_1", "usr_b", "agent_alpha", EntitlementKind.OWNED
            )
        assert len(world.store.entitlements) == 1

    @pytest.mark.asyncio
    async def test_owned_ignores_expiry(self, world) -> None:
        ent = await world.entitlements.grant(
            world.session(), "pi_1", "usr_b", "agent_alpha", EntitlementKind.OWNED,
            expires_at=world.clock(),
        )
        assert ent.expires_at is None

    @pytest.mark.asyncio
    async def test_subscription_needs_expiry(self, world) -> None:
        with pytest.raises(ValueError):
            await world.entitlements.grant(
                world.session(), "pi_1", "usr_b", "agent_alpha", EntitlementKind.SUBSCRIPTION
            )


class TestAccess:
    @pytest.mark.asyncio
    async def test_subscription_expires(self, world) -> None:
        await _grant_sub(world, "pi_1", days=30)
        db = world.session()

        assert await world.entitlements.has_access(db, "usr_b", "agent_alpha")
        assert not await world.entitlements.has_access(db, "usr_other", "agent_alpha")
        world.clock.advance(30 * 86400)
        assert not await world.entitlements.has_access(db, "usr_b", "agent_alpha")

    @pytest.mark.asyncio
    async def test_overlapping_subscriptions_take_latest_expiry(self, world) -> None:
        short = await _grant_sub(world, "pi_1", days=10)
        long = await _grant_sub(world, "pi_2", days=40)
        now = world.clock()

        assert access_not_after([short, long], now) == long.expires_at
        assert has_access([short, long], now + timedelta(days=20))

    @pytest.mark.asyncio
    async def test_ownership_is_unbounded(self, world) -> None:
        sub = await _grant_sub(world, "pi_1", days=10)
        owned = await world.entitlements.grant(
            world.session(), "pi_2", "usr_b", "agent_alpha", EntitlementKind.OWNED
        )
        assert access_not_after([sub, owned], world.clock()) is None

    @pytest.mark.asyncio
    async def test_check_access_response(self, world) -> None:
        resp = await world.entitlements.check_access(world.session(), "usr_b", "agent_alpha")
        assert resp.has_access is False
        assert resp.checked_at == world.clock().isoformat()


class TestCredential:
    @pytest.mark.asyncio
    async def test_denied_without_entitlement(self, world) -> None:
        with pytest.raises(AccessDeniedError):
            await world.entitlements.issue_credential(world.session(), "usr_b", "agent_alpha")

    @pytest.mark.asyncio
    async def test_credential_never_outlives_subscription(self, world) -> None:
        sub = await world.entitlements.grant(
            world.session(), "pi_1", "usr_b", "agent_alpha", EntitlementKind.SUBSCRIPTION,
            expires_at=world.clock() + timedelta(minutes=2),
        )

        resp = await world.entitlements.issue_credential(world.session(), "usr_b", "agent_alpha")

        assert resp.expires_at == sub.expires_at.isoformat()
        claims = jwt.get_unverified_claims(resp.credential)
        assert claims["type"] == ACCESS_CREDENTIAL_TYPE
        assert claims["subject"] == "agent_alpha"
        assert claims["ent"] == sub.id

    @pytest.mark.asyncio
    async def test_credential_is_not_a_caller_token(self, world) -> None:
        world.clock.current = utc_now()
        await world.entitlements.grant(
            world.session(), "pi_1", "usr_b", "agent_alpha", EntitlementKind.OWNED
        )
        resp = await world.entitlements.issue_credential(world.session(), "usr_b", "agent_alpha")
        assert jwt.get_unverified_claims(resp.credential)["sub"] == "usr_b"
        assert decode_token(resp.credential, expected_type=ACCESS_CREDENTIAL_TYPE)["sub"] == "usr_b"
        with pytest.raises(InvalidCredentialsError):
            decode_token(resp.credential, expected_type="access")


class TestCredits:
    @pytest.mark.asyncio
    async def test_redeem_within_balance(self, world) -> None:
        await world.entitlements.grant(
            world.session(), "pi_1", "usr_s", "LISTING_CREDIT", EntitlementKind.CREDIT,
            credit_points=3,
        )
        db = world.session()

        await world.entitlements.redeem_credits(db, "usr_s", "lst_1", 2)

        balance = await world.entitlements.credit_balance(db, "usr_s")
        assert balance.balance == 1
        with pytest.raises(InsufficientListingCreditError):
            await world.entitlements.redeem_credits(db, "usr_s", "lst_2", 2)


class TestListEntitlements:
    @pytest.mark.asyncio
    async def test_pagination(self, world) -> None:
        for i in range(3):
            await world.entitlements.grant(
                world.session(), f"pi_{i}", "usr_b", f"agent_{i}", EntitlementKind.OWNED
            )
        resp = await world.entitlements.list_entitlements(world.session(), "usr_b", None, 2)
        assert len(resp.items) == 2
        assert resp.has_more is True
        assert resp.next_cursor == resp.items[-1].id
