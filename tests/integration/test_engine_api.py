"""Reward-engine endpoint: auth, dispatch, envelopes, rate limits and flows."""

from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from bix.db.models import PendingReward, QuizQuestion, Redemption, UserProfile
from bix.ledger import service as ledger_service
from bix.pending.processor import schedule_pending_reward
from bix.utils.dates import utcnow
from tests.conftest import ADMIN_ID, auth_headers, engine_call, make_profile, session_scope

ENDPOINT = "/api/v1/reward-engine"


class TestEnvelope:
    @pytest.mark.asyncio
    async def test_requires_bearer_token(self, client: AsyncClient):
        response = await client.post(ENDPOINT, json={"action": "daily_checkin"})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    @pytest.mark.asyncio
    async def test_invalid_token(self, client: AsyncClient):
        response = await client.post(
            ENDPOINT, json={"action": "daily_checkin"}, headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401
        assert "error" in response.json()

    @pytest.mark.asyncio
    async def test_unknown_action(self, client: AsyncClient):
        status, body = await engine_call(client, "u1", "mine_bitcoin")
        assert status == 400
        assert body == {"error": "Invalid action"}

    @pytest.mark.asyncio
    async def test_invalid_json(self, client: AsyncClient):
        response = await client.post(
            ENDPOINT,
            content=b"{not json",
            headers={**auth_headers("u1"), "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON body"}

    @pytest.mark.asyncio
    async def test_success_envelope_is_camel_case(self, client: AsyncClient):
        status, body = await engine_call(client, "u1", "daily_checkin")
        assert status == 200
        assert body["success"] is True
        assert body["reward"] == 10
        assert body["streak"] == 1
        assert body["newBalance"] == 10
        assert body["newLevel"] == 1
        assert body["leveledUp"] is False
        assert "new_balance" not in body

    @pytest.mark.asyncio
    async def test_business_rule_error(self, client: AsyncClient):
        await engine_call(client, "u1", "daily_checkin")
        status, body = await engine_call(client, "u1", "daily_checkin")
        assert status == 400
        assert body == {"error": "Already checked in today"}

    @pytest.mark.asyncio
    async def test_field_validation_names_the_field(self, client: AsyncClient):
        status, body = await engine_call(client, "u1", "game_result", gameType="coinflip")
        assert status == 400
        assert body["error"].startswith("betAmount")

    @pytest.mark.asyncio
    async def test_first_request_provisions_profile(self, client: AsyncClient):
        await engine_call(client, "fresh-user", "get_pending_rewards")
        async with session_scope() as db:
            profile = await db.get(UserProfile, "fresh-user")
        assert profile is not None
        assert profile.role == "user"
        assert len(profile.referral_code) == 8


class TestAdminGate:
    @pytest.mark.asyncio
    async def test_non_admin_forbidden(self, client: AsyncClient):
        status, body = await engine_call(client, "u1", "admin_get_metrics")
        assert status == 403
        assert body == {"error": "Admin access required"}

    @pytest.mark.asyncio
    async def test_admin_allowed(self, client: AsyncClient):
        status, body = await engine_call(client, ADMIN_ID, "admin_get_metrics")
        assert status == 200
        assert body["totalUsers"] == 1
        assert body["flaggedAccounts"] == 0


class TestRateLimits:
    @pytest.mark.asyncio
    async def test_per_action_window(self, client: AsyncClient):
        for _ in range(10):
            status, _ = await engine_call(client, "u1", "get_pending_rewards")
            assert status == 200

        response = await client.post(ENDPOINT, json={"action": "get_pending_rewards"}, headers=auth_headers("u1"))
        assert response.status_code == 429
        assert response.headers["retry-after"] == "60"
        assert response.json() == {"error": "Rate limited. Try again later."}

        # other actions keep their own window
        status, _ = await engine_call(client, "u1", "daily_checkin")
        assert status == 200

    @pytest.mark.asyncio
    async def test_code_attempts_per_ip(self, client: AsyncClient):
        for _ in range(5):
            status, body = await engine_call(client, "u1", "redeem_task_code", code="WRONG234")
            assert status == 400
            assert body == {"error": "Invalid or expired code"}

        status, body = await engine_call(client, "u1", "redeem_task_code", code="WRONG234")
        assert status == 429
        assert body == {"error": "Too many code attempts. Wait a minute."}


class TestCodeFlow:
    @pytest.mark.asyncio
    async def test_generate_and_redeem(self, client: AsyncClient):
        status, body = await engine_call(client, ADMIN_ID, "admin_generate_code_window", validHours=1, maxRedemptions=2)
        assert status == 200
        assert body["maxRedemptions"] == 2
        assert body["message"] == f"Code {body['code']} generated. Valid for 1 hours."
        code = body["code"]

        status, body = await engine_call(client, "u1", "redeem_task_code", code=code.lower())
        assert status == 200
        assert body["reward"] == 100
        assert body["newBalance"] == 100

        status, body = await engine_call(client, "u1", "redeem_task_code", code=code)
        assert status == 400
        assert body == {"error": "You already redeemed this code"}

    @pytest.mark.asyncio
    async def test_oversized_device_hash_header(self, client: AsyncClient):
        _, body = await engine_call(client, ADMIN_ID, "admin_generate_code_window", validHours=1)
        headers = {**auth_headers("u1"), "X-Device-Hash": "f" * 1000}
        response = await client.post(ENDPOINT, json={"action": "redeem_task_code", "code": body["code"]}, headers=headers)
        assert response.status_code == 200

        async with session_scope() as db:
            redemption = (await db.execute(select(Redemption))).scalar_one()
        assert redemption.device_hash == "f" * 128

    @pytest.mark.asyncio
    async def test_legacy_action_names(self, client: AsyncClient):
        status, body = await engine_call(client, ADMIN_ID, "admin_generate_code")
        assert status == 200
        assert body["maxRedemptions"] == "unlimited"

        status, body = await engine_call(client, "u1", "verify_reward_code", code=body["code"])
        assert status == 200
        assert body["reward"] == 100

    @pytest.mark.asyncio
    async def test_list_and_disable(self, client: AsyncClient):
        _, created = await engine_call(client, ADMIN_ID, "admin_generate_code_window", validHours=2)
        status, body = await engine_call(client, ADMIN_ID, "admin_list_code_windows")
        assert status == 200
        assert [w["code"] for w in body["windows"]] == [created["code"]]
        assert body["windows"][0]["expired"] is False

        status, body = await engine_call(client, ADMIN_ID, "admin_disable_code_window", windowId=created["windowId"])
        assert status == 200
        assert body["message"] == "Code window disabled"

        status, body = await engine_call(client, "u1", "redeem_task_code", code=created["code"])
        assert status == 400
        assert body == {"error": "Invalid or expired code"}


class TestReferralFlow:
    @pytest.mark.asyncio
    async def test_referral_then_commission_visible(self, client: AsyncClient):
        async with session_scope() as db:
            referrer = await make_profile(db, "referrer")
            code = referrer.referral_code

        status, body = await engine_call(client, "newcomer", "process_referral", referralCode=code)
        assert status == 200
        assert body["newUserReward"] == 50
        assert body["newBalance"] == 50

        status, body = await engine_call(client, "referrer", "get_pending_rewards")
        assert status == 200
        assert body["pending"] == []
        assert [c["commissionAmount"] for c in body["commissions"]] == [100]
        assert body["commissions"][0]["referredId"] == "newcomer"

    @pytest.mark.asyncio
    async def test_self_referral(self, client: AsyncClient):
        async with session_scope() as db:
            me = await make_profile(db, "me")
            code = me.referral_code
        status, body = await engine_call(client, "me", "process_referral", referralCode=code)
        assert status == 400
        assert body == {"error": "Cannot refer yourself"}


class TestPendingSweep:
    @pytest.mark.asyncio
    async def test_due_reward_paid_before_action(self, client: AsyncClient):
        async with session_scope() as db:
            await make_profile(db, "u1")
            await schedule_pending_reward(db, "u1", 75, 30, process_at=utcnow() - timedelta(minutes=1))
            await db.commit()

        status, body = await engine_call(client, "u1", "get_pending_rewards")
        assert status == 200
        assert body["pending"][0]["status"] == "processed"
        assert body["pending"][0]["rewardAmount"] == 75

        async with session_scope() as db:
            profile = await db.get(UserProfile, "u1")
        assert profile.balance == 75

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_id, action", [("u1", "daily_checkin"), (ADMIN_ID, "admin_get_metrics")])
    async def test_failing_item_does_not_break_the_action(self, client: AsyncClient, monkeypatch, user_id, action):
        async with session_scope() as db:
            await make_profile(db, user_id)
            await schedule_pending_reward(db, user_id, 13, 5, process_at=utcnow() - timedelta(minutes=1))
            await db.commit()

        original = ledger_service.log_transaction

        async def failing_log(db, uid, amount, type_, description):
            if amount == 13:
                raise RuntimeError("ledger write failed")
            await original(db, uid, amount, type_, description)

        monkeypatch.setattr(ledger_service, "log_transaction", failing_log)

        status, body = await engine_call(client, user_id, action)
        assert status == 200, body
        assert body["success"] is True

        # the item is retried, and fails again, on the next request
        status, body = await engine_call(client, user_id, "get_pending_rewards")
        assert status == 200, body
        assert body["pending"][0]["status"] == "pending"

        async with session_scope() as db:
            pending = (await db.execute(select(PendingReward))).scalar_one()
            profile = await db.get(UserProfile, user_id)
        assert pending.status == "pending"
        assert profile.balance == (10 if action == "daily_checkin" else 0)


class TestQuizFlow:
    @pytest.mark.asyncio
    async def test_perfect_quiz(self, client: AsyncClient):
        status, started = await engine_call(client, "u1", "start_quiz", questionCount=5, difficulty="easy")
        assert status == 200
        assert started["totalQuestions"] == 5

        async with session_scope() as db:
            result = await db.execute(select(QuizQuestion.id, QuizQuestion.correct_option))
            answers = dict(result.all())

        for q in started["questions"]:
            status, body = await engine_call(
                client,
                "u1",
                "quiz_answer",
                sessionId=started["sessionId"],
                questionId=q["id"],
                selectedOption=answers[q["id"]],
                timeTaken=2,
            )
            assert status == 200
            assert body["isCorrect"] is True

        status, body = await engine_call(client, "u1", "finish_quiz", sessionId=started["sessionId"])
        assert status == 200
        assert body["isPerfect"] is True
        assert body["bonusReward"] == 13
        assert body["totalReward"] == 38
        assert body["newBalance"] == 38


class TestTaskAdminFlow:
    @pytest.mark.asyncio
    async def test_create_toggle_delete(self, client: AsyncClient):
        status, body = await engine_call(
            client,
            ADMIN_ID,
            "admin_create_task",
            task={"id": "task_blog", "title": "Read the blog", "rewardAmount": 30, "xpReward": 15},
        )
        assert status == 200
        assert body["task"]["id"] == "task_blog"
        assert body["task"]["rewardAmount"] == 30

        status, body = await engine_call(client, "u1", "complete_task", taskId="task_blog")
        assert status == 200
        assert body["reward"] == 30

        status, _ = await engine_call(client, ADMIN_ID, "admin_toggle_task", taskId="task_blog", isActive=False)
        assert status == 200
        tasks = (await client.get("/api/v1/tasks")).json()["tasks"]
        assert "task_blog" not in {t["id"] for t in tasks}

        status, body = await engine_call(client, ADMIN_ID, "admin_delete_task", taskId="task_blog")
        assert status == 200
        assert body["message"] == "Task deleted"

        status, body = await engine_call(client, "u1", "complete_task", taskId="task_blog")
        assert status == 404
        assert body == {"error": "Task not found"}


class TestAbuseReview:
    @pytest.mark.asyncio
    async def test_same_ip_referral_flag_reviewed_by_admin(self, client: AsyncClient):
        async with session_scope() as db:
            referrer = await make_profile(db, "referrer")
            code = referrer.referral_code

        _, window = await engine_call(client, ADMIN_ID, "admin_generate_code_window")
        status, _ = await engine_call(client, "referrer", "redeem_task_code", code=window["code"])
        assert status == 200

        # same test client address, so the same IP hash as the referrer's redemption
        status, body = await engine_call(client, "newcomer", "process_referral", referralCode=code)
        assert status == 400
        assert body == {"error": "Referral rejected: suspicious activity detected"}

        status, body = await engine_call(client, ADMIN_ID, "admin_get_abuse_flags", unresolvedOnly=True)
        assert status == 200
        flags = body["flags"]
        assert [(f["userId"], f["flagType"], f["severity"]) for f in flags] == [
            ("newcomer", "referral_same_ip", "high")
        ]

        status, body = await engine_call(client, ADMIN_ID, "admin_resolve_flag", flagId=flags[0]["id"])
        assert status == 200
        assert body["message"] == "Flag resolved"
