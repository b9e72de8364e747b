"""Tests for prompt safety screening and the security manager."""

from datetime import timedelta

import pytest

from knowledge_search.config import settings
from knowledge_search.db.models import SecurityAuditLog, utcnow
from knowledge_search.security.manager import (
    ABUSE_REQUESTS_PER_HOUR,
    ABUSE_VIOLATIONS_PER_DAY,
    RATE_LIMIT_EXCEEDED,
    SAFETY_VIOLATION,
    SecurityManager,
)
from knowledge_search.security.safety import MAX_PROMPT_LENGTH, ContentSafetyChecker


class TestContentSafetyChecker:
    """Tests for ContentSafetyChecker."""

    def test_clean_prompt(self):
        result = ContentSafetyChecker().check("A cheerful explorer standing in a sunny cave")
        assert result.safe is True
        assert result.confidence == 1.0
        assert result.flags == []
        assert result.filtered_content == "A cheerful explorer standing in a sunny cave"

    def test_blocked_keyword_and_pattern(self):
        result = ContentSafetyChecker().check("a nude figure")
        assert result.safe is False
        assert result.confidence == 0.2
        assert "blocked_keyword:nude" in result.flags
        assert any(f.startswith("suspicious_pattern:") for f in result.flags)
        assert result.filtered_content == "a unclothed figure"

    def test_blocked_keyword_is_substring_match(self):
        result = ContentSafetyChecker().check("a busy drugstore")
        assert result.safe is False
        assert result.flags == ["blocked_keyword:drug"]

    def test_custom_keywords(self):
        checker = ContentSafetyChecker(blocked_keywords=["Lava"])
        assert checker.check("lava everywhere").safe is False
        assert checker.check("a weapon").safe is True

    def test_excessive_length_alone_stays_safe(self):
        result = ContentSafetyChecker().check("a" * (MAX_PROMPT_LENGTH + 1))
        assert result.safe is True
        assert result.flags == ["excessive_length"]
        assert result.confidence == 0.7

    def test_filter_prompt_whole_words(self):
        filtered = ContentSafetyChecker.filter_prompt("Violence and hateful weapon")
        assert filtered == "action and hateful tool"


class TestSecurityManager:
    """Tests for SecurityManager against the audit log."""

    @pytest.mark.asyncio
    async def test_rate_limit_counts_requests(self, test_db_session, monkeypatch):
        monkeypatch.setattr(settings, "RATE_LIMIT_PER_USER_PER_HOUR", 2)
        security = SecurityManager(test_db_session)

        first = await security.check_rate_limit("user-1", "user")
        assert first.allowed is True
        assert first.remaining == 2

        await security.record_generation_request("user-1", "10.0.0.1")
        await security.record_generation_request("user-1", "10.0.0.1")
        blocked = await security.check_rate_limit("user-1", "user")

        assert blocked.allowed is False
        assert blocked.remaining == 0
        assert blocked.retry_after == 3600
        assert blocked.limit_type == "user"
        assert (await security.check_rate_limit("user-2", "user")).allowed is True

    @pytest.mark.asyncio
    async def test_check_request_limits_reports_blocking_limit(
        self, test_db_session, monkeypatch
    ):
        monkeypatch.setattr(settings, "RATE_LIMIT_PER_IP_PER_HOUR", 1)
        security = SecurityManager(test_db_session)
        await security.record_generation_request("user-1", "10.0.0.1")

        result = await security.check_request_limits("user-2", "10.0.0.1")

        assert result.allowed is False
        assert result.limit_type == "ip"

    @pytest.mark.asyncio
    async def test_check_request_limits_returns_tightest(self, test_db_session):
        security = SecurityManager(test_db_session)
        await security.record_generation_request("user-1", "10.0.0.1")

        result = await security.check_request_limits("user-1", None)

        assert result.allowed is True
        assert result.limit_type == "user"
        assert result.remaining == settings.RATE_LIMIT_PER_USER_PER_HOUR - 1
        assert set(result.to_dict()) == {
            "allowed", "remaining", "reset_time", "retry_after", "limit_type",
        }

    @pytest.mark.asyncio
    async def test_old_requests_fall_out_of_window(self, test_db_session, monkeypatch):
        monkeypatch.setattr(settings, "RATE_LIMIT_PER_USER_PER_HOUR", 1)
        test_db_session.add(
            SecurityAuditLog(
                user_id="user-1",
                action="image_generation_request",
                timestamp=utcnow() - timedelta(hours=2),
            )
        )
        await test_db_session.commit()

        result = await SecurityManager(test_db_session).check_rate_limit("user-1", "user")
        assert result.allowed is True

    @pytest.mark.asyncio
    async def test_detect_abuse_request_burst(self, test_db_session):
        security = SecurityManager(test_db_session)
        for _ in range(ABUSE_REQUESTS_PER_HOUR + 1):
            await security.record_generation_request("user-1", None)

        check = await security.detect_abuse("user-1", None)

        assert check.is_abuse is True
        assert check.action == "temporary_block"

    @pytest.mark.asyncio
    async def test_detect_abuse_safety_violations(self, test_db_session):
        security = SecurityManager(test_db_session)
        for _ in range(ABUSE_VIOLATIONS_PER_DAY + 1):
            await security.log_event(
                SAFETY_VIOLATION, ip_address="10.0.0.9", status="blocked", risk_level="high"
            )

        # Matched by IP even though the rows carry no user id
        check = await security.detect_abuse("user-1", "10.0.0.9")

        assert check.is_abuse is True
        assert check.action == "account_review"
        assert (await security.detect_abuse("user-1", None)).is_abuse is False

    @pytest.mark.asyncio
    async def test_cleanup_audit_logs(self, test_db_session):
        test_db_session.add_all(
            [
                SecurityAuditLog(action="old", timestamp=utcnow() - timedelta(days=100)),
                SecurityAuditLog(action="recent", timestamp=utcnow()),
            ]
        )
        await test_db_session.commit()

        removed = await SecurityManager(test_db_session).cleanup_audit_logs(retention_days=90)

        assert removed == 1

    @pytest.mark.asyncio
    async def test_security_report(self, test_db_session):
        security = SecurityManager(test_db_session)
        await security.record_generation_request("user-1", "10.0.0.1")
        await security.log_event(
            RATE_LIMIT_EXCEEDED, user_id="user-1", status="blocked", risk_level="medium"
        )
        await security.log_event(
            SAFETY_VIOLATION, user_id="user-1", status="blocked", risk_level="high"
        )
        await security.log_event(
            SAFETY_VIOLATION, user_id="user-2", status="blocked", risk_level="high"
        )

        report = await security.security_report()

        assert report["summary"] == {
            "total_requests": 4,
            "blocked_requests": 3,
            "content_violations": 2,
            "rate_limited_requests": 1,
        }
        assert report["top_risks"][0]["type"] == SAFETY_VIOLATION
        assert report["top_risks"][0]["count"] == 2
        assert report["recommendations"] == []

    @pytest.mark.asyncio
    async def test_list_audit_logs(self, test_db_session):
        now = utcnow()
        test_db_session.add_all(
            [
                SecurityAuditLog(
                    action=SAFETY_VIOLATION,
                    risk_level="high",
                    details='{"flags": ["blocked_keyword:x"]}',
                    timestamp=now - timedelta(minutes=i),
                )
                for i in range(3)
            ]
            + [SecurityAuditLog(action=RATE_LIMIT_EXCEEDED, risk_level="medium", timestamp=now)]
        )
        await test_db_session.commit()
        security = SecurityManager(test_db_session)

        entries, total = await security.list_audit_logs(limit=2, risk_level="high")

        assert total == 3
        assert len(entries) == 2
        assert entries[0]["timestamp"] > entries[1]["timestamp"]
        assert entries[0]["details"] == {"flags": ["blocked_keyword:x"]}

        rate_limited, total = await security.list_audit_logs(action=RATE_LIMIT_EXCEEDED)
        assert total == 1
        assert rate_limited[0]["risk_level"] == "medium"
        assert await security.list_audit_logs(offset=10) == ([], 4)
