"""Audit logging, rate limiting and abuse detection backed by the audit log."""

import json
import logging
import time
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any, Literal

from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_search.config import settings
from knowledge_search.db.models import SecurityAuditLog, load_json, utcnow

logger = logging.getLogger(__name__)

GENERATION_REQUEST = "image_generation_request"
SAFETY_VIOLATION = "content_safety_violation"
RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
ABUSE_DETECTED = "abuse_detected"

ABUSE_REQUESTS_PER_HOUR = 20
ABUSE_VIOLATIONS_PER_DAY = 5

LimitType = Literal["user", "ip", "global"]


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: int  # epoch seconds
    retry_after: int | None = None
    limit_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AbuseCheck:
    is_abuse: bool
    reason: str | None = None
    action: str | None = None


class SecurityManager:
    """Security checks for image generation requests.

    Request counts come from `SecurityAuditLog` rows with action
    `image_generation_request`, so every accepted request must be recorded
    with `record_generation_request`.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.limits: dict[str, tuple[int, int]] = {
            "user": (settings.RATE_LIMIT_PER_USER_PER_HOUR, 3600),
            "ip": (settings.RATE_LIMIT_PER_IP_PER_HOUR, 3600),
            "global": (settings.RATE_LIMIT_GLOBAL_PER_MINUTE, 60),
        }

    async def check_rate_limit(self, identifier: str, limit_type: LimitType) -> RateLimitResult:
        requests, window = self.limits[limit_type]
        now = int(time.time())
        since = utcnow() - timedelta(seconds=window)

        query = select(func.count(SecurityAuditLog.id)).where(
            SecurityAuditLog.action == GENERATION_REQUEST,
            SecurityAuditLog.timestamp > since,
        )
        if limit_type == "user":
            query = query.where(SecurityAuditLog.user_id == identifier)
        elif limit_type == "ip":
            query = query.where(SecurityAuditLog.ip_address == identifier)

        try:
            count = (await self.session.execute(query)).scalar_one()
        except SQLAlchemyError as e:
            logger.error(f"Rate limit check failed for {limit_type}:{identifier}: {e}")
            return RateLimitResult(
                allowed=True, remaining=requests, reset_time=now + window, limit_type=limit_type
            )

        allowed = count < requests
        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, requests - count),
            reset_time=now + window,
            retry_after=None if allowed else window,
            limit_type=limit_type,
        )

    async def check_request_limits(
        self, user_id: str | None, ip_address: str | None
    ) -> RateLimitResult:
        """Check user, IP and global limits; return the first one that blocks."""
        checks: list[tuple[str, LimitType]] = []
        if user_id:
            checks.append((user_id, "user"))
        if ip_address:
            checks.append((ip_address, "ip"))
        checks.append(("global", "global"))

        results = [await self.check_rate_limit(ident, kind) for ident, kind in checks]
        for result in results:
            if not result.allowed:
                return result
        return min(results, key=lambda r: r.remaining)

    async def log_event(
        self,
        action: str,
        user_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        resource: str = "",
        status: str = "success",
        risk_level: str = "low",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Write an audit row. Failures are logged and never raised to the caller."""
        entry = SecurityAuditLog(
            user_id=user_id,
            action=action,
            resource=resource,
            ip_address=ip_address,
            user_agent=user_agent,
            status=status,
            risk_level=risk_level,
            details=json.dumps(details or {}, default=str),
            timestamp=utcnow(),
        )
        try:
            self.session.add(entry)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to log security event {action}: {e}")

    async def record_generation_request(
        self,
        user_id: str,
        ip_address: str | None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        await self.log_event(
            GENERATION_REQUEST,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            resource="/api/v1/images/generate",
            details=details,
        )

    async def detect_abuse(self, user_id: str, ip_address: str | None) -> AbuseCheck:
        now = utcnow()
        conditions = [SecurityAuditLog.user_id == user_id]
        if ip_address:
            conditions.append(SecurityAuditLog.ip_address == ip_address)
        actor = or_(*conditions)

        recent = (
            await self.session.execute(
                select(func.count(SecurityAuditLog.id)).where(
                    actor,
                    SecurityAuditLog.action == GENERATION_REQUEST,
                    SecurityAuditLog.timestamp > now - timedelta(hours=1),
                )
            )
        ).scalar_one()
        if recent > ABUSE_REQUESTS_PER_HOUR:
            return AbuseCheck(
                True, "Excessive requests in short time period", "temporary_block"
            )

        violations = (
            await self.session.execute(
                select(func.count(SecurityAuditLog.id)).where(
                    actor,
                    SecurityAuditLog.action == SAFETY_VIOLATION,
                    SecurityAuditLog.timestamp > now - timedelta(days=1),
                )
            )
        ).scalar_one()
        if violations > ABUSE_VIOLATIONS_PER_DAY:
            return AbuseCheck(True, "Multiple content safety violations", "account_review")

        return AbuseCheck(False)

    async def cleanup_audit_logs(self, retention_days: int | None = None) -> int:
        days = retention_days if retention_days is not None else settings.AUDIT_RETENTION_DAYS
        cutoff = utcnow() - timedelta(days=days)
        result = await self.session.execute(
            delete(SecurityAuditLog).where(SecurityAuditLog.timestamp < cutoff)
        )
        await self.session.commit()
        removed = result.rowcount or 0
        logger.info(f"Cleaned up {removed} audit logs older than {days} days")
        return removed

    async def security_report(self) -> dict[str, Any]:
        """Summary of the last 24 hours of audit activity."""
        since = utcnow() - timedelta(days=1)

        totals = (
            await self.session.execute(
                select(
                    func.count(SecurityAuditLog.id),
                    func.sum(case((SecurityAuditLog.status == "blocked", 1), else_=0)),
                    func.sum(case((SecurityAuditLog.action == SAFETY_VIOLATION, 1), else_=0)),
                    func.sum(case((SecurityAuditLog.action == RATE_LIMIT_EXCEEDED, 1), else_=0)),
                ).where(SecurityAuditLog.timestamp > since)
            )
        ).one()
        total, blocked, violations, rate_limited = (v or 0 for v in totals)

        risks = await self.session.execute(
            select(
                SecurityAuditLog.action,
                SecurityAuditLog.risk_level,
                func.count(SecurityAuditLog.id).label("count"),
            )
            .where(
                SecurityAuditLog.timestamp > since,
                SecurityAuditLog.status.in_(("failure", "blocked")),
            )
            .group_by(SecurityAuditLog.action, SecurityAuditLog.risk_level)
            .order_by(func.count(SecurityAuditLog.id).desc())
            .limit(10)
        )
        top_risks = [
            {
                "type": action,
                "count": count,
                "description": f"{action} ({risk_level} risk): {count} incidents",
            }
            for action, risk_level, count in risks.all()
        ]

        recommendations = []
        if blocked > 10:
            recommendations.append(
                "Consider reviewing rate limiting policies - high number of blocked requests"
            )
        if violations > 5:
            recommendations.append("Review and strengthen content safety filters")

        return {
            "summary": {
                "total_requests": total,
                "blocked_requests": blocked,
                "content_violations": violations,
                "rate_limited_requests": rate_limited,
            },
            "top_risks": top_risks,
            "recommendations": recommendations,
        }

    async def list_audit_logs(
        self,
        limit: int = 50,
        offset: int = 0,
        risk_level: str | None = None,
        action: str | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        """Audit rows newest first, with the total matching the filters."""
        conditions = []
        if risk_level:
            conditions.append(SecurityAuditLog.risk_level == risk_level)
        if action:
            conditions.append(SecurityAuditLog.action == action)

        total = (
            await self.session.execute(
                select(func.count(SecurityAuditLog.id)).where(*conditions)
            )
        ).scalar_one()
        rows = await self.session.execute(
            select(SecurityAuditLog)
            .where(*conditions)
            .order_by(SecurityAuditLog.timestamp.desc(), SecurityAuditLog.id.desc())
            .limit(limit)
            .offset(offset)
        )
        entries = [
            {
                "id": entry.id,
                "timestamp": entry.timestamp.isoformat(),
                "user_id": entry.user_id,
                "action": entry.action,
                "resource": entry.resource,
                "ip_address": entry.ip_address,
                "status": entry.status,
                "risk_level": entry.risk_level,
                "details": load_json(entry.details, {}),
            }
            for entry in rows.scalars().all()
        ]
        return entries, total
