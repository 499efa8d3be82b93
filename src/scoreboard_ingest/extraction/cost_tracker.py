"""Token usage tracking and cost estimation for vision extraction.

Every processing attempt, successful or not, leaves one row in
``scoreboard_audit`` so that spend can be reported per device and period.
"""
from __future__ import annotations

from datetime import datetime

import sqlalchemy as sa
import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from scoreboard_ingest.extraction.schemas import TokenUsage
from scoreboard_ingest.matching.config import VisionConfig
from scoreboard_ingest.models.audit import ScoreboardAudit

logger = structlog.get_logger()


def estimate_cost(usage: TokenUsage | None, config: VisionConfig) -> float | None:
    """Estimate cost in USD for the calls summed in *usage*.

    Cached prompt tokens are billed at the cached rate and excluded from
    the regular input rate.

    Returns:
        Estimated cost in USD, or ``None`` when no tokens were used.
    """
    if usage is None or usage.total_tokens == 0:
        return None
    uncached = max(0, usage.input_tokens - usage.cached_input_tokens)
    input_cost = (uncached / 1_000_000) * config.cost_per_1m_input_tokens
    cached_cost = (usage.cached_input_tokens / 1_000_000) * config.cost_per_1m_cached_input_tokens
    output_cost = (usage.output_tokens / 1_000_000) * config.cost_per_1m_output_tokens
    return round(input_cost + cached_cost + output_cost, 8)


def record_audit(
    db: AsyncSession,
    *,
    device_id: int | None,
    ingest_id: int,
    success: bool,
    config: VisionConfig,
    model: str | None = None,
    usage: TokenUsage | None = None,
    session_id: int | None = None,
    team_id: int | None = None,
    outcome: str | None = None,
    error: str | None = None,
) -> ScoreboardAudit:
    """Add an audit row to *db*; the caller owns the transaction."""
    entry = ScoreboardAudit(
        device_id=device_id,
        ingest_id=ingest_id,
        session_id=session_id,
        team_id=team_id,
        model=model,
        input_tokens=usage.input_tokens if usage else None,
        cached_input_tokens=usage.cached_input_tokens if usage else None,
        output_tokens=usage.output_tokens if usage else None,
        total_tokens=usage.total_tokens if usage else None,
        estimated_cost_usd=estimate_cost(usage, config),
        success=success,
        outcome=outcome,
        error=error,
    )
    db.add(entry)
    logger.debug(
        "audit_recorded",
        ingest_id=ingest_id,
        success=success,
        outcome=outcome,
        estimated_cost_usd=entry.estimated_cost_usd,
    )
    return entry


async def get_period_summary(db: AsyncSession, since: datetime | None = None) -> dict:
    """Aggregate attempts, failures, tokens and cost since *since* (all time if None)."""
    stmt = select(
        func.count(ScoreboardAudit.id).label("attempts"),
        func.sum(sa.case((ScoreboardAudit.success.is_(False), 1), else_=0)).label("failures"),
        func.sum(ScoreboardAudit.total_tokens).label("total_tokens"),
        func.sum(ScoreboardAudit.estimated_cost_usd).label("estimated_cost_usd"),
    )
    if since is not None:
        stmt = stmt.where(ScoreboardAudit.created_at >= since)

    row = (await db.execute(stmt)).one()
    return {
        "since": since.isoformat() if since else None,
        "attempts": row.attempts or 0,
        "failures": row.failures or 0,
        "total_tokens": row.total_tokens or 0,
        "estimated_cost_usd": round(row.estimated_cost_usd or 0.0, 6),
    }
