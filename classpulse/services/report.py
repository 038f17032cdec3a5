"""Helpers for building the session CSV report."""

from __future__ import annotations

import csv
import io
from collections import Counter

from classpulse.ledger import VoteLedger
from classpulse.models import VoteType
from classpulse.services.health import classify

REPORT_COLUMNS = [
    "topic",
    "suggested_by_student",
    "need_help",
    "getting_it",
    "clear",
    "total",
    "status",
    "need_help_pct",
    "clear_pct",
]


async def build_report_rows(ledger: VoteLedger, session_id: int) -> list[dict[str, object]]:
    """Tally each topic from its vote rows (not from the counters)."""

    topics = await ledger.list_topics(session_id)
    tallies: dict[int, Counter[VoteType]] = {topic.id: Counter() for topic in topics}
    for vote in await ledger.votes_for_session(session_id):
        tallies[vote.topic_id][vote.vote_type] += 1

    rows = []
    for topic in topics:
        tally = tallies[topic.id]
        bad = tally[VoteType.BAD]
        understanding = tally[VoteType.UNDERSTANDING]
        good = tally[VoteType.GOOD]
        health = classify(bad, understanding, good)
        rows.append(
            {
                "topic": topic.name,
                "suggested_by_student": "yes" if topic.created_by_student else "no",
                "need_help": bad,
                "getting_it": understanding,
                "clear": good,
                "total": health.total,
                "status": health.status.value,
                "need_help_pct": health.bad_pct,
                "clear_pct": health.good_pct,
            }
        )
    return rows


async def export_csv(ledger: VoteLedger, session_id: int) -> str:
    rows = await build_report_rows(ledger, session_id)
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=REPORT_COLUMNS)
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()
