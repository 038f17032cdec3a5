"""Traffic-light health of topics and per-view topic lists."""

from __future__ import annotations

from collections.abc import Iterable

from classpulse.config import ViewPolicy
from classpulse.models import (
    STATUS_PRIORITY,
    HealthStatus,
    SortOrder,
    Topic,
    TopicHealth,
    TopicView,
)

CRITICAL_BAD_PCT = 50
HEALTHY_GOOD_PCT = 60
ATTENTION_BAD_PCT = 40


def percent(part: int, total: int) -> int:
    """Integer percentage rounded half up (12.5 -> 13)"""
    return (200 * part + total) // (2 * total)


def classify(bad: int, understanding: int, good: int) -> TopicHealth:
    """
    Classify three vote counters

    Args:
        bad: "Need help" votes
        understanding: "Getting it" votes
        good: "Clear" votes

    Returns:
        Status plus rounded percentages. `critical` is checked before
        `healthy`.
    """
    if bad < 0 or understanding < 0 or good < 0:
        raise ValueError("Vote counts cannot be negative")

    total = bad + understanding + good
    if total == 0:
        return TopicHealth(status=HealthStatus.NEUTRAL, total=0)

    bad_pct = percent(bad, total)
    good_pct = percent(good, total)

    if bad_pct >= CRITICAL_BAD_PCT:
        status = HealthStatus.CRITICAL
    elif good_pct >= HEALTHY_GOOD_PCT:
        status = HealthStatus.HEALTHY
    else:
        status = HealthStatus.CAUTION

    return TopicHealth(
        status=status,
        total=total,
        bad_pct=bad_pct,
        understanding_pct=percent(understanding, total),
        good_pct=good_pct,
    )


def classify_topic(topic: Topic) -> TopicHealth:
    return classify(topic.votes_bad, topic.votes_understanding, topic.votes_good)


def sort_by_total(topics: Iterable[Topic]) -> list[Topic]:
    """Most votes first; equal totals keep their incoming order"""
    return sorted(topics, key=lambda topic: -topic.total)


def sort_by_priority(views: Iterable[TopicView]) -> list[TopicView]:
    """Most urgent status first, then most votes"""
    return sorted(
        views,
        key=lambda view: (STATUS_PRIORITY[view.health.status], -view.health.total),
    )


def needs_attention(health: TopicHealth) -> bool:
    return health.bad_pct > ATTENTION_BAD_PCT or health.good_pct >= HEALTHY_GOOD_PCT


def build_view(
    topics: Iterable[Topic],
    policy: ViewPolicy,
    archived: set[int] | None = None,
) -> list[TopicView]:
    """Classify, filter and order a snapshot for one kind of viewer."""
    views = []
    for topic in topics:
        health = classify_topic(topic)
        if health.total < policy.min_total:
            continue
        if policy.attention_only and not needs_attention(health):
            continue
        if policy.hide_archived and archived and topic.id in archived:
            continue
        views.append(TopicView(topic=topic, health=health))

    if policy.sort == SortOrder.PRIORITY:
        return sort_by_priority(views)
    return views
