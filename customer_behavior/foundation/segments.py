"""Rule-based RFM segment classification.

A score triple (R, F, M) is mapped to exactly one named segment by walking
an ordered rule list and returning the first match. The order is part of
the definition: the predicates overlap, and reordering them changes
outcomes.

Known quirk: every triple matching "Cannot Lose Them" (M>=4 and R<=2) also
matches "Big Spenders" (M>=4), which is evaluated earlier, so "Cannot Lose
Them" is never produced. The rule is kept in place so that the ordering
stays identical to the established segment definitions.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Sequence

from customer_behavior.foundation.rfm import CustomerScore


class Segment(str, Enum):
    """Customer segment labels."""

    CHAMPIONS = "Champions"
    LOYAL_CUSTOMERS = "Loyal Customers"
    POTENTIAL_LOYALISTS = "Potential Loyalists"
    BIG_SPENDERS = "Big Spenders"
    AT_RISK = "At Risk"
    CANNOT_LOSE_THEM = "Cannot Lose Them"
    HIBERNATING = "Hibernating"
    LOST_CUSTOMERS = "Lost Customers"
    NEW_CUSTOMERS = "New Customers"
    OTHERS = "Others"


@dataclass(frozen=True)
class SegmentRule:
    """A guarded match arm: ``segment`` applies when ``predicate`` holds."""

    segment: Segment
    predicate: Callable[[int, int, int], bool]
    description: str


# Evaluated top to bottom; first match wins.
SEGMENT_RULES: tuple[SegmentRule, ...] = (
    SegmentRule(
        Segment.CHAMPIONS,
        lambda r, f, m: r >= 4 and f >= 4 and m >= 4,
        "R>=4 and F>=4 and M>=4",
    ),
    SegmentRule(
        Segment.LOYAL_CUSTOMERS,
        lambda r, f, m: f >= 4 and r >= 3,
        "F>=4 and R>=3",
    ),
    SegmentRule(
        Segment.POTENTIAL_LOYALISTS,
        lambda r, f, m: r >= 4 and 2 <= f <= 3,
        "R>=4 and 2<=F<=3",
    ),
    SegmentRule(
        Segment.BIG_SPENDERS,
        lambda r, f, m: m >= 4,
        "M>=4",
    ),
    SegmentRule(
        Segment.AT_RISK,
        lambda r, f, m: r <= 2 and (f >= 3 or m >= 3),
        "R<=2 and (F>=3 or M>=3)",
    ),
    SegmentRule(
        Segment.CANNOT_LOSE_THEM,
        lambda r, f, m: m >= 4 and r <= 2,
        "M>=4 and R<=2",
    ),
    SegmentRule(
        Segment.HIBERNATING,
        lambda r, f, m: r <= 2 and f >= 2,
        "R<=2 and F>=2",
    ),
    SegmentRule(
        Segment.LOST_CUSTOMERS,
        lambda r, f, m: r <= 2 and f <= 2,
        "R<=2 and F<=2",
    ),
    SegmentRule(
        Segment.NEW_CUSTOMERS,
        lambda r, f, m: r >= 4 and f <= 2,
        "R>=4 and F<=2",
    ),
)


def classify_segment(
    recency_score: int,
    frequency_score: int,
    monetary_score: int,
    rules: Sequence[SegmentRule] = SEGMENT_RULES,
) -> Segment:
    """Return the segment of an (R, F, M) score triple.

    Raises
    ------
    ValueError
        If any score is outside 1-5.

    Examples
    --------
    >>> classify_segment(5, 5, 5)
    <Segment.CHAMPIONS: 'Champions'>
    >>> classify_segment(2, 1, 5).value
    'Big Spenders'
    >>> classify_segment(3, 1, 1).value
    'Others'
    """
    for name, value in (
        ("recency_score", recency_score),
        ("frequency_score", frequency_score),
        ("monetary_score", monetary_score),
    ):
        if not 1 <= value <= 5:
            raise ValueError(f"{name} must be between 1 and 5: {value}")

    for rule in rules:
        if rule.predicate(recency_score, frequency_score, monetary_score):
            return rule.segment
    return Segment.OTHERS


@dataclass(frozen=True)
class CustomerSegment:
    """A scored customer together with its segment."""

    score: CustomerScore
    segment: Segment

    @property
    def customer_unique_id(self) -> str:
        return self.score.customer_unique_id


def segment_customers(scores: Iterable[CustomerScore]) -> list[CustomerSegment]:
    """Classify every scored customer.

    Classification is per customer and needs no population-wide state.
    """
    segments = [
        CustomerSegment(
            score=score,
            segment=classify_segment(
                score.recency_score, score.frequency_score, score.monetary_score
            ),
        )
        for score in scores
    ]
    segments.sort(key=lambda s: s.customer_unique_id)
    return segments


@dataclass(frozen=True)
class SegmentPlaybookEntry:
    """Recommended marketing treatment for a segment."""

    segment: Segment
    recommended_action: str
    marketing_priority: str
    rank: int


SEGMENT_PLAYBOOK: dict[Segment, SegmentPlaybookEntry] = {
    entry.segment: entry
    for entry in (
        SegmentPlaybookEntry(
            Segment.CHAMPIONS,
            "Reward them. They can be early adopters for new products and will "
            "help promote your brand.",
            "HIGH",
            1,
        ),
        SegmentPlaybookEntry(
            Segment.CANNOT_LOSE_THEM,
            "Win them back via renewals or newer products. Provide helpful resources.",
            "HIGH",
            2,
        ),
        SegmentPlaybookEntry(
            Segment.AT_RISK,
            "Send personalized emails to reconnect. Offer renewals and helpful products.",
            "HIGH",
            3,
        ),
        SegmentPlaybookEntry(
            Segment.LOYAL_CUSTOMERS,
            "Upsell higher value products. Ask for reviews. Engage them.",
            "MEDIUM",
            4,
        ),
        SegmentPlaybookEntry(
            Segment.BIG_SPENDERS,
            "Market your most expensive products. Send VIP treatment offers.",
            "MEDIUM",
            5,
        ),
        SegmentPlaybookEntry(
            Segment.POTENTIAL_LOYALISTS,
            "Offer membership or loyalty programs. Recommend related products.",
            "MEDIUM",
            6,
        ),
        SegmentPlaybookEntry(
            Segment.NEW_CUSTOMERS,
            "Provide on-boarding support, special offers, start building relationship.",
            "MEDIUM",
            7,
        ),
        SegmentPlaybookEntry(
            Segment.HIBERNATING,
            "Offer other relevant products and special discounts. Recreate brand value.",
            "LOW",
            8,
        ),
        SegmentPlaybookEntry(
            Segment.LOST_CUSTOMERS,
            "Revive interest with reach out campaign, ignore otherwise.",
            "LOW",
            8,
        ),
        SegmentPlaybookEntry(
            Segment.OTHERS,
            "Monitor and nurture based on behavior patterns.",
            "LOW",
            8,
        ),
    )
}


def segment_playbook(segments: Iterable[Segment]) -> list[SegmentPlaybookEntry]:
    """Return playbook entries for the given segments, highest priority first."""
    unique = dict.fromkeys(segments)
    return sorted(
        (SEGMENT_PLAYBOOK[segment] for segment in unique),
        key=lambda entry: (entry.rank, entry.segment.value),
    )
