"""Significant-movement detection over one poll's samples.

A sample is a gainer when its percent change is strictly above the threshold,
a loser when strictly below its negative, and unchanged otherwise, so a move
of exactly the threshold is never flagged. Sentiment is read off the whole
sample set: more than 60% gainers is bullish, more than 60% losers bearish.
"""

from typing import Iterable, List

from market_alerts.models.datatypes import Aggregation, Sample

BULLISH = "bullish"
BEARISH = "bearish"
NEUTRAL = "neutral"

SENTIMENT_RATIO = 0.6


def classify(samples: Iterable[Sample], threshold_pct: float) -> Aggregation:
    """
    Partition samples into gainers, losers and unchanged.

    Args:
        samples: Samples in source order.
        threshold_pct: Absolute percent change a move must strictly exceed.

    Returns:
        Aggregation: Partition (input order preserved), sentiment and volume totals.
    """
    gainers: List[Sample] = []
    losers: List[Sample] = []
    unchanged: List[Sample] = []
    total_volume = 0.0

    for sample in samples:
        total_volume += sample.total_traded_volume
        if sample.p_change > threshold_pct:
            gainers.append(sample)
        elif sample.p_change < -threshold_pct:
            losers.append(sample)
        else:
            unchanged.append(sample)

    total = len(gainers) + len(losers) + len(unchanged)
    return Aggregation(
        threshold_pct=threshold_pct,
        gainers=gainers,
        losers=losers,
        unchanged=unchanged,
        sentiment=sentiment_label(len(gainers), len(losers), total),
        total_volume=total_volume,
        avg_volume=total_volume / total if total else 0.0,
    )


def sentiment_label(gainers: int, losers: int, total: int) -> str:
    """Return bullish, bearish or neutral from partition counts. Empty sets are neutral."""
    if total <= 0:
        return NEUTRAL
    if gainers / total > SENTIMENT_RATIO:
        return BULLISH
    if losers / total > SENTIMENT_RATIO:
        return BEARISH
    return NEUTRAL
