"""
Client order id generation.

Ids are deterministic for a given intent (symbol, side, purpose, level,
time, sequence) and short enough for exchange client-id limits.
"""

import hashlib
import itertools

_sequence = itertools.count(1)

PREFIX_QUOTE = "hhq"
PREFIX_TAKE_PROFIT = "hht"
PREFIX_REPLACE = "hhr"


def make_client_order_id(
    *,
    prefix: str,
    symbol: str,
    side: str,
    level: int,
    intent_ms: int,
    seq: int,
) -> str:
    raw = "|".join([prefix, symbol, side, str(int(level)), str(int(intent_ms)), str(int(seq))])
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:24]
    return f"{prefix}_{digest}"


def next_client_order_id(*, prefix: str, symbol: str, side: str, level: int, intent_ms: int) -> str:
    """Generate a fresh id using the process-wide sequence counter."""
    return make_client_order_id(
        prefix=prefix,
        symbol=symbol,
        side=side,
        level=level,
        intent_ms=intent_ms,
        seq=next(_sequence),
    )
