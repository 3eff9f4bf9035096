"""Document number allocation for quotes and invoices.

Numbers look like ``QT-0042``: a prefix, a dash and a counter zero padded to
four digits (wider counters are kept whole, ``QT-10000``). The next counter is
derived from the highest existing number, then probed for existence a few
times to step over numbers claimed by concurrent requests. The unique index on
the number column is the real guard; :func:`insert_with_number` retries the
insert when that index rejects a row.
"""

import logging
import re
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from pyra_workspace.exceptions import SequenceExhaustedError
from pyra_workspace.services.settings_service import SettingsService

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
PAD_WIDTH = 4
INSERT_ATTEMPTS = 3
SCAN_BATCH_SIZE = 50

# Settings key and built-in prefix per document type
DOCUMENT_PREFIXES = {
    "quote": ("quote_prefix", "QT"),
    "invoice": ("invoice_prefix", "INV"),
}

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
_COUNTER = re.compile(r"[0-9]+")

T = TypeVar("T")


def format_number(prefix: str, value: int) -> str:
    """Format ``value`` as ``{prefix}-NNNN``."""
    return f"{prefix}-{str(value).zfill(PAD_WIDTH)}"


def to_base36(value: int) -> str:
    """Lowercase base-36 rendering of a non-negative integer."""
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def fallback_number(prefix: str, now_ms: Optional[int] = None) -> str:
    """Timestamp-based number used once every counter probe has collided."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    return f"{prefix}-{to_base36(now_ms)}"


def parse_counter(number: str, prefix: str) -> Optional[int]:
    """Counter of a padded number, or None for fallback-style numbers."""
    head = f"{prefix}-"
    if not number.startswith(head):
        return None
    suffix = number[len(head):]
    if not _COUNTER.fullmatch(suffix):
        return None
    return int(suffix)


async def resolve_prefix(db: AsyncSession, doc_type: str, prefix: Optional[str] = None) -> str:
    """Pick the prefix for a document type: explicit, then settings, then built-in."""
    if prefix:
        return prefix
    setting_key, default = DOCUMENT_PREFIXES[doc_type]
    configured = await SettingsService.get(db, setting_key, default=default)
    return (configured or default).strip() or default


async def _last_counter(db: AsyncSession, column: InstrumentedAttribute, prefix: str) -> int:
    """Highest counter in use for ``prefix``, 0 when the series is empty.

    Rows are ordered by length first, then by value. A plain descending
    string sort would rank ``QT-9999`` above ``QT-10000`` and restart the
    series after 9999, so keep the length key. Fallback numbers are skipped.
    """
    pattern = f"{prefix}-%"
    offset = 0
    while True:
        result = await db.execute(
            select(column)
            .where(column.like(pattern))
            .order_by(func.length(column).desc(), column.desc())
            .offset(offset)
            .limit(SCAN_BATCH_SIZE)
        )
        numbers = result.scalars().all()
        for number in numbers:
            counter = parse_counter(number, prefix)
            if counter is not None:
                return counter
        if len(numbers) < SCAN_BATCH_SIZE:
            return 0
        offset += SCAN_BATCH_SIZE


async def _number_exists(db: AsyncSession, column: InstrumentedAttribute, number: str) -> bool:
    result = await db.execute(select(column).where(column == number).limit(1))
    return result.first() is not None


async def generate_next_number(db: AsyncSession, column: InstrumentedAttribute, prefix: str) -> str:
    """Return a number for ``prefix`` that did not exist when checked.

    Args:
        db: Database session
        column: Number column of the document table (``Quote.quote_number``)
        prefix: Series prefix, already resolved by the caller

    Returns:
        ``{prefix}-NNNN`` or, after ``MAX_ATTEMPTS`` collisions, a
        timestamp-based ``{prefix}-{base36 ms}``
    """
    next_value = await _last_counter(db, column, prefix) + 1

    for attempt in range(MAX_ATTEMPTS):
        candidate = format_number(prefix, next_value + attempt)
        if not await _number_exists(db, column, candidate):
            return candidate
        logger.debug(f"Document number {candidate} already taken (attempt {attempt + 1})")

    fallback = fallback_number(prefix)
    logger.warning(
        f"Document numbers {format_number(prefix, next_value)}.."
        f"{format_number(prefix, next_value + MAX_ATTEMPTS - 1)} all taken, using {fallback}"
    )
    return fallback


async def insert_with_number(
    db: AsyncSession,
    column: InstrumentedAttribute,
    prefix: str,
    build: Callable[[str], T],
) -> T:
    """Allocate a number, build the row and commit, retrying on unique violations.

    Args:
        db: Database session
        column: Unique number column
        prefix: Series prefix
        build: Called with the allocated number, returns the (not yet
            added) ORM object

    Raises:
        SequenceExhaustedError: Every insert attempt hit the unique index
    """
    for attempt in range(INSERT_ATTEMPTS):
        number = await generate_next_number(db, column, prefix)
        obj = build(number)
        db.add(obj)
        try:
            await db.commit()
            return obj
        except IntegrityError as e:
            await db.rollback()
            if column.key not in str(e.orig):
                raise
            logger.warning(
                f"Number {number} was claimed concurrently, retrying insert "
                f"({attempt + 1}/{INSERT_ATTEMPTS})"
            )

    raise SequenceExhaustedError(prefix, INSERT_ATTEMPTS)
