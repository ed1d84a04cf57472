from __future__ import annotations

from sqlalchemy import Integer, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from app.core.database import Base


ACCOUNT_NUMBER = ("account_number", 998801)
EXPENSE_NUMBER = ("expense_number", 1001)
TICKET_NUMBER = ("ticket_number", 200001)
QUOTE_NUMBER = ("quote_number", 500001)
INVOICE_NUMBER = ("invoice_number", 700001)
JOURNAL_ENTRY_NUMBER = ("journal_entry_number", 10001)


class SequenceCounter(Base):
    __tablename__ = "sequence_counter"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False)


def next_value(session: Session, sequence: tuple[str, int]) -> int:
    """Return the next number for ``sequence`` and advance the counter.

    The row is locked with ``FOR UPDATE`` on backends that support it; the
    caller's transaction owns the increment.
    """
    name, start = sequence
    counter = session.scalar(select(SequenceCounter).where(SequenceCounter.name == name).with_for_update())
    if counter is None:
        counter = SequenceCounter(name=name, value=start)
        session.add(counter)
        session.flush()
        return start
    counter.value += 1
    session.flush()
    return counter.value
