from sqlalchemy import select
from sqlalchemy.engine import Engine

from expense_tracker.db import currencies, store_errors
from expense_tracker.schemas import CurrencyResponse


def list_currencies(engine: Engine) -> list[CurrencyResponse]:
    with store_errors("Failed to fetch currencies"):
        with engine.connect() as conn:
            rows = conn.execute(
                select(currencies)
                .where(currencies.c.active.is_(True))
                .order_by(currencies.c.code.asc())
            ).mappings().all()
    return [
        CurrencyResponse(
            id=row["id"],
            code=row["code"],
            description=row["description"],
            active=row["active"],
        )
        for row in rows
    ]
