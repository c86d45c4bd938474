# services/seeder.py
from __future__ import annotations

from passlib.context import CryptContext
from tortoise.transactions import in_transaction

from models import User, YearlyRate
from services import config
from services.money import euros_to_cents

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


async def seed_if_empty(logger=print):
    users_count = await User.all().count()
    rates_count = await YearlyRate.all().count()

    logger(f"[seed] counts => users={users_count}, yearly_rates={rates_count}")

    if users_count and rates_count:
        logger("[seed] already populated - skipping.")
        return

    created = {"users": 0, "yearly_rates": 0}
    skipped = {"yearly_rates": 0}

    async with in_transaction():
        # -------------------
        # Admin user
        # -------------------
        if not users_count:
            await User.create(
                username=config.ADMIN_USERNAME,
                email=config.ADMIN_EMAIL,
                hashed_password=pwd_context.hash(config.ADMIN_PASSWORD),
                role="admin",
            )
            created["users"] += 1

        # -------------------
        # Standard yearly rates
        # -------------------
        for year, amount in sorted(config.DEFAULT_RATES.items()):
            try:
                cents = euros_to_cents(float(amount))
            except ValueError:
                logger(f"[seed] bad default rate for {year}: {amount!r}")
                skipped["yearly_rates"] += 1
                continue
            _, was_created = await YearlyRate.get_or_create(
                year=year, defaults={"importe_cents": cents, "updated_by": "seed"}
            )
            if was_created:
                created["yearly_rates"] += 1
            else:
                skipped["yearly_rates"] += 1

    logger(f"[seed] created={created} skipped={skipped}")
