import asyncio

from alembic import context

import app.models  # noqa: F401  (registers every table on Base.metadata)
from app.database import Base, get_engine

target_metadata = Base.metadata


def do_run_migrations(connection):
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        version_table="alembic_version",
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online():
    connectable = get_engine()

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    raise Exception("Offline migrations not supported")
else:
    asyncio.run(run_migrations_online())
