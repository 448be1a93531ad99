import os
import sys
import asyncio

# Needed to import core and models when run as a script
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.db import Base, engine
from core.procedures import install_procedures
import models  # noqa: F401  registers the tables on Base.metadata


async def init_db(with_procedures: bool = True):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("Tables created")

    if with_procedures and engine.dialect.name == "postgresql":
        await install_procedures(engine)
        print("Server-side functions installed")

    await engine.dispose()

if __name__ == "__main__":
    asyncio.run(init_db(with_procedures="--no-procedures" not in sys.argv))
