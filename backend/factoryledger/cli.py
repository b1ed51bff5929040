"""Management CLI.

Usage:
    python -m factoryledger.cli create-tables    # Create every table (dev / first boot)
    python -m factoryledger.cli check-ledger     # Reconcile accounts vs lots and ledger
"""

import asyncio
import json
import sys

from factoryledger.database import Base, async_session, engine
from factoryledger.services.reconciliation import run_checks

import factoryledger.models  # noqa: F401  (register tables on Base.metadata)


async def create_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    print(f"Created {len(Base.metadata.tables)} table(s).")


async def check_ledger() -> int:
    async with async_session() as db:
        report = await run_checks(db)
    await engine.dispose()

    print(json.dumps(report, indent=2))
    if report["ok"]:
        print("All accounts reconcile.")
        return 0
    print(
        f"{len(report['lot_convergence'])} lot mismatch(es), "
        f"{len(report['ledger_balance'])} ledger mismatch(es)."
    )
    return 1


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "create-tables":
        asyncio.run(create_tables())
    elif cmd == "check-ledger":
        sys.exit(asyncio.run(check_ledger()))
    else:
        print("Usage: python -m factoryledger.cli [create-tables|check-ledger]")
