"""Paycheck engine command line interface.

Provides operational tools for:
- Schema creation
- Reference data seeding and cloning
- Running payroll for a pay period
- Pay stubs and payroll reports

Usage:
    python -m paycheck_engine init-db
    python -m paycheck_engine seed-tax-data --year 2023
    python -m paycheck_engine clone-tax-year --source 2023 --target 2024
    python -m paycheck_engine run-payroll --employer-id X --start 2023-01-01 --end 2023-01-14 --pay-date 2023-01-20
    python -m paycheck_engine pay-stub --entry-id X
    python -m paycheck_engine report --employer-id X --start 2023-01-01 --end 2023-03-31
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date
from typing import Any, Callable, Coroutine
from uuid import UUID

from paycheck_engine.calculators import MissingReferenceDataError
from paycheck_engine.config import Settings, get_settings
from paycheck_engine.database import create_schema, create_session_factory, get_engine
from paycheck_engine.providers import LedgerStubProvider
from paycheck_engine.services import (
    NoEmployeesError,
    PayrollEntryNotCompletedError,
    PayrollEntryNotFoundError,
    PayrollRunService,
    PayStubService,
    ReferenceDataService,
    ReferenceDataValidationError,
    SqlEmployeeDirectory,
    SqlTimeTracking,
)

logger = logging.getLogger(__name__)


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class PaycheckCli:
    """Paycheck engine command line interface."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m paycheck_engine",
            description="Payroll tax withholding and gross/net pay engine",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Override DATABASE_URL",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create database tables")

        seed = subparsers.add_parser("seed-tax-data", help="Load the default tax tables")
        seed.add_argument(
            "--year",
            type=int,
            default=None,
            help="Tax year to seed (default: current year)",
        )

        clone = subparsers.add_parser("clone-tax-year", help="Copy one year's tax tables to another")
        clone.add_argument("--source", type=int, required=True, help="Year to copy from")
        clone.add_argument("--target", type=int, required=True, help="Year to copy to")
        clone.add_argument(
            "--skip",
            type=str,
            default="",
            help="Comma-separated tables to skip (federal,state,fica,allowances)",
        )

        run = subparsers.add_parser(
            "run-payroll",
            help="Process payroll for a pay period",
            description=(
                "Process payroll for a pay period. Direct deposits go to an in-memory "
                "ledger stub and are not persisted."
            ),
        )
        run.add_argument("--employer-id", type=parse_uuid, required=True, help="Employer ID")
        run.add_argument("--start", type=parse_date, required=True, help="Period start (YYYY-MM-DD)")
        run.add_argument("--end", type=parse_date, required=True, help="Period end (YYYY-MM-DD)")
        run.add_argument("--pay-date", type=parse_date, required=True, help="Pay date (YYYY-MM-DD)")
        run.add_argument("--processed-by", type=parse_uuid, help="User running payroll")

        stub = subparsers.add_parser("pay-stub", help="Print the pay stub for an entry")
        stub.add_argument("--entry-id", type=parse_uuid, required=True, help="Payroll entry ID")

        report = subparsers.add_parser("report", help="Print a payroll report")
        report.add_argument("--employer-id", type=parse_uuid, required=True, help="Employer ID")
        report.add_argument("--start", type=parse_date, required=True, help="First pay date")
        report.add_argument("--end", type=parse_date, required=True, help="Last pay date")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], Coroutine[Any, Any, int]]] = {
            "init-db": self._cmd_init_db,
            "seed-tax-data": self._cmd_seed_tax_data,
            "clone-tax-year": self._cmd_clone_tax_year,
            "run-payroll": self._cmd_run_payroll,
            "pay-stub": self._cmd_pay_stub,
            "report": self._cmd_report,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        configure_logging(self.settings)
        return asyncio.run(self._dispatch(handler, parsed))

    async def _dispatch(
        self,
        handler: Callable[[argparse.Namespace], Coroutine[Any, Any, int]],
        args: argparse.Namespace,
    ) -> int:
        self.engine = get_engine(args.database_url or self.settings.database_url)
        self.session_factory = create_session_factory(self.engine)
        try:
            return await handler(args)
        except (
            MissingReferenceDataError,
            NoEmployeesError,
            PayrollEntryNotFoundError,
            PayrollEntryNotCompletedError,
            ReferenceDataValidationError,
        ) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        finally:
            await self.engine.dispose()

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create all tables."""
        await create_schema(self.engine)
        print("Database schema created.")
        return 0

    async def _cmd_seed_tax_data(self, args: argparse.Namespace) -> int:
        """Load default tax tables."""
        service = ReferenceDataService(self.session_factory)
        year = await service.seed_default_tax_data(args.year)
        print(f"Seeded default tax data for {year}.")
        return 0

    async def _cmd_clone_tax_year(self, args: argparse.Namespace) -> int:
        """Copy tax tables between years."""
        skip = {s.strip() for s in args.skip.split(",") if s.strip()}
        service = ReferenceDataService(self.session_factory)
        tables = await service.clone_tax_year(
            args.source,
            args.target,
            federal_brackets="federal" not in skip,
            state_brackets="state" not in skip,
            fica_rates="fica" not in skip,
            tax_allowances="allowances" not in skip,
        )
        print(
            f"Cloned {args.source} -> {args.target}: "
            f"{len(tables.federal_brackets)} federal and "
            f"{len(tables.state_brackets)} state bracket sets"
        )
        return 0

    async def _cmd_run_payroll(self, args: argparse.Namespace) -> int:
        """Process payroll and print per-employee outcomes."""
        logger.warning(
            "Direct deposits use the in-memory ledger stub; no funds are moved or recorded"
        )
        service = PayrollRunService(
            session_factory=self.session_factory,
            directory=SqlEmployeeDirectory(self.session_factory),
            time_tracking=SqlTimeTracking(self.session_factory),
            ledger=LedgerStubProvider(),
            reference_data=ReferenceDataService(self.session_factory),
            settings=self.settings,
        )
        result = await service.process_payroll(
            employer_id=args.employer_id,
            start_date=args.start,
            end_date=args.end,
            pay_date=args.pay_date,
            processed_by=args.processed_by,
        )

        print(f"Payroll {args.start} to {args.end} (tax year {result.tax_year})")
        for success in result.successes:
            print(
                f"  OK    {success.employee_name:<30} "
                f"gross {success.withholding.gross_pay:>12} net {success.net_pay:>12} "
                f"entry {success.payroll_entry_id}"
            )
        for failure in result.errors:
            print(f"  FAIL  {failure.employee_name:<30} [{failure.cause.value}] {failure.error}")

        print(f"\n{len(result.processed_entries)} completed, {len(result.errors)} errors")
        return 0 if not result.errors else 2

    async def _cmd_pay_stub(self, args: argparse.Namespace) -> int:
        """Print a pay stub as JSON."""
        stub = await PayStubService(self.session_factory).generate_pay_stub(args.entry_id)
        print(stub.model_dump_json(indent=2))
        return 0

    async def _cmd_report(self, args: argparse.Namespace) -> int:
        """Print a payroll report as JSON."""
        report = await PayStubService(self.session_factory).generate_payroll_report(
            args.employer_id, args.start, args.end
        )
        print(report.model_dump_json(indent=2))
        return 0


def main() -> int:
    """CLI entry point."""
    cli = PaycheckCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
