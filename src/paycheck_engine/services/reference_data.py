"""Versioned tax reference data: snapshot loading and administration."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable, Sequence
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date
from typing import Any, AsyncIterator

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paycheck_engine.calculators.money import to_decimal
from paycheck_engine.calculators.tax_calculator import MissingReferenceDataError
from paycheck_engine.calculators.types import (
    Allowances,
    BracketRow,
    FicaRates,
    FilingStatus,
    TaxYearTables,
)
from paycheck_engine.models import FicaRate, StateTaxAllowance, TaxAllowance, TaxBracket
from paycheck_engine.schemas import (
    FicaRatesInput,
    StateAllowancesInput,
    TaxAllowancesInput,
    TaxBracketInput,
)

logger = logging.getLogger(__name__)

_BRACKET_LIST = TypeAdapter(list[TaxBracketInput])


class ReferenceDataValidationError(Exception):
    """Raised when reference data input is rejected before any write."""

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or []
        if self.errors:
            message = f"{message}: {'; '.join(self.errors)}"
        super().__init__(message)


def validate_filing_status(filing_status: str) -> str:
    try:
        return FilingStatus(filing_status).value
    except ValueError:
        raise ReferenceDataValidationError(
            f"Unknown filing status '{filing_status}'",
            [f"expected one of {[s.value for s in FilingStatus]}"],
        ) from None


def validate_state_code(state: str) -> str:
    if not isinstance(state, str) or len(state.strip()) != 2 or not state.strip().isalpha():
        raise ReferenceDataValidationError(f"Invalid state code {state!r}")
    return state.strip().upper()


def validate_brackets(brackets: Any) -> list[TaxBracketInput]:
    """Parse and check a bracket set for one (year, jurisdiction, filing status).

    The set must be non-empty, in ascending order, contiguous
    (income_from[n+1] == income_to[n]), and have exactly one open-ended
    bracket, which is last.
    """
    if not isinstance(brackets, (list, tuple)):
        raise ReferenceDataValidationError(
            f"Brackets must be a list, got {type(brackets).__name__}"
        )

    try:
        parsed = _BRACKET_LIST.validate_python(list(brackets))
    except ValidationError as e:
        raise ReferenceDataValidationError(
            "Malformed bracket input",
            [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
        ) from e

    if not parsed:
        raise ReferenceDataValidationError("Bracket set is empty")

    errors: list[str] = []
    open_ended = [i for i, b in enumerate(parsed) if b.income_to is None]
    if len(open_ended) != 1:
        errors.append(f"expected exactly one open-ended bracket, found {len(open_ended)}")
    elif open_ended[0] != len(parsed) - 1:
        errors.append("the open-ended bracket must be last")

    for i, (lower, upper) in enumerate(zip(parsed, parsed[1:]), start=1):
        if lower.income_to is not None and upper.income_from != lower.income_to:
            errors.append(
                f"bracket {i + 1} starts at {upper.income_from}, "
                f"expected {lower.income_to}"
            )

    if errors:
        raise ReferenceDataValidationError("Bracket set is not contiguous", errors)

    return parsed


def _validate_model(model: type, data: Any, label: str):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ReferenceDataValidationError(
            f"Malformed {label} input",
            [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
        ) from e


def _optional_decimal(value: Any):
    return to_decimal(value) if value is not None else None


def _bracket_row(bracket: TaxBracket) -> BracketRow:
    return BracketRow(
        income_from=to_decimal(bracket.income_from),
        income_to=_optional_decimal(bracket.income_to),
        rate=to_decimal(bracket.rate),
        base_amount=to_decimal(bracket.base_amount),  # NULL -> 0
        order=bracket.bracket_order,
    )


def _fica_rates(row: FicaRate) -> FicaRates:
    return FicaRates(
        social_security_rate=to_decimal(row.social_security_rate),
        social_security_wage_cap=to_decimal(row.social_security_wage_cap),
        medicare_rate=to_decimal(row.medicare_rate),
        additional_medicare_rate=to_decimal(row.additional_medicare_rate),
        additional_medicare_threshold=to_decimal(row.additional_medicare_threshold),
        additional_medicare_threshold_joint=_optional_decimal(
            row.additional_medicare_threshold_joint
        ),
    )


def _allowances(row: TaxAllowance | StateTaxAllowance) -> Allowances:
    return Allowances(
        standard_deduction_single=to_decimal(row.standard_deduction_single),
        standard_deduction_joint=to_decimal(row.standard_deduction_joint),
        standard_deduction_head_of_household=to_decimal(row.standard_deduction_head_of_household),
        personal_exemption_amount=to_decimal(row.personal_exemption_amount),
        # State rows carry no phaseout
        phaseout_start=_optional_decimal(getattr(row, "phaseout_start", None)),
        phaseout_end=_optional_decimal(getattr(row, "phaseout_end", None)),
    )


class ReferenceDataService:
    """Reads and administers tax brackets, FICA rates and allowances.

    Every write for a year replaces the stored rows in one transaction and
    holds that year's lock, so a snapshot load for the same year sees the
    data either entirely before or entirely after the write.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._year_locks: dict[int, asyncio.Lock] = {}

    def _lock_for(self, year: int) -> asyncio.Lock:
        lock = self._year_locks.get(year)
        if lock is None:
            lock = self._year_locks[year] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def _locked_years(self, *years: int) -> AsyncIterator[None]:
        # Always acquire in ascending order
        acquired: list[asyncio.Lock] = []
        try:
            for year in sorted(set(years)):
                lock = self._lock_for(year)
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    # === Reads ===

    async def get_tax_data_for_year(self, year: int) -> TaxYearTables:
        """Load an immutable snapshot of one year's reference data."""
        async with self._locked_years(year):
            async with self.session_factory() as session:
                async with session.begin():
                    return await self._load_tables(session, year)

    async def _load_tables(self, session: AsyncSession, year: int) -> TaxYearTables:
        bracket_rows = (
            await session.execute(
                select(TaxBracket)
                .where(TaxBracket.year == year)
                .order_by(
                    TaxBracket.jurisdiction,
                    TaxBracket.filing_status,
                    TaxBracket.bracket_order,
                )
            )
        ).scalars().all()

        federal: dict[str, list[BracketRow]] = defaultdict(list)
        state: dict[tuple[str, str], list[BracketRow]] = defaultdict(list)
        for bracket in bracket_rows:
            if bracket.is_federal:
                federal[bracket.filing_status].append(_bracket_row(bracket))
            else:
                key = (bracket.jurisdiction.upper(), bracket.filing_status)
                state[key].append(_bracket_row(bracket))

        fica = (
            await session.execute(select(FicaRate).where(FicaRate.year == year))
        ).scalar_one_or_none()
        allowance = (
            await session.execute(select(TaxAllowance).where(TaxAllowance.year == year))
        ).scalar_one_or_none()
        state_allowance_rows = (
            await session.execute(select(StateTaxAllowance).where(StateTaxAllowance.year == year))
        ).scalars().all()

        return TaxYearTables(
            year=year,
            federal_brackets={k: tuple(v) for k, v in federal.items()},
            state_brackets={k: tuple(v) for k, v in state.items()},
            fica=_fica_rates(fica) if fica else None,
            allowances=_allowances(allowance) if allowance else None,
            state_allowances={row.state.upper(): _allowances(row) for row in state_allowance_rows},
        )

    async def get_most_recent_tax_year(self) -> int | None:
        """Latest year with federal brackets, else latest year with FICA rates."""
        async with self.session_factory() as session:
            year = (
                await session.execute(
                    select(func.max(TaxBracket.year)).where(TaxBracket.jurisdiction.is_(None))
                )
            ).scalar()
            if year is None:
                year = (await session.execute(select(func.max(FicaRate.year)))).scalar()
        return year

    # === Writes ===

    async def upsert_federal_brackets(
        self, year: int, filing_status: str, brackets: Sequence[Any]
    ) -> int:
        """Replace the federal brackets for (year, filing status). Returns rows written."""
        filing_status = validate_filing_status(filing_status)
        parsed = validate_brackets(brackets)
        async with self._locked_years(year):
            async with self.session_factory() as session:
                async with session.begin():
                    await self._replace_brackets(session, year, None, filing_status, parsed)
        logger.info("Replaced %d federal %s brackets for %s", len(parsed), filing_status, year)
        return len(parsed)

    async def upsert_state_brackets(
        self, state: str, year: int, filing_status: str, brackets: Sequence[Any]
    ) -> int:
        """Replace a state's brackets for (year, filing status). Returns rows written."""
        state = validate_state_code(state)
        filing_status = validate_filing_status(filing_status)
        parsed = validate_brackets(brackets)
        async with self._locked_years(year):
            async with self.session_factory() as session:
                async with session.begin():
                    await self._replace_brackets(session, year, state, filing_status, parsed)
        logger.info(
            "Replaced %d %s %s brackets for %s", len(parsed), state, filing_status, year
        )
        return len(parsed)

    async def upsert_fica_rates(self, year: int, rates: FicaRatesInput | dict[str, Any]) -> None:
        parsed = _validate_model(FicaRatesInput, rates, "FICA rates")
        async with self._locked_years(year):
            async with self.session_factory() as session:
                async with session.begin():
                    await self._write_fica(session, year, parsed)
        logger.info("Stored FICA rates for %s", year)

    async def upsert_tax_allowances(
        self, year: int, allowances: TaxAllowancesInput | dict[str, Any]
    ) -> None:
        parsed = _validate_model(TaxAllowancesInput, allowances, "tax allowances")
        async with self._locked_years(year):
            async with self.session_factory() as session:
                async with session.begin():
                    await self._write_allowances(session, year, parsed)
        logger.info("Stored tax allowances for %s", year)

    async def upsert_state_allowances(
        self, state: str, year: int, allowances: StateAllowancesInput | dict[str, Any]
    ) -> None:
        state = validate_state_code(state)
        parsed = _validate_model(StateAllowancesInput, allowances, "state allowances")
        async with self._locked_years(year):
            async with self.session_factory() as session:
                async with session.begin():
                    await self._write_state_allowances(session, state, year, parsed)
        logger.info("Stored %s allowances for %s", state, year)

    async def clone_tax_year(
        self,
        source_year: int,
        target_year: int,
        *,
        federal_brackets: bool = True,
        state_brackets: bool = True,
        fica_rates: bool = True,
        tax_allowances: bool = True,
    ) -> TaxYearTables:
        """Copy one year's reference data onto another year.

        For each selected table, every bracket set, FICA row or allowance row
        present in the source overwrites the target year's row with the same
        key. Target rows whose key is absent from the source are kept. Runs
        in a single transaction and returns the target year's resulting
        snapshot.
        """
        if source_year == target_year:
            raise ReferenceDataValidationError("Source and target year must differ")

        async with self._locked_years(source_year, target_year):
            async with self.session_factory() as session:
                async with session.begin():
                    source = await self._load_tables(session, source_year)
                    if not source.federal_brackets and source.fica is None and source.allowances is None:
                        raise MissingReferenceDataError("tax data", source_year)

                    if federal_brackets:
                        for status, rows in source.federal_brackets.items():
                            await self._replace_brackets(
                                session, target_year, None, status, _as_inputs(rows)
                            )
                    if state_brackets:
                        for (state, status), rows in source.state_brackets.items():
                            await self._replace_brackets(
                                session, target_year, state, status, _as_inputs(rows)
                            )
                    if fica_rates and source.fica is not None:
                        await self._write_fica(
                            session, target_year, FicaRatesInput(**asdict(source.fica))
                        )
                    if tax_allowances:
                        if source.allowances is not None:
                            await self._write_allowances(
                                session, target_year, TaxAllowancesInput(**asdict(source.allowances))
                            )
                        for state, allowance in source.state_allowances.items():
                            await self._write_state_allowances(
                                session,
                                state,
                                target_year,
                                StateAllowancesInput(
                                    standard_deduction_single=allowance.standard_deduction_single,
                                    standard_deduction_joint=allowance.standard_deduction_joint,
                                    standard_deduction_head_of_household=allowance.standard_deduction_head_of_household,
                                    personal_exemption_amount=allowance.personal_exemption_amount,
                                ),
                            )

                    result = await self._load_tables(session, target_year)

        logger.info("Cloned tax data from %s to %s", source_year, target_year)
        return result

    async def seed_default_tax_data(self, year: int | None = None) -> int:
        """Load the 2023 demo values for the given year (default: current year)."""
        year = year or date.today().year
        for filing_status, brackets in DEFAULT_FEDERAL_BRACKETS.items():
            await self.upsert_federal_brackets(year, filing_status, brackets)
        for (state, filing_status), brackets in DEFAULT_STATE_BRACKETS.items():
            await self.upsert_state_brackets(state, year, filing_status, brackets)
        await self.upsert_fica_rates(year, DEFAULT_FICA_RATES)
        await self.upsert_tax_allowances(year, DEFAULT_TAX_ALLOWANCES)
        logger.info("Seeded default tax data for %s", year)
        return year

    # === Transaction-scoped helpers ===

    async def _replace_brackets(
        self,
        session: AsyncSession,
        year: int,
        jurisdiction: str | None,
        filing_status: str,
        brackets: Iterable[TaxBracketInput],
    ) -> None:
        jurisdiction_match = (
            TaxBracket.jurisdiction.is_(None)
            if jurisdiction is None
            else TaxBracket.jurisdiction == jurisdiction
        )
        await session.execute(
            delete(TaxBracket).where(
                TaxBracket.year == year,
                jurisdiction_match,
                TaxBracket.filing_status == filing_status,
            )
        )
        session.add_all(
            TaxBracket(
                year=year,
                jurisdiction=jurisdiction,
                filing_status=filing_status,
                bracket_order=order,
                income_from=bracket.income_from,
                income_to=bracket.income_to,
                rate=bracket.rate,
                base_amount=bracket.base_amount,
            )
            for order, bracket in enumerate(brackets, start=1)
        )
        await session.flush()

    async def _write_fica(self, session: AsyncSession, year: int, rates: FicaRatesInput) -> None:
        row = (
            await session.execute(select(FicaRate).where(FicaRate.year == year))
        ).scalar_one_or_none()
        if row is None:
            row = FicaRate(year=year)
            session.add(row)
        for name, value in rates.model_dump().items():
            setattr(row, name, value)
        await session.flush()

    async def _write_allowances(
        self, session: AsyncSession, year: int, allowances: TaxAllowancesInput
    ) -> None:
        row = (
            await session.execute(select(TaxAllowance).where(TaxAllowance.year == year))
        ).scalar_one_or_none()
        if row is None:
            row = TaxAllowance(year=year)
            session.add(row)
        for name, value in allowances.model_dump().items():
            setattr(row, name, value)
        await session.flush()

    async def _write_state_allowances(
        self, session: AsyncSession, state: str, year: int, allowances: StateAllowancesInput
    ) -> None:
        row = (
            await session.execute(
                select(StateTaxAllowance).where(
                    StateTaxAllowance.state == state,
                    StateTaxAllowance.year == year,
                )
            )
        ).scalar_one_or_none()
        if row is None:
            row = StateTaxAllowance(state=state, year=year)
            session.add(row)
        for name, value in allowances.model_dump().items():
            setattr(row, name, value)
        await session.flush()


def _as_inputs(rows: Sequence[BracketRow]) -> list[TaxBracketInput]:
    return [
        TaxBracketInput(
            income_from=row.income_from,
            income_to=row.income_to,
            rate=row.rate,
            base_amount=row.base_amount or None,
        )
        for row in rows
    ]


# ============================================================================
# 2023 demo values
# ============================================================================

DEFAULT_FEDERAL_BRACKETS: dict[str, list[dict[str, Any]]] = {
    "single": [
        {"income_from": "0", "income_to": "10275", "rate": "0.10"},
        {"income_from": "10275", "income_to": "41775", "rate": "0.12", "base_amount": "1027.50"},
        {"income_from": "41775", "income_to": "89075", "rate": "0.22", "base_amount": "4807.50"},
        {"income_from": "89075", "income_to": "170050", "rate": "0.24", "base_amount": "15213.50"},
        {"income_from": "170050", "income_to": "215950", "rate": "0.32", "base_amount": "34647.50"},
        {"income_from": "215950", "income_to": "539900", "rate": "0.35", "base_amount": "49335.50"},
        {"income_from": "539900", "income_to": None, "rate": "0.37", "base_amount": "162718.00"},
    ],
    "married_joint": [
        {"income_from": "0", "income_to": "20550", "rate": "0.10"},
        {"income_from": "20550", "income_to": "83550", "rate": "0.12", "base_amount": "2055.00"},
        {"income_from": "83550", "income_to": "178150", "rate": "0.22", "base_amount": "9615.00"},
        {"income_from": "178150", "income_to": "340100", "rate": "0.24", "base_amount": "30427.00"},
        {"income_from": "340100", "income_to": "431900", "rate": "0.32", "base_amount": "69295.00"},
        {"income_from": "431900", "income_to": "647850", "rate": "0.35", "base_amount": "98671.00"},
        {"income_from": "647850", "income_to": None, "rate": "0.37", "base_amount": "174253.50"},
    ],
    "head_of_household": [
        {"income_from": "0", "income_to": "14650", "rate": "0.10"},
        {"income_from": "14650", "income_to": "55900", "rate": "0.12", "base_amount": "1465.00"},
        {"income_from": "55900", "income_to": "89050", "rate": "0.22", "base_amount": "6415.00"},
        {"income_from": "89050", "income_to": "170050", "rate": "0.24", "base_amount": "13708.00"},
        {"income_from": "170050", "income_to": "215950", "rate": "0.32", "base_amount": "33148.00"},
        {"income_from": "215950", "income_to": "539900", "rate": "0.35", "base_amount": "47836.00"},
        {"income_from": "539900", "income_to": None, "rate": "0.37", "base_amount": "161218.50"},
    ],
}

DEFAULT_STATE_BRACKETS: dict[tuple[str, str], list[dict[str, Any]]] = {
    ("CA", "single"): [
        {"income_from": "0", "income_to": "10099", "rate": "0.01"},
        {"income_from": "10099", "income_to": "23942", "rate": "0.02", "base_amount": "100.99"},
        {"income_from": "23942", "income_to": "37788", "rate": "0.04", "base_amount": "377.85"},
        {"income_from": "37788", "income_to": "52455", "rate": "0.06", "base_amount": "931.69"},
        {"income_from": "52455", "income_to": "66295", "rate": "0.08", "base_amount": "1811.71"},
        {"income_from": "66295", "income_to": "338639", "rate": "0.093", "base_amount": "2918.91"},
        {"income_from": "338639", "income_to": "406364", "rate": "0.103", "base_amount": "28246.90"},
        {"income_from": "406364", "income_to": "677275", "rate": "0.113", "base_amount": "35222.58"},
        {"income_from": "677275", "income_to": None, "rate": "0.123", "base_amount": "65835.52"},
    ],
}

DEFAULT_FICA_RATES: dict[str, Any] = {
    "social_security_rate": "0.062",
    "social_security_wage_cap": "160200",
    "medicare_rate": "0.0145",
    "additional_medicare_rate": "0.009",
    "additional_medicare_threshold": "200000",
    "additional_medicare_threshold_joint": "250000",
}

DEFAULT_TAX_ALLOWANCES: dict[str, Any] = {
    "standard_deduction_single": "13850",
    "standard_deduction_joint": "27700",
    "standard_deduction_head_of_household": "20800",
    # Pre-2018 exemption value, kept for withholding purposes
    "personal_exemption_amount": "4050",
    "phaseout_start": "313800",
    "phaseout_end": "436300",
}
