"""Withholding calculation against a year's reference data snapshot."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from decimal import Decimal
from typing import TYPE_CHECKING

from paycheck_engine.calculators.money import ZERO, clamp_non_negative, round_to_cents
from paycheck_engine.calculators.types import (
    Allowances,
    BracketRow,
    FicaRates,
    FilingStatus,
    IncomeTaxResult,
    StateMethod,
    TaxProfile,
    TaxYearTables,
    WithholdingResult,
    YtdTotals,
)

if TYPE_CHECKING:
    from paycheck_engine.config import Settings

logger = logging.getLogger(__name__)


class MissingReferenceDataError(Exception):
    """Raised when required reference data is not loaded for the tax year."""

    def __init__(self, data_name: str, year: int, detail: str | None = None):
        self.data_name = data_name
        self.year = year
        self.detail = detail
        msg = f"No {data_name} found for tax year {year}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class WithholdingCalculator:
    """Computes federal, state, FICA and local withholding for one check.

    Income tax uses the annualized percentage method:
        annualized = (gross - pre_tax) * periods
                     - standard_deduction - personal_exemption * allowances
        annual_tax = bracket.base_amount + (annualized - bracket.income_from) * bracket.rate
        per_check  = annual_tax / periods + additional_withholding

    Annualizing the whole check and subtracting annual deductions is the same
    as subtracting per-period deductions and then annualizing, without
    dividing the deduction by the period count first.

    Each component is clamped at zero and rounded to the cent once. Net pay
    is gross minus the rounded components and is not clamped.
    """

    def __init__(
        self,
        periods_per_year: int = 26,
        no_income_tax_states: frozenset[str] = frozenset(),
        state_flat_rate_fallback: Decimal = Decimal("0.05"),
        additional_medicare_filing_status_aware: bool = False,
    ):
        if periods_per_year <= 0:
            raise ValueError("periods_per_year must be positive")
        self.periods_per_year = periods_per_year
        self.periods = Decimal(periods_per_year)
        self.no_income_tax_states = frozenset(s.upper() for s in no_income_tax_states)
        self.state_flat_rate_fallback = state_flat_rate_fallback
        self.additional_medicare_filing_status_aware = additional_medicare_filing_status_aware

    @classmethod
    def from_settings(cls, settings: Settings) -> WithholdingCalculator:
        return cls(
            periods_per_year=settings.periods_per_year,
            no_income_tax_states=settings.no_income_tax_states,
            state_flat_rate_fallback=settings.state_flat_rate_fallback,
            additional_medicare_filing_status_aware=settings.additional_medicare_filing_status_aware,
        )

    def calculate(
        self,
        gross_pay: Decimal,
        profile: TaxProfile,
        tables: TaxYearTables,
        ytd: YtdTotals | None = None,
        pre_tax_deductions: Decimal = ZERO,
    ) -> WithholdingResult:
        """Calculate every withholding component for one check.

        Args:
            gross_pay: Gross pay for this check
            profile: Employee tax elections for the tax year
            tables: Reference data snapshot for the tax year
            ytd: Totals from the employee's prior completed checks this year
            pre_tax_deductions: Amount excluded from income tax wages

        Raises:
            MissingReferenceDataError: If a needed table is absent
        """
        ytd = ytd or YtdTotals()

        federal = self.calculate_federal(gross_pay, profile, tables, pre_tax_deductions)
        state = self.calculate_state(gross_pay, profile, tables, pre_tax_deductions)

        if tables.fica is None:
            raise MissingReferenceDataError("FICA rates", tables.year)

        ss_taxable, ss_withholding = self.calculate_social_security(
            gross_pay, ytd.gross_pay, tables.fica
        )
        (
            medicare_taxable,
            additional_taxable,
            additional_withholding,
            medicare_withholding,
        ) = self.calculate_medicare(gross_pay, ytd.gross_pay, tables.fica, profile.filing_status)

        result = WithholdingResult(
            gross_pay=gross_pay,
            filing_status=profile.filing_status,
            federal=federal,
            state=state,
            state_code=profile.withholding_state,
            social_security_taxable=ss_taxable,
            social_security_withholding=ss_withholding,
            medicare_taxable=medicare_taxable,
            additional_medicare_taxable=additional_taxable,
            additional_medicare_withholding=additional_withholding,
            medicare_withholding=medicare_withholding,
            local_withholding=self.calculate_local(gross_pay, profile),
        )

        if result.net_pay < 0:
            logger.warning(
                "Withholding %s exceeds gross pay %s for employee %s",
                result.total_withholding,
                gross_pay,
                profile.employee_id,
            )

        return result

    # === Income tax ===

    def calculate_federal(
        self,
        gross_pay: Decimal,
        profile: TaxProfile,
        tables: TaxYearTables,
        pre_tax_deductions: Decimal = ZERO,
    ) -> IncomeTaxResult:
        """Federal income tax withholding for one check."""
        if profile.exempt_from_federal_tax:
            return IncomeTaxResult.zero()

        if tables.allowances is None:
            raise MissingReferenceDataError("federal tax allowances", tables.year)

        brackets = tables.federal_brackets_for(profile.filing_status)
        if not brackets:
            raise MissingReferenceDataError(
                "federal tax brackets", tables.year, f"filing status {profile.filing_status}"
            )

        annualized = self.annualize_taxable_income(
            gross_pay,
            pre_tax_deductions,
            tables.allowances,
            profile.filing_status,
            profile.allowances,
        )
        annual_tax = self.annual_tax(annualized, brackets)
        per_check = annual_tax / self.periods + profile.additional_withholding

        return IncomeTaxResult(
            taxable_income=annualized / self.periods,
            annualized_income=annualized,
            annual_tax=annual_tax,
            withholding=round_to_cents(clamp_non_negative(per_check)),
        )

    def calculate_state(
        self,
        gross_pay: Decimal,
        profile: TaxProfile,
        tables: TaxYearTables,
        pre_tax_deductions: Decimal = ZERO,
    ) -> IncomeTaxResult:
        """State income tax withholding for one check.

        Uses the state's own allowances when loaded, otherwise the federal
        allowances as a proxy. With no brackets for the state and filing
        status, a flat approximate rate is applied to the per-check taxable
        income.
        """
        state = profile.withholding_state
        if state is None:
            return IncomeTaxResult.zero(StateMethod.NO_STATE.value)
        if state in self.no_income_tax_states:
            return IncomeTaxResult.zero(StateMethod.NO_INCOME_TAX.value)
        if profile.exempt_from_state_tax:
            return IncomeTaxResult.zero(StateMethod.EXEMPT.value)

        allowances = tables.state_allowances.get(state) or tables.allowances
        if allowances is None:
            raise MissingReferenceDataError("state tax allowances", tables.year, state)

        annualized = self.annualize_taxable_income(
            gross_pay,
            pre_tax_deductions,
            allowances,
            profile.filing_status,
            profile.allowances,
        )
        taxable = annualized / self.periods

        brackets = tables.state_brackets_for(state, profile.filing_status)
        if not brackets:
            logger.warning(
                "No %s brackets for %s/%s; using flat %s approximation",
                state,
                tables.year,
                profile.filing_status,
                self.state_flat_rate_fallback,
            )
            return IncomeTaxResult(
                taxable_income=taxable,
                annualized_income=annualized,
                annual_tax=annualized * self.state_flat_rate_fallback,
                withholding=round_to_cents(
                    clamp_non_negative(taxable * self.state_flat_rate_fallback)
                ),
                method=StateMethod.FLAT_RATE_FALLBACK.value,
            )

        annual_tax = self.annual_tax(annualized, brackets)
        return IncomeTaxResult(
            taxable_income=taxable,
            annualized_income=annualized,
            annual_tax=annual_tax,
            withholding=round_to_cents(clamp_non_negative(annual_tax / self.periods)),
        )

    def annualize_taxable_income(
        self,
        gross_pay: Decimal,
        pre_tax_deductions: Decimal,
        allowances: Allowances,
        filing_status: str,
        allowance_count: int,
    ) -> Decimal:
        """Annual taxable income implied by one check, floored at zero."""
        annual_deductions = (
            allowances.standard_deduction_for(filing_status)
            + allowances.personal_exemption_amount * allowance_count
        )
        annualized = (gross_pay - pre_tax_deductions) * self.periods - annual_deductions
        return clamp_non_negative(annualized)

    @staticmethod
    def select_bracket(amount: Decimal, brackets: Sequence[BracketRow]) -> BracketRow | None:
        """Pick the bracket for an annual amount.

        A bracket matches when income_from <= amount < income_to (open top).
        If nothing matches, the highest bracket starting at or below the
        amount is used, which covers amounts above every range. Amounts below
        the first bracket get None.
        """
        ordered = sorted(brackets, key=lambda b: (b.order, b.income_from))
        for bracket in ordered:
            if bracket.contains(amount):
                return bracket

        candidates = [b for b in ordered if b.income_from <= amount]
        return candidates[-1] if candidates else None

    @classmethod
    def annual_tax(cls, annualized: Decimal, brackets: Sequence[BracketRow]) -> Decimal:
        """Annual tax for an annualized income (full precision)."""
        bracket = cls.select_bracket(annualized, brackets)
        if bracket is None:
            return ZERO
        tax = bracket.base_amount + (annualized - bracket.income_from) * bracket.rate
        return clamp_non_negative(tax)

    # === FICA ===

    def calculate_social_security(
        self,
        gross_pay: Decimal,
        ytd_gross: Decimal,
        fica: FicaRates,
    ) -> tuple[Decimal, Decimal]:
        """Return (taxable wages, withholding) honoring the annual wage cap."""
        remaining_cap = fica.social_security_wage_cap - ytd_gross
        taxable = clamp_non_negative(min(gross_pay, remaining_cap))
        return taxable, round_to_cents(taxable * fica.social_security_rate)

    def additional_medicare_threshold(self, fica: FicaRates, filing_status: str) -> Decimal:
        if (
            self.additional_medicare_filing_status_aware
            and filing_status == FilingStatus.MARRIED_JOINT
            and fica.additional_medicare_threshold_joint is not None
        ):
            return fica.additional_medicare_threshold_joint
        return fica.additional_medicare_threshold

    def calculate_medicare(
        self,
        gross_pay: Decimal,
        ytd_gross: Decimal,
        fica: FicaRates,
        filing_status: str,
    ) -> tuple[Decimal, Decimal, Decimal, Decimal]:
        """Return (taxable, additional taxable, additional withholding, total withholding).

        Only the slice of this check that lies above the threshold, and was
        not already above it before this check, is taxed at the additional
        rate.
        """
        taxable = clamp_non_negative(gross_pay)
        threshold = self.additional_medicare_threshold(fica, filing_status)

        cumulative = ytd_gross + taxable
        additional_taxable = clamp_non_negative(cumulative - max(ytd_gross, threshold))

        base = taxable * fica.medicare_rate
        additional = additional_taxable * fica.additional_medicare_rate

        return (
            taxable,
            additional_taxable,
            round_to_cents(additional),
            round_to_cents(base + additional),
        )

    # === Local ===

    def calculate_local(self, gross_pay: Decimal, profile: TaxProfile) -> Decimal:
        if profile.exempt_from_local_tax:
            return ZERO
        return round_to_cents(clamp_non_negative(gross_pay * profile.local_tax_rate))
