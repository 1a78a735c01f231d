"""
Monthly liquidation engine.

Everything here is pure: inputs are plain dataclasses plus a resolved
`RegulatoryParams`, output is a `LiquidationResult`. Persistence lives in
`liquidation_service`.

Totals are never computed anywhere else. List views, detail views, the payroll
book and the exports all call `compute_totals` on the stored components.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from cl_payroll_api.common.errors import ValidationError
from cl_payroll_api.common.notices import ConfigurationFallbackNotice, ReconciliationWarning
from .money import D, ZERO, round_clp
from .overtime import overtime_amount, validate_hours
from .regulatory_config import RegulatoryParams
from .worked_days import compute_worked_days, PAYROLL_MONTH_DAYS

log = logging.getLogger(__name__)

CONTRACT_TYPES = ("indefinido", "plazo_fijo", "obra_faena")

TAXABLE_FIELDS = (
    "base_salary", "overtime_amount", "bonuses", "commissions",
    "gratification", "legal_gratification",
)
NON_TAXABLE_FIELDS = ("food_allowance", "transport_allowance", "family_allowance")
STATUTORY_DEDUCTION_FIELDS = (
    "pension_amount", "pension_commission_amount", "health_amount",
    "unemployment_amount", "income_tax_amount",
)
OTHER_DEDUCTION_FIELDS = ("loan_deductions", "advance_payments", "voluntary_savings", "other_deductions")
DEDUCTION_FIELDS = STATUTORY_DEDUCTION_FIELDS + OTHER_DEDUCTION_FIELDS
TOTAL_FIELDS = (
    "total_taxable_income", "total_non_taxable_income", "total_gross_income",
    "total_deductions", "net_salary",
)


# ---------- canonical totals ----------

def _amount(source: Any, name: str) -> int:
    if isinstance(source, Mapping):
        v = source.get(name)
    else:
        v = getattr(source, name, None)
    return int(v or 0)


@dataclass(frozen=True)
class Totals:
    total_taxable_income: int
    total_non_taxable_income: int
    total_gross_income: int
    total_deductions: int
    net_salary: int

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def compute_totals(source: Any) -> Totals:
    """Derive every total from the components of a liquidation (model, result or dict)."""
    taxable = sum(_amount(source, f) for f in TAXABLE_FIELDS)
    non_taxable = sum(_amount(source, f) for f in NON_TAXABLE_FIELDS)
    gross = taxable + non_taxable
    deductions = sum(_amount(source, f) for f in DEDUCTION_FIELDS)
    return Totals(
        total_taxable_income=taxable,
        total_non_taxable_income=non_taxable,
        total_gross_income=gross,
        total_deductions=deductions,
        net_salary=gross - deductions,
    )


def reconcile_totals(record: Any, tolerance: int = 1) -> Tuple[Totals, List[ReconciliationWarning]]:
    """
    Recompute totals for a stored record and compare them with what was persisted.
    The recomputed values always win; differences above `tolerance` pesos are reported.
    """
    totals = compute_totals(record)
    warnings: List[ReconciliationWarning] = []
    for name in TOTAL_FIELDS:
        stored = _amount(record, name)
        fresh = getattr(totals, name)
        if abs(fresh - stored) > tolerance:
            warnings.append(ReconciliationWarning(field=name, stored=stored, recomputed=fresh))
    return totals, warnings


# ---------- inputs ----------

@dataclass
class ContractTerms:
    base_salary: int
    contract_type: Optional[str] = None
    weekly_hours: Optional[Decimal] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    termination_reason: Optional[str] = None

    @classmethod
    def from_model(cls, contract) -> "ContractTerms":
        return cls(
            base_salary=int(contract.base_salary or 0),
            contract_type=contract.contract_type,
            weekly_hours=D(contract.weekly_hours) if contract.weekly_hours is not None else None,
            start_date=contract.start_date,
            end_date=contract.end_date,
            termination_reason=contract.termination_reason,
        )


@dataclass
class PayrollSettings:
    pension_fund: Optional[str] = None
    health_provider: Optional[str] = None
    health_plan_uf: Optional[Decimal] = None
    family_fund: Optional[str] = None
    work_accident_insurer: Optional[str] = None
    dependents: int = 0
    family_allowance_bracket: Optional[str] = None
    statutory_gratification: bool = False

    @classmethod
    def from_model(cls, cfg) -> "PayrollSettings":
        if cfg is None:
            return cls()
        return cls(
            pension_fund=cfg.pension_fund,
            health_provider=cfg.health_provider,
            health_plan_uf=D(cfg.health_plan_uf) if cfg.health_plan_uf is not None else None,
            family_fund=cfg.family_fund,
            work_accident_insurer=cfg.work_accident_insurer,
            dependents=int(cfg.dependents or 0),
            family_allowance_bracket=cfg.family_allowance_bracket,
            statutory_gratification=bool(cfg.statutory_gratification),
        )


@dataclass(frozen=True)
class PartialPeriod:
    """Present only when the month was not fully worked."""
    days_worked: int
    sick_leave_days: int = 0
    vacation_days: int = 0

    def __post_init__(self):
        if not 0 <= self.days_worked <= PAYROLL_MONTH_DAYS:
            raise ValidationError("days_worked must be between 0 and 30", fields=["partial.days_worked"])
        if self.sick_leave_days < 0 or self.vacation_days < 0:
            raise ValidationError("leave days must not be negative",
                                  fields=["partial.sick_leave_days", "partial.vacation_days"])
        if self.days_worked + self.sick_leave_days > PAYROLL_MONTH_DAYS:
            raise ValidationError("days_worked plus sick_leave_days exceeds 30",
                                  fields=["partial.days_worked", "partial.sick_leave_days"])

    @classmethod
    def from_dict(cls, d: Optional[Mapping[str, Any]]) -> Optional["PartialPeriod"]:
        if not d:
            return None
        try:
            return cls(
                days_worked=int(d["days_worked"]),
                sick_leave_days=int(d.get("sick_leave_days") or 0),
                vacation_days=int(d.get("vacation_days") or 0),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError("partial period needs an integer days_worked",
                                  fields=["partial.days_worked"]) from e

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


_AMOUNT_INPUTS = (
    "bonuses", "commissions", "gratification", "food_allowance", "transport_allowance",
    "loan_deductions", "advance_payments", "voluntary_savings", "other_deductions",
)


@dataclass
class PeriodInput:
    year: int
    month: int
    overtime_hours: Decimal = ZERO
    bonuses: int = 0
    commissions: int = 0
    gratification: int = 0
    food_allowance: int = 0
    transport_allowance: int = 0
    loan_deductions: int = 0
    advance_payments: int = 0
    voluntary_savings: int = 0
    other_deductions: int = 0
    partial: Optional[PartialPeriod] = None

    @classmethod
    def from_dict(cls, year: int, month: int, d: Optional[Mapping[str, Any]]) -> "PeriodInput":
        d = d or {}
        bad = []
        amounts = {}
        for name in _AMOUNT_INPUTS:
            raw = d.get(name)
            try:
                v = round_clp(raw)
            except (ArithmeticError, ValueError):
                bad.append(name)
                continue
            if v < 0:
                bad.append(name)
            amounts[name] = v
        if bad:
            raise ValidationError("amounts must be non-negative numbers", fields=bad)
        try:
            hours = validate_hours(d.get("overtime_hours"))
        except (ArithmeticError, ValueError) as e:
            raise ValidationError("overtime_hours must be a number", fields=["overtime_hours"]) from e
        return cls(year=year, month=month, overtime_hours=hours,
                   partial=PartialPeriod.from_dict(d.get("partial")), **amounts)

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {name: getattr(self, name) for name in _AMOUNT_INPUTS}
        out["overtime_hours"] = str(self.overtime_hours)
        out["partial"] = self.partial.as_dict() if self.partial else None
        return out


# ---------- output ----------

@dataclass
class EmployerCosts:
    unemployment: int = 0
    work_accident: int = 0
    sis: int = 0

    @property
    def total(self) -> int:
        return self.unemployment + self.work_accident + self.sis


def employer_costs(taxable_income: int, contract_type: str, params: RegulatoryParams,
                   work_accident_rate=None) -> EmployerCosts:
    """Employer-funded contributions. SIS is an employer cost and never touches the worker's deductions."""
    pension_base = min(taxable_income, params.pension_ceiling())
    afc_base = min(taxable_income, params.unemployment_ceiling())
    _, employer_rate = params.unemployment_split(contract_type)
    mutual = D(work_accident_rate) if work_accident_rate is not None else params.work_accident_rate
    return EmployerCosts(
        unemployment=round_clp(afc_base * employer_rate),
        work_accident=round_clp(pension_base * mutual),
        sis=round_clp(pension_base * params.sis_rate),
    )


@dataclass
class LiquidationResult:
    period_year: int
    period_month: int
    days_worked: int
    contract_type: str
    pension_fund: str
    health_provider: str
    family_allowance_bracket: Optional[str]
    dependents: int

    base_salary: int = 0
    overtime_hours: Decimal = ZERO
    overtime_amount: int = 0
    bonuses: int = 0
    commissions: int = 0
    gratification: int = 0
    legal_gratification: int = 0

    food_allowance: int = 0
    transport_allowance: int = 0
    family_allowance: int = 0

    pension_rate: Decimal = ZERO
    pension_amount: int = 0
    pension_commission_rate: Decimal = ZERO
    pension_commission_amount: int = 0
    health_rate: Decimal = ZERO
    health_amount: int = 0
    unemployment_rate: Decimal = ZERO
    unemployment_amount: int = 0
    income_tax_amount: int = 0
    loan_deductions: int = 0
    advance_payments: int = 0
    voluntary_savings: int = 0
    other_deductions: int = 0

    total_taxable_income: int = 0
    total_non_taxable_income: int = 0
    total_gross_income: int = 0
    total_deductions: int = 0
    net_salary: int = 0

    employer: EmployerCosts = field(default_factory=EmployerCosts)
    partial: Optional[PartialPeriod] = None
    calc_meta: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    notices: List[ConfigurationFallbackNotice] = field(default_factory=list)

    def apply_totals(self) -> Totals:
        totals = compute_totals(self)
        for name, value in totals.as_dict().items():
            setattr(self, name, value)
        return totals

    def column_values(self) -> Dict[str, Any]:
        """Values for the persisted liquidation columns."""
        cols = {
            "period_year": self.period_year,
            "period_month": self.period_month,
            "days_worked": self.days_worked,
            "contract_type": self.contract_type,
            "pension_fund": self.pension_fund,
            "health_provider": self.health_provider,
            "family_allowance_bracket": self.family_allowance_bracket,
            "dependents": self.dependents,
            "overtime_hours": self.overtime_hours,
            "pension_rate": self.pension_rate,
            "pension_commission_rate": self.pension_commission_rate,
            "health_rate": self.health_rate,
            "unemployment_rate": self.unemployment_rate,
            "employer_unemployment": self.employer.unemployment,
            "employer_work_accident": self.employer.work_accident,
            "employer_sis": self.employer.sis,
            "partial_period": self.partial.as_dict() if self.partial else None,
            "calc_meta": self.calc_meta,
            "warnings": list(self.warnings),
            "notices": [n.as_dict() for n in self.notices],
        }
        for name in TAXABLE_FIELDS + NON_TAXABLE_FIELDS + DEDUCTION_FIELDS + TOTAL_FIELDS:
            cols[name] = getattr(self, name)
        return cols

    def as_dict(self) -> Dict[str, Any]:
        out = self.column_values()
        for k in ("overtime_hours", "pension_rate", "pension_commission_rate", "health_rate", "unemployment_rate"):
            out[k] = str(out[k])
        out["employer"] = {
            "unemployment": self.employer.unemployment,
            "work_accident": self.employer.work_accident,
            "sis": self.employer.sis,
            "total": self.employer.total,
        }
        return out


# ---------- engine ----------

class LiquidationCalculator:
    def __init__(self, params: RegulatoryParams):
        self.params = params

    def calculate(self, contract: ContractTerms, settings: PayrollSettings, period: PeriodInput,
                  work_accident_rate=None) -> LiquidationResult:
        p = self.params
        self._validate(contract, period)
        notices: List[ConfigurationFallbackNotice] = []
        warnings: List[str] = []

        contract_type = self._contract_type(contract, notices)
        fund = self._pension_fund(settings, notices)
        provider = self._health_provider(settings, notices)

        if period.partial is not None:
            days = period.partial.days_worked
        else:
            days = compute_worked_days(contract.start_date, period.year, period.month)

        r = LiquidationResult(
            period_year=period.year,
            period_month=period.month,
            days_worked=days,
            contract_type=contract_type,
            pension_fund=fund,
            health_provider=provider,
            family_allowance_bracket=settings.family_allowance_bracket,
            dependents=int(settings.dependents or 0),
            partial=period.partial,
        )

        # taxable earnings
        if days < PAYROLL_MONTH_DAYS:
            r.base_salary = round_clp(D(contract.base_salary) * days / PAYROLL_MONTH_DAYS)
        else:
            r.base_salary = int(contract.base_salary)
        r.overtime_hours = period.overtime_hours
        r.overtime_amount = overtime_amount(
            period.overtime_hours, contract.base_salary, contract.weekly_hours,
            p.overtime_factors, p.default_weekly_hours,
        )
        r.bonuses = period.bonuses
        r.commissions = period.commissions
        r.gratification = period.gratification
        if settings.statutory_gratification:
            r.legal_gratification = min(round_clp(p.gratification_rate * r.base_salary), p.gratification_cap())
            if period.gratification:
                warnings.append("manual gratification ignored: statutory gratification is enabled")
                r.gratification = 0
        taxable = sum(getattr(r, f) for f in TAXABLE_FIELDS)

        # non taxable earnings
        r.food_allowance = period.food_allowance
        r.transport_allowance = period.transport_allowance
        r.family_allowance = self._family_allowance(r, settings, taxable, warnings)

        # statutory deductions
        pension_base = min(taxable, p.pension_ceiling())
        if taxable > pension_base:
            warnings.append(f"taxable income capped at pension ceiling {pension_base}")
        commission = p.fund_commission(fund) or ZERO
        r.pension_rate = p.pension_rate
        r.pension_amount = round_clp(pension_base * p.pension_rate)
        r.pension_commission_rate = commission
        r.pension_commission_amount = round_clp(pension_base * commission)

        health_base = min(taxable, p.health_ceiling())
        statutory_health = round_clp(health_base * p.health_rate)
        r.health_rate = p.health_rate
        r.health_amount = statutory_health
        if settings.health_plan_uf and not p.is_public_health(provider):
            plan = round_clp(D(settings.health_plan_uf) * p.uf)
            r.health_amount = max(statutory_health, plan)

        afc_base = min(taxable, p.unemployment_ceiling())
        worker_rate, _ = p.unemployment_split(contract_type)
        r.unemployment_rate = worker_rate
        r.unemployment_amount = round_clp(afc_base * worker_rate)

        # only the statutory 7% of health is deductible for income tax
        tax_base = max(0, taxable - r.pension_amount - r.pension_commission_amount
                       - statutory_health - r.unemployment_amount)
        r.income_tax_amount = self.income_tax(tax_base)

        r.loan_deductions = period.loan_deductions
        r.advance_payments = period.advance_payments
        r.voluntary_savings = period.voluntary_savings
        r.other_deductions = period.other_deductions

        totals = r.apply_totals()
        limit = round_clp(totals.total_gross_income * p.max_deduction_pct)
        if totals.total_deductions > limit:
            warnings.append(
                f"deductions {totals.total_deductions} exceed {p.max_deduction_pct * 100:.0f}% of gross income"
            )
        if totals.net_salary < 0:
            warnings.append("net salary is negative")

        r.employer = employer_costs(taxable, contract_type, p, work_accident_rate)
        r.calc_meta = dict(p.snapshot(), tax_base=tax_base, pension_base=pension_base,
                           health_base=health_base, unemployment_base=afc_base)
        r.warnings = warnings
        r.notices = notices
        for n in notices:
            log.warning("liquidation %04d-%02d: %s", period.year, period.month, n.message)
        return r

    def income_tax(self, tax_base: int) -> int:
        p = self.params
        if tax_base <= 0:
            return 0
        bracket = p.tax_bracket(D(tax_base) / p.utm)
        return max(0, round_clp(D(tax_base) * bracket.rate - bracket.rebate_utm * p.utm))

    # ---------- helpers ----------
    @staticmethod
    def _validate(contract: ContractTerms, period: PeriodInput):
        bad = []
        if contract.base_salary is None or int(contract.base_salary) < 0:
            bad.append("base_salary")
        if not 1 <= int(period.month) <= 12:
            bad.append("month")
        if contract.contract_type and contract.contract_type not in CONTRACT_TYPES:
            bad.append("contract_type")
        if bad:
            raise ValidationError("invalid liquidation input", fields=bad)

    def _contract_type(self, contract: ContractTerms, notices) -> str:
        if contract.contract_type:
            return contract.contract_type
        default = self.params.default_contract_type
        notices.append(ConfigurationFallbackNotice(
            setting="contract_type", default_used=default,
            message=f"contract type not set; unemployment insurance computed as {default}",
        ))
        return default

    def _pension_fund(self, settings: PayrollSettings, notices) -> str:
        p = self.params
        fund = (settings.pension_fund or "").strip().upper()
        if fund and p.fund_commission(fund) is not None:
            return fund
        notices.append(ConfigurationFallbackNotice(
            setting="pension_fund", default_used=p.default_pension_fund,
            message=(f"pension fund {settings.pension_fund!r} unknown" if fund else "pension fund not set")
            + f"; using {p.default_pension_fund}",
        ))
        return p.default_pension_fund

    def _health_provider(self, settings: PayrollSettings, notices) -> str:
        provider = (settings.health_provider or "").strip().upper()
        if provider:
            return provider
        default = self.params.default_health_provider
        notices.append(ConfigurationFallbackNotice(
            setting="health_provider", default_used=default,
            message=f"health provider not set; using {default}",
        ))
        return default

    def _family_allowance(self, r: LiquidationResult, settings: PayrollSettings, taxable: int, warnings) -> int:
        p = self.params
        if r.dependents <= 0:
            return 0
        bracket = p.family_bracket(settings.family_allowance_bracket) if settings.family_allowance_bracket else None
        if bracket is None:
            bracket = p.family_bracket_for_income(taxable)
            warnings.append(f"family allowance bracket derived from income: {bracket.bracket}")
            r.family_allowance_bracket = bracket.bracket
        return bracket.amount * r.dependents
