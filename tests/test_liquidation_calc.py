from datetime import date
from decimal import Decimal

import pytest

from cl_payroll_api.common.errors import ValidationError
from cl_payroll_api.services.liquidation_calc import (
    ContractTerms, LiquidationCalculator, PartialPeriod, PayrollSettings, PeriodInput,
    compute_totals, employer_costs, reconcile_totals,
)
from cl_payroll_api.services.regulatory_config import bundled_params


@pytest.fixture(scope="module")
def params():
    return bundled_params()


@pytest.fixture(scope="module")
def calc(params):
    return LiquidationCalculator(params)


def _contract(base=529000, ctype="plazo_fijo", **kw):
    kw.setdefault("weekly_hours", Decimal("44"))
    kw.setdefault("start_date", date(2024, 1, 1))
    return ContractTerms(base_salary=base, contract_type=ctype, **kw)


def _settings(**kw):
    kw.setdefault("pension_fund", "HABITAT")
    kw.setdefault("health_provider", "FONASA")
    kw.setdefault("statutory_gratification", True)
    return PayrollSettings(**kw)


def _run(calc, contract=None, settings=None, inputs=None, year=2025, month=8):
    return calc.calculate(contract or _contract(), settings or _settings(),
                          PeriodInput.from_dict(year, month, inputs))


def test_minimum_wage_fixed_term_reference_case(calc):
    r = _run(calc)
    assert r.days_worked == 30
    assert r.base_salary == 529000
    assert r.legal_gratification == 132250
    assert r.total_taxable_income == 661250
    assert r.total_gross_income == 661250
    assert r.pension_amount == 66125
    assert r.pension_commission_amount == 8398
    assert r.health_amount == 46288
    assert r.unemployment_amount == 0
    assert r.income_tax_amount == 0
    assert r.total_deductions == 120811
    assert r.net_salary == 540439
    assert r.notices == []


def test_totals_are_derived_from_components(calc):
    r = _run(calc, inputs={"bonuses": 50000, "food_allowance": 40000, "loan_deductions": 10000})
    t = compute_totals(r)
    assert t.total_gross_income == t.total_taxable_income + t.total_non_taxable_income
    assert t.net_salary == t.total_gross_income - t.total_deductions
    assert (r.total_gross_income, r.total_deductions, r.net_salary) == (
        t.total_gross_income, t.total_deductions, t.net_salary)
    assert r.total_non_taxable_income == 40000


def test_sis_is_employer_only(calc):
    r = _run(calc)
    assert r.employer.sis == 12432
    assert r.employer.unemployment == 19838
    assert r.employer.work_accident == 6150
    worker_side = (r.pension_amount + r.pension_commission_amount + r.health_amount
                   + r.unemployment_amount + r.income_tax_amount)
    assert r.total_deductions == worker_side


def test_company_work_accident_rate_overrides_default(params):
    costs = employer_costs(661250, "plazo_fijo", params, Decimal("0.0195"))
    assert costs.work_accident == 12894
    assert costs.total == costs.unemployment + costs.work_accident + costs.sis


def test_gratification_capped(calc, params):
    r = _run(calc, contract=_contract(base=1_000_000, ctype="indefinido"))
    assert r.legal_gratification == params.gratification_cap() == 209396


def test_manual_gratification_ignored_when_statutory(calc):
    r = _run(calc, inputs={"gratification": 90000})
    assert r.gratification == 0
    assert any("manual gratification" in w for w in r.warnings)


def test_manual_gratification_kept_without_statutory(calc):
    r = _run(calc, settings=_settings(statutory_gratification=False), inputs={"gratification": 90000})
    assert r.gratification == 90000
    assert r.legal_gratification == 0


def test_pension_ceiling_applies(calc, params):
    r = _run(calc, contract=_contract(base=5_000_000, ctype="indefinido"),
             settings=_settings(statutory_gratification=False))
    ceiling = params.pension_ceiling()
    assert ceiling == 3457834
    assert r.pension_amount == 345783
    # unemployment insurance has its own, higher ceiling
    assert r.unemployment_amount == 30000
    assert any("pension ceiling" in w for w in r.warnings)


def test_indefinite_contract_pays_worker_unemployment(calc):
    r = _run(calc, contract=_contract(ctype="indefinido"))
    assert r.unemployment_rate == Decimal("0.006")
    assert r.unemployment_amount == 3968  # 661250 * 0.006 = 3967.5


def test_isapre_plan_above_statutory(calc):
    r = _run(calc, settings=_settings(health_provider="COLMENA", health_plan_uf=Decimal("4.5")))
    assert r.health_amount == 177224
    # the plan excess does not reduce the tax base
    assert r.calc_meta["tax_base"] == 661250 - 66125 - 8398 - 46288


def test_fonasa_ignores_plan(calc):
    r = _run(calc, settings=_settings(health_plan_uf=Decimal("4.5")))
    assert r.health_amount == 46288


def test_income_tax_brackets(calc):
    assert calc.income_tax(0) == 0
    assert calc.income_tax(930460) == 0          # just under 13.5 UTM
    assert calc.income_tax(2_000_000) == 42782   # 2,000,000 * 4% - 0.54 UTM


def test_family_allowance_derived_from_income(calc):
    r = _run(calc, settings=_settings(dependents=2))
    assert r.family_allowance_bracket == "B"
    assert r.family_allowance == 27010
    assert any("family allowance bracket derived" in w for w in r.warnings)


def test_family_allowance_explicit_bracket(calc):
    r = _run(calc, settings=_settings(dependents=1, family_allowance_bracket="A"))
    assert r.family_allowance == 22007
    assert r.total_non_taxable_income == 22007


def test_missing_affiliations_fall_back_with_notices(calc, params):
    r = _run(calc, contract=_contract(ctype=None), settings=PayrollSettings())
    settings = {n.setting: n.default_used for n in r.notices}
    assert settings == {
        "contract_type": "indefinido",
        "pension_fund": params.default_pension_fund,
        "health_provider": "FONASA",
    }
    assert all(n.kind == "configuration_fallback" for n in r.notices)
    assert r.pension_fund == "MODELO"


def test_unknown_pension_fund_falls_back(calc):
    r = _run(calc, settings=_settings(pension_fund="NOPE"))
    assert r.pension_fund == "MODELO"
    assert r.notices[0].setting == "pension_fund"
    assert "NOPE" in r.notices[0].message


def test_partial_period_prorates_base(calc):
    r = _run(calc, inputs={"partial": {"days_worked": 15, "sick_leave_days": 15}})
    assert r.days_worked == 15
    assert r.base_salary == 264500
    assert r.partial.sick_leave_days == 15


def test_mid_month_start_prorates_base(calc):
    r = _run(calc, contract=_contract(start_date=date(2025, 8, 16)))
    assert r.days_worked == 16
    assert r.base_salary == 282133  # 529000 * 16 / 30


def test_partial_period_bounds():
    with pytest.raises(ValidationError):
        PartialPeriod(days_worked=31)
    with pytest.raises(ValidationError):
        PartialPeriod(days_worked=20, sick_leave_days=15)


def test_overtime_and_commissions_are_taxable(calc):
    r = _run(calc, inputs={"overtime_hours": 10, "commissions": 60000})
    assert r.overtime_amount == 42079  # 529000 * 0.0079545 * 10
    # gratification is computed on the base salary only
    assert r.legal_gratification == 132250
    assert r.total_taxable_income == 661250 + 42079 + 60000


def test_invalid_inputs_are_rejected():
    with pytest.raises(ValidationError) as ei:
        PeriodInput.from_dict(2025, 8, {"bonuses": -5, "commissions": "abc"})
    assert set(ei.value.fields) == {"bonuses", "commissions"}
    with pytest.raises(ValidationError):
        PeriodInput.from_dict(2025, 8, {"overtime_hours": "0.3"})


def test_non_finite_inputs_are_rejected():
    with pytest.raises(ValidationError) as ei:
        PeriodInput.from_dict(2025, 8, {"bonuses": "NaN", "commissions": "Infinity", "food_allowance": 1000})
    assert set(ei.value.fields) == {"bonuses", "commissions"}
    for raw in ("NaN", "Infinity"):
        with pytest.raises(ValidationError) as ei:
            PeriodInput.from_dict(2025, 8, {"overtime_hours": raw})
        assert ei.value.fields == ["overtime_hours"]


def test_invalid_contract_rejected(calc):
    with pytest.raises(ValidationError) as ei:
        _run(calc, contract=_contract(ctype="honorarios"))
    assert "contract_type" in ei.value.fields


def test_high_deductions_warn(calc):
    r = _run(calc, inputs={"loan_deductions": 400000})
    assert any("exceed 45%" in w for w in r.warnings)
    assert r.net_salary == 540439 - 400000


def test_negative_net_warns(calc):
    r = _run(calc, inputs={"other_deductions": 700000})
    assert r.net_salary < 0
    assert "net salary is negative" in r.warnings


def test_reconcile_totals_tolerance(calc):
    row = _run(calc).column_values()
    row["net_salary"] += 1
    _, warnings = reconcile_totals(row, tolerance=1)
    assert warnings == []

    row["total_deductions"] -= 10
    totals, warnings = reconcile_totals(row, tolerance=1)
    assert [w.field for w in warnings] == ["total_deductions"]
    assert warnings[0].difference == 10
    assert totals.total_deductions == 120811
