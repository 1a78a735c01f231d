from __future__ import annotations

import json
import logging
import pathlib
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from cl_payroll_api.common.errors import MissingPrerequisiteError, ValidationError
from cl_payroll_api.models.payroll.stat_config import StatConfig, STAT_CONFIG_TYPES
from .money import D, round_clp

log = logging.getLogger(__name__)

DATA_DIR = pathlib.Path(__file__).resolve().parent.parent / "data"
BUNDLED_DATASET = DATA_DIR / "regulatory_cl_2025.json"


def resolve_configs(cfg_type: str, company_id: int | None, on_date: date) -> List[StatConfig]:
    """
    Return StatConfig records of a given type that are effective on `on_date`, ordered by resolution:
    1) company scoped (when company_id is given)
    2) global (no scope)

    Within each tier, lower `priority` wins; tie-breaker is most-recent `effective_from`.
    """
    q = (
        StatConfig.query
        .filter(StatConfig.type == cfg_type)
        .filter(StatConfig.effective_from <= on_date)
        .filter((StatConfig.effective_to.is_(None)) | (StatConfig.effective_to >= on_date))
        .filter(StatConfig.closed_at.is_(None))
    )

    def _ordered(subq):
        return subq.order_by(StatConfig.priority.asc(), StatConfig.effective_from.desc(), StatConfig.id.desc()).all()

    out: List[StatConfig] = []
    if company_id is not None:
        out.extend(_ordered(q.filter(StatConfig.scope_company_id == company_id)))
    out.extend(_ordered(q.filter(StatConfig.scope_company_id.is_(None))))
    return out


@dataclass(frozen=True)
class TaxBracket:
    from_utm: Decimal
    to_utm: Optional[Decimal]
    rate: Decimal
    rebate_utm: Decimal


@dataclass(frozen=True)
class FamilyBracket:
    bracket: str
    income_limit: Optional[int]
    amount: int


def _norm_key(s: Any) -> str:
    return str(s or "").strip().upper()


@dataclass
class RegulatoryParams:
    """Every statutory number the engine needs, resolved for one company and date."""
    uf: Decimal
    utm: Decimal
    minimum_wage: Decimal

    gratification_rate: Decimal
    gratification_cap_minimum_wages: Decimal

    pension_rate: Decimal
    pension_ceiling_uf: Decimal
    default_pension_fund: str
    fund_commissions: Dict[str, Decimal]

    health_rate: Decimal
    health_ceiling_uf: Decimal
    default_health_provider: str
    public_health_providers: Tuple[str, ...]

    unemployment_ceiling_uf: Decimal
    default_contract_type: str
    unemployment_rates: Dict[str, Tuple[Decimal, Decimal]]

    tax_brackets: List[TaxBracket]
    family_brackets: List[FamilyBracket]

    overtime_factors: Dict[Decimal, Decimal]
    default_weekly_hours: Decimal

    sis_rate: Decimal
    work_accident_rate: Decimal
    life_expectancy_rate: Decimal

    max_deduction_pct: Decimal
    codes: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    sources: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, configs: Dict[str, Dict[str, Any]], sources: Optional[Dict[str, Any]] = None) -> "RegulatoryParams":
        missing = [t for t in STAT_CONFIG_TYPES if t not in configs]
        if missing:
            raise MissingPrerequisiteError(
                f"Regulatory configuration missing: {', '.join(missing)}",
                payload={"missing_types": missing, "hint": "run `flask regulatory seed` or create the configs"},
            )
        ind = configs["INDICATORS"]
        grat = configs["GRATIFICATION"]
        pen = configs["PENSION"]
        hea = configs["HEALTH"]
        une = configs["UNEMPLOYMENT"]
        emp = configs["EMPLOYER"]
        ovt = configs["OVERTIME"]
        try:
            return cls(
                uf=D(ind["uf"]),
                utm=D(ind["utm"]),
                minimum_wage=D(ind["minimum_wage"]),
                gratification_rate=D(grat["rate"]),
                gratification_cap_minimum_wages=D(grat["cap_minimum_wages"]),
                pension_rate=D(pen["rate"]),
                pension_ceiling_uf=D(pen["taxable_ceiling_uf"]),
                default_pension_fund=_norm_key(pen["default_fund"]),
                fund_commissions={_norm_key(k): D(v["commission"]) for k, v in pen["funds"].items()},
                health_rate=D(hea["rate"]),
                health_ceiling_uf=D(hea.get("taxable_ceiling_uf", pen["taxable_ceiling_uf"])),
                default_health_provider=_norm_key(hea["default_provider"]),
                public_health_providers=tuple(_norm_key(p) for p in hea.get("public_providers", ["FONASA"])),
                unemployment_ceiling_uf=D(une["taxable_ceiling_uf"]),
                default_contract_type=une.get("default_contract_type", "indefinido"),
                unemployment_rates={
                    k: (D(v["worker"]), D(v["employer"])) for k, v in une["rates"].items()
                },
                tax_brackets=sorted(
                    (
                        TaxBracket(
                            from_utm=D(b["from_utm"]),
                            to_utm=None if b.get("to_utm") is None else D(b["to_utm"]),
                            rate=D(b["rate"]),
                            rebate_utm=D(b.get("rebate_utm")),
                        )
                        for b in configs["INCOME_TAX"]["brackets"]
                    ),
                    key=lambda b: b.from_utm,
                ),
                family_brackets=sorted(
                    (
                        FamilyBracket(
                            bracket=_norm_key(b["bracket"]),
                            income_limit=None if b.get("income_limit") is None else int(b["income_limit"]),
                            amount=int(b["amount"]),
                        )
                        for b in configs["FAMILY_ALLOWANCE"]["brackets"]
                    ),
                    key=lambda b: (b.income_limit is None, b.income_limit or 0),
                ),
                overtime_factors={D(k): D(v) for k, v in ovt["factors"].items()},
                default_weekly_hours=D(ovt.get("default_weekly_hours", 44)),
                sis_rate=D(emp["sis_rate"]),
                work_accident_rate=D(emp["work_accident_rate"]),
                life_expectancy_rate=D(emp.get("life_expectancy_rate")),
                max_deduction_pct=D(configs["LIMITS"]["max_deduction_pct"]),
                codes=dict(configs["CODES"]),
                sources=dict(sources or {}),
            )
        except (KeyError, TypeError, ArithmeticError) as e:
            raise ValidationError(f"Malformed regulatory configuration: {e}") from e

    # ---- derived amounts ----
    def gratification_cap(self) -> int:
        return round_clp(self.gratification_cap_minimum_wages * self.minimum_wage / 12)

    def pension_ceiling(self) -> int:
        return round_clp(self.pension_ceiling_uf * self.uf)

    def health_ceiling(self) -> int:
        return round_clp(self.health_ceiling_uf * self.uf)

    def unemployment_ceiling(self) -> int:
        return round_clp(self.unemployment_ceiling_uf * self.uf)

    def fund_commission(self, fund: str) -> Optional[Decimal]:
        return self.fund_commissions.get(_norm_key(fund))

    def unemployment_split(self, contract_type: str) -> Tuple[Decimal, Decimal]:
        rates = self.unemployment_rates.get(contract_type)
        if rates is None:
            rates = self.unemployment_rates[self.default_contract_type]
        return rates

    def is_public_health(self, provider: str) -> bool:
        return _norm_key(provider) in self.public_health_providers

    def tax_bracket(self, amount_utm: Decimal) -> TaxBracket:
        # brackets are ordered; upper bounds are inclusive
        for b in self.tax_brackets:
            if b.to_utm is None or amount_utm <= b.to_utm:
                return b
        return self.tax_brackets[-1]

    def family_bracket_for_income(self, taxable_income: int) -> FamilyBracket:
        for b in self.family_brackets:
            if b.income_limit is None or taxable_income <= b.income_limit:
                return b
        return self.family_brackets[-1]

    def family_bracket(self, code: str) -> Optional[FamilyBracket]:
        code = _norm_key(code)
        for b in self.family_brackets:
            if b.bracket == code:
                return b
        return None

    def snapshot(self) -> Dict[str, Any]:
        """Indicators worth recording next to a computed liquidation."""
        return {
            "uf": str(self.uf),
            "utm": str(self.utm),
            "minimum_wage": str(self.minimum_wage),
            "pension_ceiling": self.pension_ceiling(),
            "unemployment_ceiling": self.unemployment_ceiling(),
            "gratification_cap": self.gratification_cap(),
            "sources": self.sources,
        }


def load_params(company_id: int | None, on_date: date) -> RegulatoryParams:
    """Resolve every regulatory config type for a company on a date."""
    configs: Dict[str, Dict[str, Any]] = {}
    sources: Dict[str, Any] = {}
    for cfg_type in STAT_CONFIG_TYPES:
        rows = resolve_configs(cfg_type, company_id, on_date)
        if not rows:
            continue
        top = rows[0]
        configs[cfg_type] = top.value_json
        sources[cfg_type] = {"id": top.id, "key": top.key, "effective_from": top.effective_from.isoformat()}
    missing = [t for t in STAT_CONFIG_TYPES if t not in configs]
    if missing:
        log.warning("regulatory config missing for company=%s on=%s: %s", company_id, on_date, missing)
    return RegulatoryParams.from_dict(configs, sources=sources)


def bundled_dataset(path: pathlib.Path | None = None) -> Dict[str, Any]:
    with open(path or BUNDLED_DATASET, encoding="utf-8") as fh:
        return json.load(fh)


def bundled_params() -> RegulatoryParams:
    data = bundled_dataset()
    return RegulatoryParams.from_dict(data["configs"], sources={"dataset": data["key"]})


def seed_stat_configs(session, dataset: Dict[str, Any] | None = None, company_id: int | None = None) -> int:
    """Insert one StatConfig row per type from a dataset. Existing (type, key, scope) rows are skipped."""
    data = dataset or bundled_dataset()
    eff_from = date.fromisoformat(data["effective_from"])
    created = 0
    for cfg_type, value in data["configs"].items():
        exists = (
            StatConfig.query
            .filter_by(type=cfg_type, key=data["key"], scope_company_id=company_id)
            .first()
        )
        if exists:
            continue
        session.add(StatConfig(
            type=cfg_type,
            key=data["key"],
            value_json=value,
            scope_company_id=company_id,
            priority=100,
            effective_from=eff_from,
        ))
        created += 1
    session.commit()
    return created
