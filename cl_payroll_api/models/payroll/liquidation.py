from datetime import datetime
from cl_payroll_api.extensions import db

LIQUIDATION_STATUSES = ("draft", "review", "approved", "paid", "cancelled")


class Liquidation(db.Model):
    """Monthly pay liquidation for one employee. Amounts are whole CLP."""
    __tablename__ = "liquidations"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False, index=True)
    contract_id = db.Column(db.Integer, db.ForeignKey("employment_contracts.id"))
    period_year = db.Column(db.Integer, nullable=False)
    period_month = db.Column(db.Integer, nullable=False)
    days_worked = db.Column(db.Integer, nullable=False, default=30)

    # affiliation snapshot used for the calculation
    contract_type = db.Column(db.String(20))
    pension_fund = db.Column(db.String(40))
    health_provider = db.Column(db.String(40))
    family_allowance_bracket = db.Column(db.String(1))
    dependents = db.Column(db.Integer, default=0)

    # taxable earnings
    base_salary = db.Column(db.Integer, nullable=False, default=0)
    overtime_hours = db.Column(db.Numeric(6, 1), default=0)
    overtime_amount = db.Column(db.Integer, nullable=False, default=0)
    bonuses = db.Column(db.Integer, nullable=False, default=0)
    commissions = db.Column(db.Integer, nullable=False, default=0)
    gratification = db.Column(db.Integer, nullable=False, default=0)
    legal_gratification = db.Column(db.Integer, nullable=False, default=0)

    # non taxable earnings
    food_allowance = db.Column(db.Integer, nullable=False, default=0)
    transport_allowance = db.Column(db.Integer, nullable=False, default=0)
    family_allowance = db.Column(db.Integer, nullable=False, default=0)

    total_taxable_income = db.Column(db.Integer, nullable=False, default=0)
    total_non_taxable_income = db.Column(db.Integer, nullable=False, default=0)
    total_gross_income = db.Column(db.Integer, nullable=False, default=0)

    # worker deductions
    pension_rate = db.Column(db.Numeric(7, 5))
    pension_amount = db.Column(db.Integer, nullable=False, default=0)
    pension_commission_rate = db.Column(db.Numeric(7, 5))
    pension_commission_amount = db.Column(db.Integer, nullable=False, default=0)
    health_rate = db.Column(db.Numeric(7, 5))
    health_amount = db.Column(db.Integer, nullable=False, default=0)
    unemployment_rate = db.Column(db.Numeric(7, 5))
    unemployment_amount = db.Column(db.Integer, nullable=False, default=0)
    income_tax_amount = db.Column(db.Integer, nullable=False, default=0)
    loan_deductions = db.Column(db.Integer, nullable=False, default=0)
    advance_payments = db.Column(db.Integer, nullable=False, default=0)
    voluntary_savings = db.Column(db.Integer, nullable=False, default=0)
    other_deductions = db.Column(db.Integer, nullable=False, default=0)

    total_deductions = db.Column(db.Integer, nullable=False, default=0)
    net_salary = db.Column(db.Integer, nullable=False, default=0)

    # employer side, informational
    employer_unemployment = db.Column(db.Integer, nullable=False, default=0)
    employer_work_accident = db.Column(db.Integer, nullable=False, default=0)
    employer_sis = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.Enum(*LIQUIDATION_STATUSES, name="liquidation_status_enum"),
                       nullable=False, default="draft")
    inputs_json = db.Column(db.JSON)        # period inputs, kept for regeneration
    partial_period = db.Column(db.JSON)     # sick/vacation days when the month is incomplete
    notices = db.Column(db.JSON)            # fallback / reconciliation notices
    warnings = db.Column(db.JSON)
    calc_meta = db.Column(db.JSON)          # indicators used (UF, UTM, ceilings)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("employee_id", "period_year", "period_month", name="uq_liquidation_employee_period"),
        db.Index("ix_liquidation_company_period", "company_id", "period_year", "period_month"),
    )

    employee = db.relationship("Employee", lazy="joined")
    contract = db.relationship("EmploymentContract", lazy="joined")

    @property
    def period(self) -> str:
        return f"{self.period_year:04d}-{self.period_month:02d}"
