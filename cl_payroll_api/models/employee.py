from datetime import datetime, date
from cl_payroll_api.extensions import db

CONTRACT_TYPES = ("indefinido", "plazo_fijo", "obra_faena")


class Employee(db.Model):
    __tablename__ = "employees"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)

    rut = db.Column(db.String(20), nullable=False)           # "12.345.678-5"
    first_name = db.Column(db.String(80), nullable=False)    # nombres
    last_name = db.Column(db.String(80), nullable=False)     # apellido paterno
    mother_last_name = db.Column(db.String(80), nullable=True)  # apellido materno
    gender = db.Column(db.String(1), nullable=True)          # M / F
    email = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), default="active", nullable=False)  # active/inactive
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("company_id", "rut", name="uq_employee_company_rut"),
        db.Index("ix_emp_company_id", "company_id"),
    )

    company = db.relationship("Company", lazy="joined")
    contracts = db.relationship(
        "EmploymentContract",
        back_populates="employee",
        order_by="EmploymentContract.start_date.desc()",
        lazy="select",
    )
    payroll_config = db.relationship(
        "PayrollConfig", back_populates="employee", uselist=False, lazy="joined"
    )

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.last_name, self.mother_last_name]
        return " ".join(p for p in parts if p)

    def active_contract(self, on: date):
        """Latest contract covering `on`; contracts starting after `on` are ignored."""
        for c in self.contracts:
            if c.status == "active" and c.covers(on):
                return c
        return None


class EmploymentContract(db.Model):
    __tablename__ = "employment_contracts"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)

    contract_type = db.Column(db.Enum(*CONTRACT_TYPES, name="contract_type_enum"), nullable=True)
    position = db.Column(db.String(120))
    base_salary = db.Column(db.Integer, nullable=False)
    weekly_hours = db.Column(db.Numeric(4, 1), nullable=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    termination_reason = db.Column(db.String(20), nullable=True)  # LRE causal code
    status = db.Column(db.String(16), default="active", nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    employee = db.relationship("Employee", back_populates="contracts")

    def covers(self, on: date) -> bool:
        # contracts are selected by month: anything started up to the month end counts
        if self.start_date and self.start_date > on:
            return False
        if self.end_date and self.end_date < on.replace(day=1):
            return False
        return True


class PayrollConfig(db.Model):
    """Per employee social security affiliation and payroll flags."""
    __tablename__ = "payroll_configs"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, unique=True)

    pension_fund = db.Column(db.String(40))           # AFP, e.g. "HABITAT"
    health_provider = db.Column(db.String(40))        # "FONASA" or isapre name
    health_plan_uf = db.Column(db.Numeric(8, 4))      # agreed isapre plan, UF
    family_fund = db.Column(db.String(40))            # CCAF
    work_accident_insurer = db.Column(db.String(40))  # mutual
    dependents = db.Column(db.Integer, default=0, nullable=False)
    family_allowance_bracket = db.Column(db.String(1))  # A/B/C/D
    statutory_gratification = db.Column(db.Boolean, default=True, nullable=False)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    employee = db.relationship("Employee", back_populates="payroll_config")
