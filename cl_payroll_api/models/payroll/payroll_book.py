from datetime import datetime
from cl_payroll_api.extensions import db


class PayrollBook(db.Model):
    """Libro de remuneraciones: all liquidations of a company for one period."""
    __tablename__ = "payroll_books"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False)
    period = db.Column(db.String(7), nullable=False)   # YYYY-MM
    book_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.Enum("draft", "approved", name="payroll_book_status_enum"), default="draft", nullable=False)

    total_employees = db.Column(db.Integer, nullable=False, default=0)
    total_taxable_income = db.Column(db.Integer, nullable=False, default=0)
    total_non_taxable_income = db.Column(db.Integer, nullable=False, default=0)
    total_gross_income = db.Column(db.Integer, nullable=False, default=0)
    total_deductions = db.Column(db.Integer, nullable=False, default=0)
    total_net = db.Column(db.Integer, nullable=False, default=0)
    total_employer_contributions = db.Column(db.Integer, nullable=False, default=0)

    notices = db.Column(db.JSON)
    generated_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("company_id", "period", name="uq_payroll_book_company_period"),
        db.UniqueConstraint("company_id", "book_number", name="uq_payroll_book_company_number"),
    )

    company = db.relationship("Company", lazy="joined")
    details = db.relationship(
        "PayrollBookDetail",
        back_populates="book",
        cascade="all, delete-orphan",
        order_by="PayrollBookDetail.sort_order",
        lazy="select",
    )


class PayrollBookDetail(db.Model):
    __tablename__ = "payroll_book_details"

    id = db.Column(db.Integer, primary_key=True)
    book_id = db.Column(db.Integer, db.ForeignKey("payroll_books.id", ondelete="CASCADE"), nullable=False, index=True)
    liquidation_id = db.Column(db.Integer, db.ForeignKey("liquidations.id"), nullable=False)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    employee_rut = db.Column(db.String(20), nullable=False)
    employee_name = db.Column(db.String(255), nullable=False)
    days_worked = db.Column(db.Integer, nullable=False, default=30)
    total_taxable_income = db.Column(db.Integer, nullable=False, default=0)
    total_non_taxable_income = db.Column(db.Integer, nullable=False, default=0)
    total_gross_income = db.Column(db.Integer, nullable=False, default=0)
    total_deductions = db.Column(db.Integer, nullable=False, default=0)
    net_salary = db.Column(db.Integer, nullable=False, default=0)
    employer_contributions = db.Column(db.Integer, nullable=False, default=0)

    __table_args__ = (
        db.UniqueConstraint("book_id", "employee_id", name="uq_book_detail_employee"),
    )

    book = db.relationship("PayrollBook", back_populates="details")
    liquidation = db.relationship("Liquidation", lazy="joined")
    employee = db.relationship("Employee", lazy="joined")
