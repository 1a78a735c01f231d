"""initial payroll schema (companies, employees, stat configs, liquidations, payroll books)

Revision ID: 4f1a2c9e7b10
Revises:
Create Date: 2025-09-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f1a2c9e7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

STAT_TYPES = ('INDICATORS', 'GRATIFICATION', 'PENSION', 'HEALTH', 'UNEMPLOYMENT', 'INCOME_TAX',
              'FAMILY_ALLOWANCE', 'OVERTIME', 'EMPLOYER', 'LIMITS', 'CODES')
CONTRACT_TYPES = ('indefinido', 'plazo_fijo', 'obra_faena')
LIQUIDATION_STATUSES = ('draft', 'review', 'approved', 'paid', 'cancelled')


def _money(name):
    return sa.Column(name, sa.Integer(), nullable=False, server_default='0')


def upgrade() -> None:
    op.create_table(
        'companies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=50), nullable=False, unique=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('rut', sa.String(length=20), nullable=True),
        sa.Column('region_code', sa.String(length=4), nullable=True),
        sa.Column('commune_code', sa.String(length=8), nullable=True),
        sa.Column('work_accident_rate', sa.Numeric(6, 5), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'employees',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('rut', sa.String(length=20), nullable=False),
        sa.Column('first_name', sa.String(length=80), nullable=False),
        sa.Column('last_name', sa.String(length=80), nullable=False),
        sa.Column('mother_last_name', sa.String(length=80), nullable=True),
        sa.Column('gender', sa.String(length=1), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('company_id', 'rut', name='uq_employee_company_rut'),
    )
    op.create_index('ix_emp_company_id', 'employees', ['company_id'])

    op.create_table(
        'employment_contracts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('contract_type', sa.Enum(*CONTRACT_TYPES, name='contract_type_enum'), nullable=True),
        sa.Column('position', sa.String(length=120), nullable=True),
        sa.Column('base_salary', sa.Integer(), nullable=False),
        sa.Column('weekly_hours', sa.Numeric(4, 1), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('termination_reason', sa.String(length=20), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_employment_contracts_employee_id', 'employment_contracts', ['employee_id'])

    op.create_table(
        'payroll_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('pension_fund', sa.String(length=40), nullable=True),
        sa.Column('health_provider', sa.String(length=40), nullable=True),
        sa.Column('health_plan_uf', sa.Numeric(8, 4), nullable=True),
        sa.Column('family_fund', sa.String(length=40), nullable=True),
        sa.Column('work_accident_insurer', sa.String(length=40), nullable=True),
        sa.Column('dependents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('family_allowance_bracket', sa.String(length=1), nullable=True),
        sa.Column('statutory_gratification', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'stat_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('type', sa.Enum(*STAT_TYPES, name='statconfig_type'), nullable=False),
        sa.Column('key', sa.String(length=80), nullable=False),
        sa.Column('value_json', sa.JSON(), nullable=False),
        sa.Column('scope_company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('effective_from', sa.Date(), nullable=False),
        sa.Column('effective_to', sa.Date(), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_statcfg_resolve', 'stat_configs',
                    ['type', 'scope_company_id', 'effective_from', 'effective_to', 'priority'])

    op.create_table(
        'liquidations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('contract_id', sa.Integer(), sa.ForeignKey('employment_contracts.id'), nullable=True),
        sa.Column('period_year', sa.Integer(), nullable=False),
        sa.Column('period_month', sa.Integer(), nullable=False),
        sa.Column('days_worked', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('contract_type', sa.String(length=20), nullable=True),
        sa.Column('pension_fund', sa.String(length=40), nullable=True),
        sa.Column('health_provider', sa.String(length=40), nullable=True),
        sa.Column('family_allowance_bracket', sa.String(length=1), nullable=True),
        sa.Column('dependents', sa.Integer(), nullable=True),
        _money('base_salary'),
        sa.Column('overtime_hours', sa.Numeric(6, 1), nullable=True),
        _money('overtime_amount'),
        _money('bonuses'),
        _money('commissions'),
        _money('gratification'),
        _money('legal_gratification'),
        _money('food_allowance'),
        _money('transport_allowance'),
        _money('family_allowance'),
        _money('total_taxable_income'),
        _money('total_non_taxable_income'),
        _money('total_gross_income'),
        sa.Column('pension_rate', sa.Numeric(7, 5), nullable=True),
        _money('pension_amount'),
        sa.Column('pension_commission_rate', sa.Numeric(7, 5), nullable=True),
        _money('pension_commission_amount'),
        sa.Column('health_rate', sa.Numeric(7, 5), nullable=True),
        _money('health_amount'),
        sa.Column('unemployment_rate', sa.Numeric(7, 5), nullable=True),
        _money('unemployment_amount'),
        _money('income_tax_amount'),
        _money('loan_deductions'),
        _money('advance_payments'),
        _money('voluntary_savings'),
        _money('other_deductions'),
        _money('total_deductions'),
        _money('net_salary'),
        _money('employer_unemployment'),
        _money('employer_work_accident'),
        _money('employer_sis'),
        sa.Column('status', sa.Enum(*LIQUIDATION_STATUSES, name='liquidation_status_enum'),
                  nullable=False, server_default='draft'),
        sa.Column('inputs_json', sa.JSON(), nullable=True),
        sa.Column('partial_period', sa.JSON(), nullable=True),
        sa.Column('notices', sa.JSON(), nullable=True),
        sa.Column('warnings', sa.JSON(), nullable=True),
        sa.Column('calc_meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('employee_id', 'period_year', 'period_month', name='uq_liquidation_employee_period'),
    )
    op.create_index('ix_liquidations_company_id', 'liquidations', ['company_id'])
    op.create_index('ix_liquidations_employee_id', 'liquidations', ['employee_id'])
    op.create_index('ix_liquidation_company_period', 'liquidations', ['company_id', 'period_year', 'period_month'])

    op.create_table(
        'payroll_books',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('company_id', sa.Integer(), sa.ForeignKey('companies.id'), nullable=False),
        sa.Column('period', sa.String(length=7), nullable=False),
        sa.Column('book_number', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('draft', 'approved', name='payroll_book_status_enum'),
                  nullable=False, server_default='draft'),
        sa.Column('total_employees', sa.Integer(), nullable=False, server_default='0'),
        _money('total_taxable_income'),
        _money('total_non_taxable_income'),
        _money('total_gross_income'),
        _money('total_deductions'),
        _money('total_net'),
        _money('total_employer_contributions'),
        sa.Column('notices', sa.JSON(), nullable=True),
        sa.Column('generated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('company_id', 'period', name='uq_payroll_book_company_period'),
        sa.UniqueConstraint('company_id', 'book_number', name='uq_payroll_book_company_number'),
    )

    op.create_table(
        'payroll_book_details',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('book_id', sa.Integer(), sa.ForeignKey('payroll_books.id', ondelete='CASCADE'), nullable=False),
        sa.Column('liquidation_id', sa.Integer(), sa.ForeignKey('liquidations.id'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('employee_rut', sa.String(length=20), nullable=False),
        sa.Column('employee_name', sa.String(length=255), nullable=False),
        sa.Column('days_worked', sa.Integer(), nullable=False, server_default='30'),
        _money('total_taxable_income'),
        _money('total_non_taxable_income'),
        _money('total_gross_income'),
        _money('total_deductions'),
        _money('net_salary'),
        _money('employer_contributions'),
        sa.UniqueConstraint('book_id', 'employee_id', name='uq_book_detail_employee'),
    )
    op.create_index('ix_payroll_book_details_book_id', 'payroll_book_details', ['book_id'])


def downgrade() -> None:
    op.drop_index('ix_payroll_book_details_book_id', table_name='payroll_book_details')
    op.drop_table('payroll_book_details')
    op.drop_table('payroll_books')
    op.drop_index('ix_liquidation_company_period', table_name='liquidations')
    op.drop_index('ix_liquidations_employee_id', table_name='liquidations')
    op.drop_index('ix_liquidations_company_id', table_name='liquidations')
    op.drop_table('liquidations')
    op.drop_index('ix_statcfg_resolve', table_name='stat_configs')
    op.drop_table('stat_configs')
    op.drop_table('payroll_configs')
    op.drop_index('ix_employment_contracts_employee_id', table_name='employment_contracts')
    op.drop_table('employment_contracts')
    op.drop_index('ix_emp_company_id', table_name='employees')
    op.drop_table('employees')
    op.drop_table('companies')

    # enum types are left behind by drop_table on PostgreSQL
    bind = op.get_bind()
    for name, values in (('payroll_book_status_enum', ('draft', 'approved')),
                         ('liquidation_status_enum', LIQUIDATION_STATUSES),
                         ('statconfig_type', STAT_TYPES),
                         ('contract_type_enum', CONTRACT_TYPES)):
        sa.Enum(*values, name=name).drop(bind, checkfirst=True)
