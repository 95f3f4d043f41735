"""payroll engine schema

Revision ID: 4f1e2d3c5b6a
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f1e2d3c5b6a'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'divisions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(32), nullable=True, unique=True),
        sa.Column('name', sa.String(120), nullable=False, unique=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        'departments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(32), nullable=True, unique=True),
        sa.Column('name', sa.String(120), nullable=False, unique=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_table(
        'employees',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('departments.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('division_id', sa.Integer(), sa.ForeignKey('divisions.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('emp_no', sa.String(32), nullable=False, unique=True),
        sa.Column('name', sa.String(160), nullable=False),
        sa.Column('designation', sa.String(120), nullable=True),
        sa.Column('location', sa.String(120), nullable=True),
        sa.Column('bank_account_no', sa.String(40), nullable=True),
        sa.Column('bank_name', sa.String(120), nullable=True),
        sa.Column('salary_mode', sa.String(20), nullable=True),
        sa.Column('pf_number', sa.String(40), nullable=True),
        sa.Column('esi_number', sa.String(40), nullable=True),
        sa.Column('doj', sa.Date(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='active'),
        sa.Column('gross_salary', sa.Numeric(12, 2), nullable=True),
        sa.Column('paid_leaves', sa.Float(), nullable=True, server_default='0'),
        sa.Column('apply_esi', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('apply_pf', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('apply_profession_tax', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('apply_attendance_deduction', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deduct_late_in', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deduct_early_out', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deduct_permission', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('deduct_absent', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('allowance_overrides', sa.JSON(), nullable=False),
        sa.Column('deduction_overrides', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_emp_dept_div', 'employees', ['department_id', 'division_id'], unique=False)

    op.create_table(
        'pay_register_summaries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('month', sa.String(7), nullable=False),
        sa.Column('total_days_in_month', sa.Float(), nullable=True),
        sa.Column('present_days', sa.Float(), nullable=True),
        sa.Column('paid_leave_days', sa.Float(), nullable=True),
        sa.Column('od_days', sa.Float(), nullable=True),
        sa.Column('weekly_offs', sa.Float(), nullable=True),
        sa.Column('holidays', sa.Float(), nullable=True),
        sa.Column('absent_days', sa.Float(), nullable=True),
        sa.Column('payable_shifts', sa.Float(), nullable=True),
        sa.Column('lop_days', sa.Float(), nullable=True),
        sa.Column('total_leave_days', sa.Float(), nullable=True),
        sa.Column('extra_days', sa.Float(), nullable=True),
        sa.Column('ot_hours', sa.Float(), nullable=True),
        sa.Column('ot_days', sa.Float(), nullable=True),
        sa.Column('late_count', sa.Integer(), nullable=True),
        sa.Column('early_out_count', sa.Integer(), nullable=True),
        sa.Column('permission_count', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('employee_id', 'month', name='uq_pay_register_emp_month'),
    )
    op.create_index('ix_pay_register_summaries_employee_id', 'pay_register_summaries', ['employee_id'], unique=False)

    op.create_table(
        'pay_cycles',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(80), nullable=True),
        sa.Column('period_anchor_day', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('effective_from', sa.Date(), nullable=True),
        sa.Column('effective_to', sa.Date(), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_pay_cycles_resolve', 'pay_cycles', ['active', 'effective_from', 'effective_to', 'priority'], unique=False)

    op.create_table(
        'allowance_deduction_masters',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('category', sa.Enum('allowance', 'deduction', name='component_category'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('global_rule', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('category', 'name', name='uq_component_master_name'),
    )
    op.create_table(
        'component_rules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('master_id', sa.Integer(), sa.ForeignKey('allowance_deduction_masters.id', ondelete='CASCADE'), nullable=False),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('departments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('division_id', sa.Integer(), sa.ForeignKey('divisions.id', ondelete='CASCADE'), nullable=True),
        sa.Column('rule', sa.JSON(), nullable=False),
        sa.UniqueConstraint('master_id', 'department_id', 'division_id', name='uq_component_rule_scope'),
    )
    op.create_table(
        'payroll_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('key', sa.String(64), nullable=False),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('departments.id', ondelete='CASCADE'), nullable=True),
        sa.Column('division_id', sa.Integer(), sa.ForeignKey('divisions.id', ondelete='CASCADE'), nullable=True),
        sa.Column('value_json', sa.JSON(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('key', 'department_id', 'division_id', name='uq_payroll_setting_scope'),
    )
    op.create_index('ix_payroll_setting_key', 'payroll_settings', ['key'], unique=False)

    op.create_table(
        'statutory_deduction_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('esi', sa.JSON(), nullable=False),
        sa.Column('pf', sa.JSON(), nullable=False),
        sa.Column('profession_tax', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_table(
        'payroll_configurations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('output_columns', sa.JSON(), nullable=False),
        sa.Column('steps', sa.JSON(), nullable=False),
        sa.Column('statutory_prorate_paid_days_column_header', sa.String(120), nullable=True),
        sa.Column('statutory_prorate_total_days_column_header', sa.String(120), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'loans',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', sa.Enum('loan', 'salary_advance', name='loan_kind'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('principal', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('emi_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('remaining_balance', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_loans_employee_id', 'loans', ['employee_id'], unique=False)
    op.create_table(
        'arrears',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('reason', sa.String(255), nullable=True),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('remaining_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_arrears_employee_id', 'arrears', ['employee_id'], unique=False)

    op.create_table(
        'payroll_batches',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('batch_number', sa.String(64), nullable=False, unique=True),
        sa.Column('department_id', sa.Integer(), sa.ForeignKey('departments.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('division_id', sa.Integer(), sa.ForeignKey('divisions.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('month', sa.String(7), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month_number', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum('pending', 'calculated', 'approved', 'freeze', 'complete',
                                    name='payroll_batch_status'), nullable=False, server_default='pending'),
        sa.Column('recalculation_allowed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('total_employees', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_gross_salary', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('total_deductions', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('total_net_salary', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('total_arrears', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('department_id', 'division_id', 'month', name='uq_payroll_batch_scope'),
    )
    op.create_table(
        'payroll_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('batch_id', sa.Integer(), sa.ForeignKey('payroll_batches.id', ondelete='SET NULL'), nullable=True),
        sa.Column('emp_no', sa.String(32), nullable=False),
        sa.Column('month', sa.String(7), nullable=False),
        sa.Column('month_name', sa.String(32), nullable=True),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month_number', sa.Integer(), nullable=False),
        sa.Column('department_id', sa.Integer(), nullable=True),
        sa.Column('division_id', sa.Integer(), nullable=True),
        sa.Column('total_days_in_month', sa.Float(), nullable=True),
        sa.Column('total_payable_shifts', sa.Float(), nullable=True),
        sa.Column('el_used_in_payroll', sa.Float(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='calculated'),
        sa.Column('net_salary', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('round_off', sa.Numeric(6, 2), nullable=False, server_default='0'),
        sa.Column('attendance', sa.JSON(), nullable=False),
        sa.Column('earnings', sa.JSON(), nullable=False),
        sa.Column('deductions', sa.JSON(), nullable=False),
        sa.Column('loan_advance', sa.JSON(), nullable=False),
        sa.Column('arrears', sa.JSON(), nullable=False),
        sa.Column('paysheet_row', sa.JSON(), nullable=False),
        sa.Column('calculated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('employee_id', 'month', name='uq_payroll_record_emp_month'),
    )
    op.create_index('ix_payroll_record_month', 'payroll_records', ['month'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_payroll_record_month', table_name='payroll_records')
    op.drop_table('payroll_records')
    op.drop_table('payroll_batches')
    op.drop_index('ix_arrears_employee_id', table_name='arrears')
    op.drop_table('arrears')
    op.drop_index('ix_loans_employee_id', table_name='loans')
    op.drop_table('loans')
    op.drop_table('payroll_configurations')
    op.drop_table('statutory_deduction_configs')
    op.drop_index('ix_payroll_setting_key', table_name='payroll_settings')
    op.drop_table('payroll_settings')
    op.drop_table('component_rules')
    op.drop_table('allowance_deduction_masters')
    op.drop_index('ix_pay_cycles_resolve', table_name='pay_cycles')
    op.drop_table('pay_cycles')
    op.drop_index('ix_pay_register_summaries_employee_id', table_name='pay_register_summaries')
    op.drop_table('pay_register_summaries')
    op.drop_index('ix_emp_dept_div', table_name='employees')
    op.drop_table('employees')
    op.drop_table('departments')
    op.drop_table('divisions')
    sa.Enum(name='payroll_batch_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='loan_kind').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='component_category').drop(op.get_bind(), checkfirst=True)
