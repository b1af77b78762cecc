"""Tax invoices

Revision ID: e1r0p0000002
Revises: e1r0p0000001
Create Date: 2026-10-19

Adds tax_invoices: issued to customers or received from suppliers,
optionally linked to the sale/purchase they cover.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'e1r0p0000002'
down_revision = 'e1r0p0000001'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('tax_invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=True),
        sa.Column('partner_id', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('net_amount', sa.Integer(), nullable=False),
        sa.Column('tax_amount', sa.Integer(), nullable=False),
        sa.Column('total_amount', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ),
        sa.ForeignKeyConstraint(['partner_id'], ['partners.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('tax_invoices', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_tax_invoices_code'), ['code'], unique=True)
        batch_op.create_index(batch_op.f('ix_tax_invoices_transaction_id'), ['transaction_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_tax_invoices_partner_id'), ['partner_id'], unique=False)


def downgrade():
    op.drop_table('tax_invoices')
