"""create_circulation_tables

Revision ID: 3c1f9a2e7b41
Revises:
Create Date: 2026-01-05 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c1f9a2e7b41'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='Created at'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='Updated at'),
    ]


def upgrade() -> None:
    op.create_table(
        'books',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('title', sa.String(length=300), nullable=False, comment='Title'),
        sa.Column('author', sa.String(length=200), nullable=False, comment='Author'),
        sa.Column('isbn', sa.String(length=20), nullable=False, comment='ISBN'),
        sa.Column('total_copies', sa.Integer(), nullable=False, server_default='0', comment='Number of copies'),
        sa.Column('available_copies', sa.Integer(), nullable=False, server_default='0', comment='Copies in available state'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('available_copies >= 0', name='ck_books_available_non_negative'),
        sa.CheckConstraint('available_copies <= total_copies', name='ck_books_available_le_total'),
    )
    op.create_index('ix_books_id', 'books', ['id'])
    op.create_index('ix_books_isbn', 'books', ['isbn'], unique=True)

    op.create_table(
        'copies',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('book_id', sa.Integer(), nullable=False, comment='Owning book'),
        sa.Column('barcode', sa.String(length=64), nullable=False, comment='Barcode'),
        sa.Column('state', sa.String(length=20), nullable=False, server_default='available',
                  comment='Custody state: available/on_loan/reserved/maintenance'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0', comment='Optimistic concurrency counter'),
        sa.Column('last_borrowed_at', sa.DateTime(timezone=True), nullable=True, comment='Last checkout'),
        sa.Column('last_returned_at', sa.DateTime(timezone=True), nullable=True, comment='Last return'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['book_id'], ['books.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('barcode'),
    )
    op.create_index('ix_copies_id', 'copies', ['id'])
    op.create_index('ix_copies_book_state', 'copies', ['book_id', 'state'])

    op.create_table(
        'loans',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('borrower_id', sa.Integer(), nullable=False, comment='Borrower (user id from the auth service)'),
        sa.Column('book_id', sa.Integer(), nullable=False, comment='Book'),
        sa.Column('copy_id', sa.Integer(), nullable=False, comment='Copy'),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False, comment='Issue date'),
        sa.Column('due_at', sa.DateTime(timezone=True), nullable=False, comment='Due date'),
        sa.Column('returned_at', sa.DateTime(timezone=True), nullable=True, comment='Return date'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active',
                  comment='Loan status: active/returned/overdue/lost'),
        sa.Column('renewal_count', sa.Integer(), nullable=False, server_default='0', comment='Renewals so far'),
        sa.Column('last_renewed_at', sa.DateTime(timezone=True), nullable=True, comment='Last renewal'),
        sa.Column('fine_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0', comment='Fine amount'),
        sa.Column('fine_status', sa.String(length=20), nullable=False, server_default='pending',
                  comment='Fine status: pending/paid/waived'),
        sa.Column('fine_paid_at', sa.DateTime(timezone=True), nullable=True, comment='Fine payment date'),
        sa.Column('fine_payment_method', sa.String(length=50), nullable=True, comment='Fine payment method'),
        sa.Column('fine_notes', sa.Text(), nullable=True, comment='Fine notes'),
        sa.Column('notes', sa.Text(), nullable=True, comment='Loan notes'),
        sa.Column('created_by', sa.Integer(), nullable=True, comment='Created by'),
        sa.Column('updated_by', sa.Integer(), nullable=True, comment='Updated by'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['book_id'], ['books.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['copy_id'], ['copies.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_loans_id', 'loans', ['id'])
    op.create_index('ix_loans_due_at', 'loans', ['due_at'])
    op.create_index('ix_loans_status', 'loans', ['status'])
    op.create_index('ix_loans_borrower_status', 'loans', ['borrower_id', 'status'])
    op.create_index('ix_loans_borrower_fine', 'loans', ['borrower_id', 'fine_status'])
    op.create_index(
        'uq_loans_open_copy', 'loans', ['copy_id'], unique=True,
        postgresql_where=sa.text("status IN ('active', 'overdue')"),
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('borrower_id', sa.Integer(), nullable=False, comment='Paying borrower'),
        sa.Column('loan_id', sa.Integer(), nullable=False, comment='Loan whose fine is paid'),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False, comment='Amount'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='BDT', comment='ISO-4217 currency'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending',
                  comment='Payment status: pending/completed/failed/cancelled/refunded'),
        sa.Column('gateway', sa.String(length=30), nullable=False, server_default='bkash', comment='Gateway name'),
        sa.Column('gateway_payment_id', sa.String(length=100), nullable=True, comment='Gateway paymentID'),
        sa.Column('gateway_transaction_id', sa.String(length=100), nullable=True, comment='Gateway trxID'),
        sa.Column('redirect_url', sa.String(length=1000), nullable=True, comment='Checkout URL for the borrower'),
        sa.Column('gateway_response', sa.JSON(), nullable=True, comment='Raw gateway payloads by stage'),
        sa.Column('notes', sa.Text(), nullable=True, comment='Operator notes'),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True, comment='Completed at'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('gateway_payment_id'),
    )
    op.create_index('ix_payments_id', 'payments', ['id'])
    op.create_index('ix_payments_borrower_id', 'payments', ['borrower_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_created_at', 'payments', ['created_at'])
    op.create_index('ix_payments_loan_status', 'payments', ['loan_id', 'status'])
    op.create_index(
        'uq_payments_open_loan', 'payments', ['loan_id'], unique=True,
        postgresql_where=sa.text("status IN ('pending', 'completed')"),
    )


def downgrade() -> None:
    op.drop_table('payments')
    op.drop_table('loans')
    op.drop_table('copies')
    op.drop_table('books')
