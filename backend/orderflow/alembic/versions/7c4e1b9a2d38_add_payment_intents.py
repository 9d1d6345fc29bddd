"""add_payment_intents

Revision ID: 7c4e1b9a2d38
Revises: 3f9c2a71d0b4
Create Date: 2026-10-19 15:00:00.000000

orders.payment_intent_id only holds the latest attempt. A shopper who opened
checkout twice can still pay the first one, so every issued intent is kept
here and confirmation, webhooks and the sweeper look intents up in this table.

Existing orders are backfilled with their current intent.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel


# revision identifiers, used by Alembic.
revision: str = '7c4e1b9a2d38'
down_revision: Union[str, None] = '3f9c2a71d0b4'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'payment_intents',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('order_id', sa.UUID(), nullable=False),
        sa.Column('gateway', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('intent_id', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('gateway', 'intent_id', name='uq_payment_intents_gateway_intent')
    )
    op.create_index(op.f('ix_payment_intents_order_id'), 'payment_intents', ['order_id'], unique=False)
    op.create_index(op.f('ix_payment_intents_intent_id'), 'payment_intents', ['intent_id'], unique=False)

    op.execute(
        """
        INSERT INTO payment_intents (id, order_id, gateway, intent_id, created_at)
        SELECT gen_random_uuid(), id, payment_gateway, payment_intent_id,
               COALESCE(payment_initiated_at, updated_at)
        FROM orders
        WHERE payment_intent_id IS NOT NULL AND payment_gateway IS NOT NULL
        """
    )


def downgrade() -> None:
    op.drop_index(op.f('ix_payment_intents_intent_id'), table_name='payment_intents')
    op.drop_index(op.f('ix_payment_intents_order_id'), table_name='payment_intents')
    op.drop_table('payment_intents')
