"""allow rebooking cancelled slots: unique only among confirmed reservations

Revision ID: 8c2d4e6f7a9b
Revises: 4f1a2b3c5d6e
Create Date: 2025-11-09 05:40:35.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '8c2d4e6f7a9b'
down_revision = '4f1a2b3c5d6e'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('reservations', schema=None) as batch_op:
        batch_op.drop_constraint('uq_reservations_slot_once', type_='unique')

    op.create_index(
        'uq_reservations_slot_confirmed',
        'reservations',
        ['slot_id'],
        unique=True,
        sqlite_where=sa.text("status = 'confirmed'"),
        postgresql_where=sa.text("status = 'confirmed'"),
    )


def downgrade():
    # fails if a slot already has cancelled history plus a confirmed rebooking
    op.drop_index('uq_reservations_slot_confirmed', table_name='reservations')

    with op.batch_alter_table('reservations', schema=None) as batch_op:
        batch_op.create_unique_constraint('uq_reservations_slot_once', ['slot_id'])
