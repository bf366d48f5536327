"""notification channels: user preferences, sms result

Revision ID: 8d41f0b6c2e7
Revises: 5b7e2c9d1a30
Create Date: 2026-11-02 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '8d41f0b6c2e7'
down_revision = '5b7e2c9d1a30'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.add_column(sa.Column('email_notifications', sa.Boolean(), nullable=False, server_default=sa.true()))
        batch_op.add_column(sa.Column('sms_notifications', sa.Boolean(), nullable=False, server_default=sa.false()))

    with op.batch_alter_table('notifications', schema=None) as batch_op:
        batch_op.add_column(sa.Column('sms_sent', sa.Boolean(), nullable=True))


def downgrade():
    with op.batch_alter_table('notifications', schema=None) as batch_op:
        batch_op.drop_column('sms_sent')

    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.drop_column('sms_notifications')
        batch_op.drop_column('email_notifications')
