"""add creator application status

Revision ID: b7d2f4a9c310
Revises: a1c0e5d7f201
Create Date: 2026-10-16 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b7d2f4a9c310'
down_revision: Union[str, None] = 'a1c0e5d7f201'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column('creator_profiles', sa.Column(
        'application_status', sa.String(20), server_default='pending', nullable=False,
    ))
    op.add_column('creator_profiles', sa.Column(
        'applied_at', sa.DateTime(), server_default=sa.func.now(), nullable=False,
    ))
    op.add_column('creator_profiles', sa.Column('approved_at', sa.DateTime(), nullable=True))
    op.create_index(
        'ix_creator_profiles_application_status', 'creator_profiles', ['application_status'],
    )

    # Creators registered before the application workflow were already being paid
    op.execute(
        "UPDATE creator_profiles SET application_status = 'approved', approved_at = created_at, "
        "applied_at = created_at"
    )


def downgrade() -> None:
    op.drop_index('ix_creator_profiles_application_status', table_name='creator_profiles')
    op.drop_column('creator_profiles', 'approved_at')
    op.drop_column('creator_profiles', 'applied_at')
    op.drop_column('creator_profiles', 'application_status')
