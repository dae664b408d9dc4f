"""Create vehicle_locations history table

Revision ID: 3c9d2f1a7b64
Revises:
Create Date: 2026-10-19 09:12:41.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c9d2f1a7b64'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Append-only: no uniqueness constraint, redelivered reports become duplicate rows
    op.create_table(
        'vehicle_locations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('vehicle_id', sa.String(length=100), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('timestamp', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    )
    op.create_index('ix_vehicle_locations_vehicle_id', 'vehicle_locations', ['vehicle_id'], unique=False)
    # Serves "latest row for vehicle X" (ORDER BY timestamp DESC LIMIT 1)
    op.create_index('idx_vehicle_locations_vehicle_id_timestamp', 'vehicle_locations', ['vehicle_id', 'timestamp'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_vehicle_locations_vehicle_id_timestamp', table_name='vehicle_locations')
    op.drop_index('ix_vehicle_locations_vehicle_id', table_name='vehicle_locations')
    op.drop_table('vehicle_locations')
