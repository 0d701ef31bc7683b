"""Create playlist_jobs and rate_limit_state tables."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

from curator.migrations import helpers

revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


_JOBS = "playlist_jobs"
_RATE_LIMIT = "rate_limit_state"
_JOB_INDEXES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("ix_playlist_jobs_status", ("status",)),
    ("ix_playlist_jobs_status_id", ("status", "id")),
    ("ix_playlist_jobs_lookup", ("search_city", "search_date", "number_of_songs")),
)


def upgrade() -> None:
    inspector = helpers.get_inspector()
    if not helpers.has_table(inspector, _JOBS):
        op.create_table(
            _JOBS,
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("status", sa.String(length=16), nullable=False),
            sa.Column("search_city", sa.String(length=255), nullable=False),
            sa.Column("latitude", sa.Float(), nullable=False),
            sa.Column("longitude", sa.Float(), nullable=False),
            sa.Column("search_date", sa.String(length=10), nullable=False),
            sa.Column("number_of_songs", sa.Integer(), nullable=False),
            sa.Column("excluded_genres", sa.JSON(), nullable=False),
            sa.Column("min_start_hour", sa.Integer(), nullable=False),
            sa.Column("max_start_hour", sa.Integer(), nullable=False),
            sa.Column("owner_id", sa.String(length=64), nullable=True),
            sa.Column("log_history", sa.JSON(), nullable=False),
            sa.Column("total_artists", sa.Integer(), nullable=False),
            sa.Column("processed_artists", sa.Integer(), nullable=False),
            sa.Column("events_data", sa.JSON(), nullable=True),
            sa.Column("playlist_id", sa.String(length=64), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint(
                "status IN ('pending','building','complete','failed')",
                name="ck_playlist_jobs_status_valid",
            ),
            sa.CheckConstraint(
                "number_of_songs > 0", name="ck_playlist_jobs_songs_positive"
            ),
            sa.CheckConstraint(
                "min_start_hour >= 0 AND max_start_hour <= 24 "
                "AND min_start_hour < max_start_hour",
                name="ck_playlist_jobs_hour_window",
            ),
        )
        inspector = helpers.get_inspector()
    for index_name, columns in _JOB_INDEXES:
        helpers.create_index_if_missing(inspector, _JOBS, index_name, columns)

    if not helpers.has_table(inspector, _RATE_LIMIT):
        op.create_table(
            _RATE_LIMIT,
            sa.Column("provider", sa.String(length=32), primary_key=True),
            sa.Column(
                "rate_limit_expires_at", sa.DateTime(timezone=True), nullable=False
            ),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        )


def downgrade() -> None:
    inspector = helpers.get_inspector()
    helpers.drop_table_if_exists(inspector, _RATE_LIMIT)
    helpers.drop_table_if_exists(inspector, _JOBS)
