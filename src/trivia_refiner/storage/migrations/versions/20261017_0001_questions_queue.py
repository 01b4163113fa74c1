"""Question queue baseline: create table or add queue columns to an imported one."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None

_QUEUE_COLUMNS = (
    ("processing_status", sa.String(), "unprocessed"),
    ("claim_token", sa.String(), None),
    ("claimed_by", sa.String(), None),
    ("updated_at", sa.DateTime(timezone=True), None),
)

_LEGACY_STATUS_MAP = {
    "processing": "claimed",
    "completed": "done",
}


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if not inspector.has_table("questions"):
        _create_questions_table()
    else:
        _add_queue_columns(inspector)

    index_names = {index["name"] for index in sa.inspect(bind).get_indexes("questions")}
    if "idx_processing_status" not in index_names:
        op.create_index("idx_processing_status", "questions", ["processing_status"])


def downgrade() -> None:
    op.drop_index("idx_processing_status", table_name="questions")
    with op.batch_alter_table("questions") as batch_op:
        for name, _, _ in reversed(_QUEUE_COLUMNS):
            batch_op.drop_column(name)


def _create_questions_table() -> None:
    op.create_table(
        "questions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("round", sa.Integer(), nullable=True),
        sa.Column("clue_value", sa.Integer(), nullable=True),
        sa.Column("daily_double_value", sa.Integer(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("comments", sa.String(), nullable=True),
        sa.Column("question", sa.Text(), nullable=True),
        sa.Column("a", sa.String(), nullable=True),
        sa.Column("b", sa.String(), nullable=True),
        sa.Column("c", sa.String(), nullable=True),
        sa.Column("d", sa.String(), nullable=True),
        sa.Column("air_date", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("original_question", sa.Text(), nullable=True),
        sa.Column("metadata", sa.Text(), nullable=True),
        sa.Column(
            "processing_status",
            sa.String(),
            nullable=False,
            server_default="unprocessed",
        ),
        sa.Column("claim_token", sa.String(), nullable=True),
        sa.Column("claimed_by", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )


def _add_queue_columns(inspector: sa.Inspector) -> None:
    existing = {column["name"] for column in inspector.get_columns("questions")}
    had_status = "processing_status" in existing
    for name, column_type, default in _QUEUE_COLUMNS:
        if name in existing:
            continue
        op.add_column(
            "questions",
            sa.Column(name, column_type, nullable=True, server_default=default),
        )

    if had_status:
        for legacy, current in _LEGACY_STATUS_MAP.items():
            op.execute(
                sa.text(
                    "UPDATE questions SET processing_status = :current "
                    "WHERE processing_status = :legacy",
                ).bindparams(current=current, legacy=legacy),
            )
        return

    # Rows that already carry distractors were rewritten before the queue existed.
    op.execute(
        "UPDATE questions SET processing_status = CASE "
        "WHEN b IS NOT NULL AND TRIM(b) != '' THEN 'done' "
        "ELSE 'unprocessed' END",
    )
