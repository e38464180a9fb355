"""initial ledger schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence
from datetime import datetime

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str, *, nullable: bool) -> sa.Column[datetime]:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    """Create runs, test records, recommendations, the atom ledger and conflicts."""
    op.create_table(
        "reconciliation_run",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("run_id", sa.String(length=32), nullable=False),
        sa.Column("root_directory", sa.String(), nullable=False),
        sa.Column("mode", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("delta_baseline_run_id", sa.String(length=32), nullable=True),
        sa.Column("delta_baseline_commit_hash", sa.String(), nullable=True),
        sa.Column("current_commit_hash", sa.String(), nullable=True),
        sa.Column("options", sa.Text(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("usage", sa.Text(), nullable=False),
        sa.Column("patch_ops", sa.Text(), nullable=False),
        sa.Column("errors", sa.Text(), nullable=False),
        sa.Column("warnings", sa.Text(), nullable=False),
        sa.Column("phases_completed", sa.Text(), nullable=False),
        sa.Column("applied_decision_keys", sa.Text(), nullable=False),
        sa.Column("review_comments", sa.Text(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        _timestamp("created_at", nullable=False),
        _timestamp("updated_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        sa.CheckConstraint("mode IN ('full-scan', 'delta')", name="ck_reconciliation_run_mode"),
        sa.ForeignKeyConstraint(
            ["delta_baseline_run_id"],
            ["reconciliation_run.run_id"],
            name="fk_reconciliation_run_delta_baseline_run_id_reconciliation_run",
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_reconciliation_run"),
        sa.UniqueConstraint("run_id", name="uq_reconciliation_run_run_id"),
    )
    op.create_index(
        "ix_reconciliation_run_root_status",
        "reconciliation_run",
        ["root_directory", "status"],
    )

    op.create_table(
        "atom",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("atom_id", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("source_file_path", sa.String(), nullable=False),
        sa.Column("source_test_name", sa.String(), nullable=False),
        sa.Column("source_line_number", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("observable_outcomes", sa.Text(), nullable=False),
        sa.Column("source_run_id", sa.String(length=32), nullable=True),
        sa.Column("superseded_by", sa.String(), nullable=True),
        _timestamp("created_at", nullable=False),
        _timestamp("superseded_at", nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_atom"),
        sa.UniqueConstraint("atom_id", name="uq_atom_atom_id"),
    )

    op.create_table(
        "molecule",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("molecule_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("atom_ids", sa.Text(), nullable=False),
        sa.Column("source_run_id", sa.String(length=32), nullable=True),
        _timestamp("created_at", nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_molecule"),
        sa.UniqueConstraint("molecule_id", name="uq_molecule_molecule_id"),
    )

    op.create_table(
        "atom_recommendation",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("run_id", sa.String(length=32), nullable=False),
        sa.Column("temp_id", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(), nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False),
        sa.Column("source_file_path", sa.String(), nullable=False),
        sa.Column("source_test_name", sa.String(), nullable=False),
        sa.Column("source_line_number", sa.Integer(), nullable=True),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("observable_outcomes", sa.Text(), nullable=False),
        sa.Column("related_docs", sa.Text(), nullable=False),
        sa.Column("ambiguity_reasons", sa.Text(), nullable=False),
        sa.Column("quality_score", sa.Integer(), nullable=True),
        sa.Column("quality_issues", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("atom_id", sa.String(), nullable=True),
        _timestamp("created_at", nullable=False),
        _timestamp("accepted_at", nullable=True),
        _timestamp("rejected_at", nullable=True),
        sa.CheckConstraint(
            "confidence BETWEEN 0 AND 100", name="ck_atom_recommendation_confidence"
        ),
        sa.CheckConstraint(
            "quality_score IS NULL OR quality_score BETWEEN 0 AND 100",
            name="ck_atom_recommendation_quality_score",
        ),
        sa.ForeignKeyConstraint(
            ["run_id"],
            ["reconciliation_run.run_id"],
            name="fk_atom_recommendation_run_id_reconciliation_run",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["atom_id"],
            ["atom.atom_id"],
            name="fk_atom_recommendation_atom_id_atom",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_atom_recommendation"),
        sa.UniqueConstraint("run_id", "temp_id", name="uq_atom_recommendation_run_id"),
    )

    op.create_table(
        "molecule_recommendation",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("run_id", sa.String(length=32), nullable=False),
        sa.Column("temp_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("atom_temp_ids", sa.Text(), nullable=False),
        sa.Column("confidence", sa.Integer(), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("molecule_id", sa.String(), nullable=True),
        _timestamp("created_at", nullable=False),
        _timestamp("accepted_at", nullable=True),
        _timestamp("rejected_at", nullable=True),
        sa.ForeignKeyConstraint(
            ["run_id"],
            ["reconciliation_run.run_id"],
            name="fk_molecule_recommendation_run_id_reconciliation_run",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["molecule_id"],
            ["molecule.molecule_id"],
            name="fk_molecule_recommendation_molecule_id_molecule",
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_molecule_recommendation"),
        sa.UniqueConstraint("run_id", "temp_id", name="uq_molecule_recommendation_run_id"),
    )

    op.create_table(
        "test_record",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("run_id", sa.String(length=32), nullable=False),
        sa.Column("file_path", sa.String(), nullable=False),
        sa.Column("test_name", sa.String(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=True),
        sa.Column("content_hash", sa.String(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("atom_recommendation_id", sa.Uuid(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("had_atom_annotation", sa.Boolean(), nullable=False),
        sa.Column("linked_atom_id", sa.String(), nullable=True),
        sa.Column("is_delta_change", sa.Boolean(), nullable=False),
        _timestamp("created_at", nullable=False),
        _timestamp("resolved_at", nullable=True),
        sa.ForeignKeyConstraint(
            ["run_id"],
            ["reconciliation_run.run_id"],
            name="fk_test_record_run_id_reconciliation_run",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["atom_recommendation_id"],
            ["atom_recommendation.id"],
            name="fk_test_record_atom_recommendation_id_atom_recommendation",
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_test_record"),
        sa.UniqueConstraint("run_id", "file_path", "test_name", name="uq_test_record_run_id"),
    )
    op.create_index("ix_test_record_file_test", "test_record", ["file_path", "test_name"])

    op.create_table(
        "conflict_record",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("conflict_type", sa.String(length=32), nullable=False),
        sa.Column("atom_id_a", sa.String(), nullable=False),
        sa.Column("atom_id_b", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("test_record_id", sa.Uuid(), nullable=True),
        sa.Column("similarity_score", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("resolution", sa.Text(), nullable=True),
        _timestamp("created_at", nullable=False),
        _timestamp("resolved_at", nullable=True),
        sa.CheckConstraint("atom_id_a <> atom_id_b", name="ck_conflict_record_distinct_atoms"),
        sa.ForeignKeyConstraint(
            ["atom_id_a"],
            ["atom.atom_id"],
            name="fk_conflict_record_atom_id_a_atom",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["atom_id_b"],
            ["atom.atom_id"],
            name="fk_conflict_record_atom_id_b_atom",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["test_record_id"],
            ["test_record.id"],
            name="fk_conflict_record_test_record_id_test_record",
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_conflict_record"),
    )
    op.create_index(
        "ix_conflict_record_pair",
        "conflict_record",
        ["atom_id_a", "atom_id_b", "conflict_type"],
    )


def downgrade() -> None:
    """Drop every ledger table."""
    op.drop_index("ix_conflict_record_pair", table_name="conflict_record")
    op.drop_table("conflict_record")
    op.drop_index("ix_test_record_file_test", table_name="test_record")
    op.drop_table("test_record")
    op.drop_table("molecule_recommendation")
    op.drop_table("atom_recommendation")
    op.drop_table("molecule")
    op.drop_table("atom")
    op.drop_index("ix_reconciliation_run_root_status", table_name="reconciliation_run")
    op.drop_table("reconciliation_run")
