"""SQLAlchemy mapping metadata for the intent ledger domain model."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from functools import cache
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Dialect,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    orm,
)
from sqlalchemy.orm import composite, configure_mappers

from intentledger.domain.model import (
    Atom,
    AtomRecommendation,
    AtomStatus,
    BudgetUsage,
    ConflictRecord,
    ConflictResolution,
    ConflictStatus,
    ConflictType,
    Molecule,
    MoleculeRecommendation,
    PatchOp,
    ReconciliationRun,
    RecommendationStatus,
    RunMode,
    RunOptions,
    RunStatus,
    RunSummary,
    SourceTestRef,
    TestRecord,
    TestRecordStatus,
    patch_op_from_dict,
    patch_op_to_dict,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]

type JsonValueObject = RunOptions | RunSummary | BudgetUsage


def _enum_values(enum_type: type[StrEnum]) -> list[str]:
    return [member.value for member in enum_type]


def _enum_column_type(enum_type: type[StrEnum]) -> Enum:
    return Enum(enum_type, native_enum=False, values_callable=_enum_values, length=32)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class StringListType(TypeDecorator[list[str]]):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value: list[str] | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(list(value))

    def process_result_value(self, value: str | None, dialect: Dialect) -> list[str]:
        _ = dialect
        if value is None:
            return []
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return []
        return [item for item in cast(list[Any], loaded) if isinstance(item, str)]


class JsonValueType(TypeDecorator[JsonValueObject]):
    """Store a run value object (options, summary, usage) as a JSON document."""

    impl = Text
    cache_ok = True

    def __init__(self, value_type: type[JsonValueObject]) -> None:
        super().__init__()
        self.value_type = value_type

    def process_bind_param(self, value: JsonValueObject | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(value.to_dict(), sort_keys=True)

    def process_result_value(self, value: str | None, dialect: Dialect) -> JsonValueObject:
        _ = dialect
        if value is None:
            return self.value_type()
        loaded = json.loads(value)
        if not isinstance(loaded, dict):
            return self.value_type()
        return self.value_type.from_dict(cast(dict[str, Any], loaded))


class PatchOpListType(TypeDecorator[list[PatchOp]]):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value: list[PatchOp] | None, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps([patch_op_to_dict(op) for op in value])

    def process_result_value(self, value: str | None, dialect: Dialect) -> list[PatchOp]:
        _ = dialect
        if value is None:
            return []
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return []
        return [patch_op_from_dict(item) for item in cast(list[dict[str, Any]], loaded)]


class ConflictResolutionType(TypeDecorator[ConflictResolution]):
    impl = Text
    cache_ok = True

    def process_bind_param(
        self, value: ConflictResolution | None, dialect: Dialect
    ) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(value.to_dict())

    def process_result_value(
        self, value: str | None, dialect: Dialect
    ) -> ConflictResolution | None:
        _ = dialect
        if value is None:
            return None
        return ConflictResolution.from_dict(json.loads(value))


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

reconciliation_run_table = Table(
    "reconciliation_run",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("run_id", String(32), nullable=False, unique=True),
    Column("root_directory", String, nullable=False),
    Column("mode", _enum_column_type(RunMode), nullable=False),
    Column("status", _enum_column_type(RunStatus), nullable=False),
    Column(
        "delta_baseline_run_id",
        String(32),
        ForeignKey("reconciliation_run.run_id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("delta_baseline_commit_hash", String, nullable=True),
    Column("current_commit_hash", String, nullable=True),
    Column("options", JsonValueType(RunOptions), nullable=False),
    Column("summary", JsonValueType(RunSummary), nullable=False),
    Column("usage", JsonValueType(BudgetUsage), nullable=False),
    Column("patch_ops", PatchOpListType, nullable=False),
    Column("errors", StringListType, nullable=False),
    Column("warnings", StringListType, nullable=False),
    Column("phases_completed", StringListType, nullable=False),
    Column("applied_decision_keys", StringListType, nullable=False),
    Column("review_comments", StringListType, nullable=False),
    Column("error_message", Text, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=True),
    Column("completed_at", UTCDateTime, nullable=True),
    CheckConstraint("mode IN ('full-scan', 'delta')", name="mode"),
    Index("ix_reconciliation_run_root_status", "root_directory", "status"),
)

test_record_table = Table(
    "test_record",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column(
        "run_id",
        String(32),
        ForeignKey("reconciliation_run.run_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("file_path", String, nullable=False),
    Column("test_name", String, nullable=False),
    Column("line_number", Integer, nullable=True),
    Column("content_hash", String, nullable=False),
    Column("status", _enum_column_type(TestRecordStatus), nullable=False),
    Column(
        "atom_recommendation_id",
        UUIDColumnType,
        ForeignKey("atom_recommendation.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("rejection_reason", Text, nullable=True),
    Column("had_atom_annotation", Boolean, nullable=False, default=False),
    Column("linked_atom_id", String, nullable=True),
    Column("is_delta_change", Boolean, nullable=False, default=False),
    Column("created_at", UTCDateTime, nullable=False),
    Column("resolved_at", UTCDateTime, nullable=True),
    UniqueConstraint("run_id", "file_path", "test_name"),
    Index("ix_test_record_file_test", "file_path", "test_name"),
)

atom_recommendation_table = Table(
    "atom_recommendation",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column(
        "run_id",
        String(32),
        ForeignKey("reconciliation_run.run_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("temp_id", String, nullable=False),
    Column("description", Text, nullable=False),
    Column("category", String, nullable=False),
    Column("confidence", Integer, nullable=False),
    Column("source_file_path", String, nullable=False),
    Column("source_test_name", String, nullable=False),
    Column("source_line_number", Integer, nullable=True),
    Column("reasoning", Text, nullable=False, default=""),
    Column("observable_outcomes", StringListType, nullable=False),
    Column("related_docs", StringListType, nullable=False),
    Column("ambiguity_reasons", StringListType, nullable=False),
    Column("quality_score", Integer, nullable=True),
    Column("quality_issues", StringListType, nullable=False),
    Column("status", _enum_column_type(RecommendationStatus), nullable=False),
    Column("rejection_reason", Text, nullable=True),
    Column(
        "atom_id",
        String,
        ForeignKey("atom.atom_id", ondelete="RESTRICT"),
        nullable=True,
    ),
    Column("created_at", UTCDateTime, nullable=False),
    Column("accepted_at", UTCDateTime, nullable=True),
    Column("rejected_at", UTCDateTime, nullable=True),
    UniqueConstraint("run_id", "temp_id"),
    CheckConstraint("confidence BETWEEN 0 AND 100", name="confidence"),
    CheckConstraint(
        "quality_score IS NULL OR quality_score BETWEEN 0 AND 100", name="quality_score"
    ),
)

molecule_recommendation_table = Table(
    "molecule_recommendation",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column(
        "run_id",
        String(32),
        ForeignKey("reconciliation_run.run_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("temp_id", String, nullable=False),
    Column("name", String, nullable=False),
    Column("description", Text, nullable=False),
    Column("atom_temp_ids", StringListType, nullable=False),
    Column("confidence", Integer, nullable=False),
    Column("reasoning", Text, nullable=False, default=""),
    Column("status", _enum_column_type(RecommendationStatus), nullable=False),
    Column("rejection_reason", Text, nullable=True),
    Column(
        "molecule_id",
        String,
        ForeignKey("molecule.molecule_id", ondelete="RESTRICT"),
        nullable=True,
    ),
    Column("created_at", UTCDateTime, nullable=False),
    Column("accepted_at", UTCDateTime, nullable=True),
    Column("rejected_at", UTCDateTime, nullable=True),
    UniqueConstraint("run_id", "temp_id"),
)

atom_table = Table(
    "atom",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("atom_id", String, nullable=False, unique=True),
    Column("description", Text, nullable=False),
    Column("category", String, nullable=False),
    Column("source_file_path", String, nullable=False),
    Column("source_test_name", String, nullable=False),
    Column("source_line_number", Integer, nullable=True),
    Column("status", _enum_column_type(AtomStatus), nullable=False),
    Column("observable_outcomes", StringListType, nullable=False),
    Column("source_run_id", String(32), nullable=True),
    Column("superseded_by", String, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("superseded_at", UTCDateTime, nullable=True),
)

molecule_table = Table(
    "molecule",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("molecule_id", String, nullable=False, unique=True),
    Column("name", String, nullable=False),
    Column("description", Text, nullable=False),
    Column("atom_ids", StringListType, nullable=False),
    Column("source_run_id", String(32), nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
)

conflict_record_table = Table(
    "conflict_record",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("conflict_type", _enum_column_type(ConflictType), nullable=False),
    Column(
        "atom_id_a",
        String,
        ForeignKey("atom.atom_id", ondelete="RESTRICT"),
        nullable=False,
    ),
    Column(
        "atom_id_b",
        String,
        ForeignKey("atom.atom_id", ondelete="RESTRICT"),
        nullable=False,
    ),
    Column("description", Text, nullable=False),
    Column(
        "test_record_id",
        UUIDColumnType,
        ForeignKey("test_record.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("similarity_score", Integer, nullable=True),
    Column("status", _enum_column_type(ConflictStatus), nullable=False),
    Column("resolution", ConflictResolutionType, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("resolved_at", UTCDateTime, nullable=True),
    CheckConstraint("atom_id_a <> atom_id_b", name="distinct_atoms"),
    Index("ix_conflict_record_pair", "atom_id_a", "atom_id_b", "conflict_type"),
)


@cache
def start_mappers() -> orm.registry:
    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(ReconciliationRun, reconciliation_run_table)
    mapper_registry.map_imperatively(TestRecord, test_record_table)

    mapper_registry.map_imperatively(
        AtomRecommendation,
        atom_recommendation_table,
        properties={
            "source_test": composite(
                SourceTestRef,
                atom_recommendation_table.c.source_file_path,
                atom_recommendation_table.c.source_test_name,
                atom_recommendation_table.c.source_line_number,
            ),
        },
    )
    mapper_registry.map_imperatively(MoleculeRecommendation, molecule_recommendation_table)

    mapper_registry.map_imperatively(
        Atom,
        atom_table,
        properties={
            "source_test": composite(
                SourceTestRef,
                atom_table.c.source_file_path,
                atom_table.c.source_test_name,
                atom_table.c.source_line_number,
            ),
        },
    )
    mapper_registry.map_imperatively(Molecule, molecule_table)
    mapper_registry.map_imperatively(ConflictRecord, conflict_record_table)

    configure_mappers()
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
