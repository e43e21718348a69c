"""
Database layer for RuleVault version history using SQLAlchemy.
Supports SQLite (default) and PostgreSQL.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    create_engine,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import (
    BreachRecord,
    ChangeSummary,
    RuleRecord,
    VersionRecord,
    VersionStatus,
)

Base = declarative_base()


class VersionModel(Base):
    __tablename__ = "versions"

    ordinal = Column(Integer, primary_key=True, autoincrement=False)
    id = Column(String(36), nullable=False, unique=True)
    label = Column(String(255), nullable=False)
    filename = Column(String(255), nullable=False)
    upload_date = Column(Date, nullable=False)
    rule_count = Column(Integer, nullable=False, default=0)
    status = Column(String(50), nullable=False, default="current")
    changes = Column(JSON, default=dict)
    rules = Column(JSON, default=list)
    compliance_score = Column(Float, nullable=True)
    breaches = Column(JSON, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (Index("idx_versions_status", "status"),)

    def to_record(self) -> VersionRecord:
        return VersionRecord(
            id=self.id,
            ordinal=self.ordinal,
            label=self.label,
            filename=self.filename,
            upload_date=self.upload_date,
            rule_count=self.rule_count,
            status=VersionStatus(self.status),
            changes=ChangeSummary.from_dict(self.changes or {}),
            rules=[RuleRecord.from_dict(r) for r in self.rules or []],
            compliance_score=self.compliance_score,
            breaches=[BreachRecord.from_dict(b) for b in self.breaches or []],
        )


class Database:
    """Database interface for the version history."""

    def __init__(self, database_url: str):
        self.database_url = database_url

        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False

        self.engine = create_engine(
            database_url,
            connect_args=connect_args,
            poolclass=StaticPool if database_url.startswith("sqlite") else None,
        )
        self.SessionLocal = sessionmaker(bind=self.engine)

    def create_tables(self):
        """Create all tables."""
        Base.metadata.create_all(self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    def list_versions(self, session: Session) -> List[VersionModel]:
        return session.query(VersionModel).order_by(VersionModel.ordinal).all()

    def record_commit(
        self,
        session: Session,
        record: VersionRecord,
        demoted_ordinal: Optional[int] = None,
    ) -> VersionModel:
        """Insert a new current version and archive its predecessor in one transaction."""
        try:
            if demoted_ordinal is not None:
                session.query(VersionModel).filter(
                    VersionModel.ordinal == demoted_ordinal
                ).update({"status": VersionStatus.ARCHIVED.value})
            data = record.to_dict()
            model = VersionModel(
                ordinal=record.ordinal,
                id=record.id,
                label=record.label,
                filename=record.filename,
                upload_date=record.upload_date,
                rule_count=record.rule_count,
                status=record.status.value,
                changes=data["changes"],
                rules=data["rules"],
                compliance_score=record.compliance_score,
                breaches=data["breaches"],
            )
            session.add(model)
            session.commit()
        except Exception:
            session.rollback()
            raise
        session.refresh(model)
        return model


_database: Optional[Database] = None


def get_database(database_url: str = "sqlite:///./rulevault.db") -> Database:
    """Get or create the database instance."""
    global _database
    if _database is None:
        _database = Database(database_url)
        _database.create_tables()
    return _database
