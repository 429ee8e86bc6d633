"""
Database module for CERFA generation.
Uses PostgreSQL with SQLAlchemy ORM.

Holds the contracts CERFAs are generated from and the append-only history of
generated documents ('cerfa_pdfs'). Generation records are never updated or
deleted once written.
"""

import logging
import os
import uuid
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from sqlalchemy import JSON, Column, Date, DateTime, Index, String, create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

# Load environment variables
load_dotenv(Path(__file__).parent / ".env")

# Logger setup
logger = logging.getLogger("database")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s")
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

# Database URL handling
DATABASE_URL = os.environ.get("DATABASE_URL")
if DATABASE_URL and DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# SQLAlchemy setup
Base = declarative_base()

# Engine and session (lazy initialization)
_engine = None
_SessionLocal = None


class PersistenceError(Exception):
    """A generation record could not be written."""


class ImmutableRecordError(PersistenceError):
    """An attempt was made to change or delete a generation record."""


def configure_database(url: Optional[str]) -> None:
    """Point the module at another database and drop the current engine."""
    global DATABASE_URL, _engine, _SessionLocal
    if url and url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)

    if _engine is not None:
        _engine.dispose()
    DATABASE_URL = url
    _engine = None
    _SessionLocal = None


def get_engine():
    """Get or create SQLAlchemy engine."""
    global _engine
    if _engine is None:
        if not DATABASE_URL:
            raise ValueError("DATABASE_URL environment variable not set")
        if DATABASE_URL.startswith("sqlite"):
            _engine = create_engine(DATABASE_URL)
        else:
            _engine = create_engine(
                DATABASE_URL,
                pool_pre_ping=True,
                pool_size=5,
                max_overflow=10
            )
    return _engine


def get_session() -> Session:
    """Get a new database session."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _SessionLocal()


def _new_id() -> str:
    return str(uuid.uuid4())


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None


# ============================================================================
# Models
# ============================================================================

class Contract(Base):
    """Apprenticeship contract, synced from the contract provider."""
    __tablename__ = "contracts"

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(36), nullable=False, index=True)
    student_id = Column(String(36))
    external_id = Column(String(255))  # ID at the contract provider
    contract_number = Column(String(255))
    status = Column(String(50), default="draft")
    start_date = Column(Date)
    end_date = Column(Date)
    employer_name = Column(String(512))
    cfa_name = Column(String(512))
    cached_data = Column(JSON)  # Last provider payload
    last_synced_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "student_id": self.student_id,
            "external_id": self.external_id,
            "contract_number": self.contract_number,
            "status": self.status,
            "start_date": _isoformat(self.start_date),
            "end_date": _isoformat(self.end_date),
            "employer_name": self.employer_name,
            "cfa_name": self.cfa_name,
            "cached_data": self.cached_data,
            "last_synced_at": _isoformat(self.last_synced_at),
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }


class CerfaPdf(Base):
    """One generated CERFA document. Append-only."""
    __tablename__ = "cerfa_pdfs"

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(36), nullable=False)
    contract_id = Column(String(36), nullable=False)
    user_id = Column(String(255), nullable=False)
    form_version = Column(String(50), nullable=False)  # e.g. '10103_10'
    storage_url = Column(String(2048), nullable=False)
    object_path = Column(String(1024), nullable=False)
    field_mapping_version = Column(String(50), nullable=False)
    generated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_cerfa_pdfs_contract_generated", "contract_id", "generated_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "contract_id": self.contract_id,
            "user_id": self.user_id,
            "form_version": self.form_version,
            "storage_url": self.storage_url,
            "object_path": self.object_path,
            "field_mapping_version": self.field_mapping_version,
            "generated_at": _isoformat(self.generated_at),
            "created_at": _isoformat(self.created_at),
        }


@event.listens_for(CerfaPdf, "before_update")
def _reject_record_update(mapper, connection, target):
    raise ImmutableRecordError(f"Generation record {target.id} cannot be modified")


@event.listens_for(CerfaPdf, "before_delete")
def _reject_record_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Generation record {target.id} cannot be deleted")


# ============================================================================
# Database Operations
# ============================================================================

def init_db():
    """Initialize database tables."""
    engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info("Database tables created/verified")


# ============================================================================
# Contract Operations
# ============================================================================

def get_contract(contract_id: str) -> Optional[Dict[str, Any]]:
    """Get a contract by ID."""
    session = get_session()
    try:
        contract = session.get(Contract, contract_id)
        return contract.to_dict() if contract else None
    finally:
        session.close()


def create_contract(
    tenant_id: str,
    contract_number: Optional[str] = None,
    status: str = "draft",
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    employer_name: Optional[str] = None,
    cfa_name: Optional[str] = None,
    cached_data: Optional[Dict[str, Any]] = None,
    student_id: Optional[str] = None,
    external_id: Optional[str] = None,
    contract_id: Optional[str] = None
) -> Dict[str, Any]:
    """Insert a contract and return it as a dict."""
    session = get_session()
    try:
        contract = Contract(
            id=contract_id or _new_id(),
            tenant_id=tenant_id,
            student_id=student_id,
            external_id=external_id,
            contract_number=contract_number,
            status=status,
            start_date=start_date,
            end_date=end_date,
            employer_name=employer_name,
            cfa_name=cfa_name,
            cached_data=cached_data,
            last_synced_at=datetime.utcnow() if cached_data else None
        )
        session.add(contract)
        session.commit()
        logger.info(f"Saved contract: {contract.id}")
        return contract.to_dict()
    except Exception as e:
        session.rollback()
        logger.error(f"Failed to save contract: {e}")
        raise
    finally:
        session.close()


# ============================================================================
# Generation Record Operations
# ============================================================================

def create_generation_record(
    tenant_id: str,
    contract_id: str,
    user_id: str,
    form_version: str,
    reference: str,
    url: str,
    field_mapping_version: str,
    generated_at: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Write the record of one generated document.

    Args:
        tenant_id: Owning tenant
        contract_id: Contract the document was generated for
        user_id: User who triggered the generation
        form_version: CERFA form version, e.g. '10103_10'
        reference: Object key in the document store
        url: Download URL
        field_mapping_version: Field map version used to fill the form
        generated_at: Generation time (default: now, UTC)

    Returns:
        The created record as a dict

    Raises:
        PersistenceError: If the record cannot be written
    """
    try:
        session = get_session()
    except (ValueError, SQLAlchemyError) as e:
        logger.error(f"Failed to open a session for the generation record: {e}")
        raise PersistenceError(f"Failed to save generation record for contract {contract_id}: {e}") from e

    try:
        record = CerfaPdf(
            id=_new_id(),
            tenant_id=tenant_id,
            contract_id=contract_id,
            user_id=user_id,
            form_version=form_version,
            storage_url=url,
            object_path=reference,
            field_mapping_version=field_mapping_version,
            generated_at=generated_at or datetime.utcnow()
        )
        session.add(record)
        session.commit()
        logger.info(f"Saved generation record {record.id} for contract {contract_id}")
        return record.to_dict()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Failed to save generation record: {e}")
        raise PersistenceError(f"Failed to save generation record for contract {contract_id}: {e}") from e
    finally:
        session.close()


def list_generation_records(contract_id: str) -> List[Dict[str, Any]]:
    """List the generation records of a contract, newest first."""
    session = get_session()
    try:
        records = session.query(CerfaPdf).filter_by(
            contract_id=contract_id
        ).order_by(
            CerfaPdf.generated_at.desc(),
            CerfaPdf.created_at.desc()
        ).all()
        return [r.to_dict() for r in records]
    finally:
        session.close()


# ============================================================================
# Utility Functions
# ============================================================================

def test_connection() -> bool:
    """Test database connection."""
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection successful")
        return True
    except (ValueError, SQLAlchemyError) as e:
        logger.error(f"Database connection failed: {e}")
        return False


if __name__ == "__main__":
    # Test connection
    if test_connection():
        print("Database connection successful!")
        init_db()
        print("Tables created/verified!")
    else:
        print("Database connection failed!")
