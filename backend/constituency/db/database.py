"""
Database models and connection management

This module defines SQLAlchemy models for all database tables and provides
database connection management and initialization.

Models:
- Staff: Administrative users, resolved from the authenticated email
- SprVoterVersion: A named snapshot of the SPR electoral roll
- SprVoter: Individual voter rows imported from SPR CSV files
- Household / HouseholdMember: Household records used as the matching target
- GeocodingJob: Tracks background geocoding progress per voter version
- Reference tables: Gender, Religion, Race, District, Parliament, Dun,
  Locality, PollingStation, Zone, Cawangan, Village

Example:
    ```python
    from constituency.db.database import AsyncSessionLocal, SprVoter

    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(SprVoter).where(SprVoter.version_id == 3)
        )
        voters = result.scalars().all()
    ```
"""
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column, String, Float, DateTime, Integer, Text, Index, text, Boolean, ForeignKey
)
from datetime import datetime
import logging
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

Base = declarative_base()

ACTIVE_JOB_STATUSES = ("pending", "running", "paused")
TERMINAL_JOB_STATUSES = ("completed", "failed")
REFERENCE_ACTIVE_WHERE = "version_id IS NULL AND status IN ('pending', 'running', 'paused')"


class Staff(Base):
    """Staff member with an administrative role"""
    __tablename__ = "staff"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, index=True)
    phone = Column(String(20))
    role = Column(String, default="staff", nullable=False)  # adun, super_admin, zone_leader, staff_manager, staff
    status = Column(String, default="active", nullable=False)  # active, inactive
    zone_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SprVoterVersion(Base):
    """A versioned snapshot of the electoral roll"""
    __tablename__ = "spr_voter_versions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text)
    election_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=False, nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("staff.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SprVoter(Base):
    """Stored SPR voter row"""
    __tablename__ = "spr_voters"

    id = Column(Integer, primary_key=True, index=True)
    version_id = Column(Integer, ForeignKey("spr_voter_versions.id", ondelete="CASCADE"), nullable=False)
    no_siri = Column(Integer)  # NoSiri
    no_kp = Column(String(20))  # NoKp
    no_kp_lama = Column(String(20))  # NoKpLama
    nama = Column(Text, nullable=False)  # Nama
    no_hp = Column(String(20))  # NoHP
    jantina = Column(String(1))  # Jantina
    tarikh_lahir = Column(DateTime)  # TarikhLahir
    bangsa = Column(Text)  # Bangsa
    agama = Column(Text)  # agama
    kategori_kaum = Column(Text)  # Kategorikaum
    no_rumah = Column(Text)  # NoRumah
    alamat = Column(Text)  # alamat
    poskod = Column(String(10))  # poskod
    daerah = Column(Text)  # daerah
    kod_lokaliti = Column(String(50))  # KodLokaliti
    nama_parlimen = Column(Text)  # NamaParlimen
    nama_dun = Column(Text)  # NamaDun
    nama_pdm = Column(Text)  # NamaPDM
    nama_lokaliti = Column(Text)  # NamaLokaliti
    kategori_undi = Column(Text)  # KategoriUNDI
    nama_tm = Column(Text)  # NamaTM
    masa_undi = Column(Text)  # MasaUndi
    saluran = Column(Integer)  # Saluran
    household_member_id = Column(
        Integer, ForeignKey("household_members.id", ondelete="SET NULL"), nullable=True
    )
    voting_support_status = Column(String, nullable=True)  # white, black, red
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('spr_voters_version_idx', 'version_id'),
        Index('spr_voters_no_kp_idx', 'no_kp'),
        Index('spr_voters_nama_idx', 'nama'),
        Index('spr_voters_household_member_idx', 'household_member_id'),
        Index('spr_voters_kod_lokaliti_idx', 'kod_lokaliti'),
        Index('spr_voters_location_idx', 'lat', 'lng'),
    )


class Household(Base):
    """Household record owned by the household-management subsystem"""
    __tablename__ = "households"

    id = Column(Integer, primary_key=True, index=True)
    head_name = Column(Text, nullable=False)
    head_ic_number = Column(String(20))
    head_phone = Column(String(20))
    address = Column(Text, nullable=False)
    area = Column(Text)
    zone_id = Column(Integer, ForeignKey("zones.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class HouseholdMember(Base):
    """Member of a household; the join target for voter matching"""
    __tablename__ = "household_members"

    id = Column(Integer, primary_key=True, index=True)
    household_id = Column(Integer, ForeignKey("households.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(Text, nullable=False)
    ic_number = Column(String(20), index=True)
    relationship = Column(String, default="other", nullable=False)  # head, spouse, child, parent, sibling, other
    locality = Column(Text)
    phone = Column(String(20))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class GeocodingJob(Base):
    """Track geocoding job progress for a voter version or a reference table

    The voter-named counters and cursor count parliaments or localities for
    reference targets.
    """
    __tablename__ = "geocoding_jobs"

    id = Column(Integer, primary_key=True, index=True)
    target = Column(String, default="voters", server_default="voters", nullable=False)  # voters, parliaments, localities
    # Set only for voter jobs
    version_id = Column(Integer, ForeignKey("spr_voter_versions.id", ondelete="CASCADE"), nullable=True)
    status = Column(String, default="pending", nullable=False)  # pending, running, paused, completed, failed
    total_voters = Column(Integer, default=0, nullable=False)
    processed_voters = Column(Integer, default=0, nullable=False)
    geocoded_count = Column(Integer, default=0, nullable=False)
    failed_count = Column(Integer, default=0, nullable=False)
    skipped_count = Column(Integer, default=0, nullable=False)
    last_voter_id = Column(Integer, nullable=True)  # Resume cursor: highest voter id processed
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_by = Column(Integer, ForeignKey("staff.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('geocoding_jobs_version_idx', 'version_id'),
        Index('geocoding_jobs_status_idx', 'status'),
        Index('geocoding_jobs_created_at_idx', 'created_at'),
        # One active job per version
        Index(
            'geocoding_jobs_one_active_per_version',
            'version_id',
            unique=True,
            sqlite_where=text("status IN ('pending', 'running', 'paused')"),
            postgresql_where=text("status IN ('pending', 'running', 'paused')"),
        ),
        # One active job per reference table
        Index(
            'geocoding_jobs_one_active_per_target',
            'target',
            unique=True,
            sqlite_where=text(REFERENCE_ACTIVE_WHERE),
            postgresql_where=text(REFERENCE_ACTIVE_WHERE),
        ),
    )


# Reference data tables

class Gender(Base):
    __tablename__ = "genders"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False, unique=True)
    code = Column(String(10))
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Religion(Base):
    __tablename__ = "religions"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False, unique=True)
    code = Column(String(20))
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Race(Base):
    __tablename__ = "races"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False, unique=True)
    code = Column(String(20))
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class District(Base):
    __tablename__ = "districts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False, unique=True)
    code = Column(String(20), index=True)
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Parliament(Base):
    __tablename__ = "parliaments"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False, unique=True)
    code = Column(String(20), index=True)
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Dun(Base):
    """State constituency; has no is_active column"""
    __tablename__ = "duns"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False)
    code = Column(String(20), index=True)
    description = Column(Text)
    parliament_id = Column(Integer, ForeignKey("parliaments.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Locality(Base):
    __tablename__ = "localities"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False, index=True)
    code = Column(String(50), index=True)
    parliament_id = Column(Integer, ForeignKey("parliaments.id", ondelete="SET NULL"), nullable=True, index=True)
    dun_id = Column(Integer, ForeignKey("duns.id", ondelete="SET NULL"), nullable=True, index=True)
    district_id = Column(Integer, ForeignKey("districts.id", ondelete="SET NULL"), nullable=True, index=True)
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PollingStation(Base):
    __tablename__ = "polling_stations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False, unique=True)
    code = Column(String(50), index=True)
    locality_id = Column(Integer, ForeignKey("localities.id", ondelete="SET NULL"), nullable=True, index=True)
    address = Column(Text)
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Zone(Base):
    __tablename__ = "zones"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(Text, nullable=False)
    code = Column(String(20))
    description = Column(Text)
    dun_id = Column(Integer, ForeignKey("duns.id", ondelete="SET NULL"), nullable=True, index=True)
    polling_station_id = Column(
        Integer, ForeignKey("polling_stations.id", ondelete="SET NULL"), nullable=True
    )
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Cawangan(Base):
    __tablename__ = "cawangan"

    id = Column(Integer, primary_key=True, index=True)
    zone_id = Column(Integer, ForeignKey("zones.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(Text, nullable=False)
    code = Column(String(20))
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Village(Base):
    __tablename__ = "villages"

    id = Column(Integer, primary_key=True, index=True)
    zone_id = Column(Integer, ForeignKey("zones.id", ondelete="SET NULL"), nullable=True, index=True)
    cawangan_id = Column(Integer, ForeignKey("cawangan.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(Text, nullable=False)
    code = Column(String(20))
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# Database setup - use centralized config
from constituency.config import config

DATABASE_URL = config.DATABASE_URL


def async_database_url(url: str) -> str:
    """Select the async driver for driverless ``sqlite://`` and ``postgresql://`` URLs"""
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://"):]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


if DATABASE_URL.startswith("sqlite"):
    # SQLite works better with smaller pools due to file-based locking
    engine = create_async_engine(
        async_database_url(DATABASE_URL),
        echo=False,
        future=True,
        pool_pre_ping=True,
        pool_size=config.SQLITE_POOL_SIZE,
        max_overflow=config.SQLITE_MAX_OVERFLOW,
        pool_timeout=120.0,
        pool_recycle=3600,
        connect_args={
            "timeout": 120.0,
        }
    )
else:
    engine = create_async_engine(
        async_database_url(DATABASE_URL),
        echo=False,
        future=True,
        pool_pre_ping=True,
        pool_size=config.POSTGRES_POOL_SIZE,
        max_overflow=config.POSTGRES_MAX_OVERFLOW,
        pool_timeout=120.0,
        pool_recycle=3600
    )

AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def get_db():
    """Dependency for getting database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}", exc_info=True)
            raise
        finally:
            await session.close()


async def init_db():
    """Initialize database tables and run Alembic migrations"""
    logger.info("Starting database initialization...")

    logger.info("Running Alembic migrations...")
    try:
        from alembic.config import Config
        from alembic import command
        from pathlib import Path

        # alembic.ini lives in the backend/ directory
        backend_dir = Path(__file__).parent.parent.parent
        alembic_ini_path = backend_dir / "alembic.ini"

        if alembic_ini_path.exists():
            alembic_cfg = Config(str(alembic_ini_path))
            alembic_cfg.set_main_option("script_location", str(backend_dir / "alembic"))
            alembic_cfg.attributes["configure_logger"] = False
            command.upgrade(alembic_cfg, "head")
            logger.info("Alembic migrations completed successfully")
        else:
            logger.warning(f"Alembic config not found at {alembic_ini_path}. Skipping migrations.")
    except Exception as e:
        logger.error(f"Error running Alembic migrations: {e}", exc_info=True)
        logger.warning("Continuing with database initialization despite migration error")

    async with engine.begin() as conn:
        if DATABASE_URL.startswith("sqlite"):
            try:
                logger.info("Configuring WAL mode...")
                await conn.execute(text("PRAGMA journal_mode=WAL"))
                await conn.execute(text("PRAGMA synchronous=NORMAL"))
                await conn.execute(text("PRAGMA busy_timeout=60000"))
                await conn.execute(text("PRAGMA foreign_keys=ON"))
                logger.info("SQLite WAL mode enabled")
            except Exception as e:
                logger.warning(f"Could not configure WAL mode: {e}")

        logger.info("Creating database tables and indexes...")
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialized successfully")

    logger.info("Database initialization complete")

