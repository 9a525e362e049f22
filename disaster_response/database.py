import logging

from sqlalchemy import create_engine, text
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker

logger = logging.getLogger(__name__)

# All models inherit from this
Base = declarative_base()


def build_session_factory(database_url: str, **engine_kwargs):
    # 1. Create the Engine (the connection pool). Nothing connects until first use.
    engine = create_engine(database_url, pool_pre_ping=True, **engine_kwargs)

    # 2. Create the Session (the 'handle' for database transactions)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_database(session_factory) -> bool:
    """Create PostGIS + tables and seed sample disasters.

    Returns False when the database is unreachable; the API then serves the
    in-memory fixtures instead of refusing to start.
    """
    from . import fixtures, models

    engine = session_factory.kw["bind"]
    try:
        with engine.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS postgis"))
        Base.metadata.create_all(bind=engine)
    except Exception as exc:
        logger.warning("Database initialisation failed, using mock data mode: %s", exc)
        return False

    db = session_factory()
    try:
        if db.query(models.Disaster.id).first() is not None:
            logger.info("Sample data already exists, skipping")
            return True

        for sample in fixtures.sample_disasters():
            db.add(models.Disaster.from_schema(sample))
        db.commit()
        logger.info("Sample data inserted")
    except Exception as exc:
        db.rollback()
        logger.error("Error inserting sample data: %s", exc)
    finally:
        db.close()

    return True
