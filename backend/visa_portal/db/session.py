from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
import importlib.util
from visa_portal.core.config import settings

# DATABASE_URL must be set. Postgres in deployment; SQLite is accepted for local runs and tests.
SQLALCHEMY_DATABASE_URL = settings.database_url
if not SQLALCHEMY_DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable must be set")

# A plain 'postgresql://' (or legacy 'postgres://') URL makes SQLAlchemy load psycopg2.
# Only psycopg v3 is a dependency, so inject its driver when psycopg2 is absent.
psycopg2_present = importlib.util.find_spec("psycopg2") is not None

if not psycopg2_present and SQLALCHEMY_DATABASE_URL.startswith(("postgres://", "postgresql://")):
    # Normalize legacy prefix 'postgres://' -> 'postgresql://'
    if SQLALCHEMY_DATABASE_URL.startswith("postgres://"):
        SQLALCHEMY_DATABASE_URL = "postgresql://" + SQLALCHEMY_DATABASE_URL[len("postgres://"):]
    SQLALCHEMY_DATABASE_URL = SQLALCHEMY_DATABASE_URL.replace("postgresql://", "postgresql+psycopg://", 1)

connect_args = {}
if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
    # Sync routes run on a thread pool
    connect_args["check_same_thread"] = False

engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
