from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app.config import settings

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def import_models():
    """Import all models so Base.metadata knows about them."""
    import app.models.company  # noqa: F401
    import app.models.store  # noqa: F401
    import app.models.product  # noqa: F401
    import app.models.supplier  # noqa: F401
    import app.models.user  # noqa: F401
    import app.models.inventory  # noqa: F401
    import app.models.stock_transfer  # noqa: F401


def init_db():
    import_models()
    Base.metadata.create_all(bind=engine)
