from sqlmodel import SQLModel, create_engine, Session

from app.core.config import settings

engine = create_engine(
    f"sqlite:///{settings.db_path}",
    echo=settings.debug,
    connect_args={"check_same_thread": False},
)


def register_models() -> None:
    import app.models.chat  # noqa: F401 - ensure models are registered
    import app.models.intervention  # noqa: F401
    import app.models.machine  # noqa: F401


def init_db() -> None:
    register_models()
    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session
