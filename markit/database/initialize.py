from markit.database.session import Base, engine
from markit.models import StoreNode  # noqa: F401


def create_tables(bind=engine):
    """Create the StoreNodes table on ``bind`` if it does not exist yet."""
    Base.metadata.create_all(bind=bind)


if __name__ == "__main__":
    create_tables()
    print("Tables created successfully")
