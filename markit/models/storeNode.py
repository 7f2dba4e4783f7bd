from sqlalchemy import JSON, Column, String

from markit.database.session import Base


class StoreNode(Base):
    """One leaf of the realtime tree, addressed by its full slash path."""

    __tablename__ = "StoreNodes"

    path = Column(String(512), primary_key=True)
    value = Column(JSON)
