from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vpnbroker.core.database import Base


class Server(Base):
    __tablename__ = "servers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128))
    country: Mapped[str] = mapped_column(String(64), index=True)
    country_code: Mapped[str] = mapped_column(String(8))
    city: Mapped[str] = mapped_column(String(128))
    ping: Mapped[int] = mapped_column(Integer)
    load: Mapped[int] = mapped_column(Integer)
    latitude: Mapped[str] = mapped_column(String(32))
    longitude: Mapped[str] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(16), default="available")  # available / busy / maintenance

    connections = relationship("ConnectionHistory", back_populates="server", cascade="all, delete-orphan")
