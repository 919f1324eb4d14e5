# shopfloor/models.py
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship

from shopfloor.utils import utcnow

Base = declarative_base()


class Phase(Base):
    __tablename__ = "phases"

    id = Column(String(32), primary_key=True)
    name = Column(String(120), nullable=False)


class Product(Base):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)

    phases = relationship(
        "ProductPhase",
        order_by="ProductPhase.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class ProductPhase(Base):
    """Modelo de fase do produto. Pode ser editado; as folhas guardam cópia própria."""
    __tablename__ = "product_phases"
    __table_args__ = (UniqueConstraint("product_id", "position", name="uq_product_phase_position"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(64), ForeignKey("products.id"), nullable=False, index=True)
    phase_id = Column(String(32), nullable=False)
    position = Column(Integer, nullable=False)
    setup_time = Column(Float, nullable=False, default=0)
    production_time_per_piece = Column(Float, nullable=False, default=0)


class Order(Base):
    __tablename__ = "orders"

    order_number = Column(String(64), primary_key=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class ProductionSheet(Base):
    __tablename__ = "production_sheets"
    __table_args__ = (UniqueConstraint("order_number", "sheet_number", name="uq_sheet_number"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(64), ForeignKey("orders.order_number"), nullable=False, index=True)
    sheet_number = Column(String(64), nullable=False)
    product_id = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)
    qr_value = Column(String(160), nullable=False, unique=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    phases = relationship(
        "SheetPhase",
        order_by="SheetPhase.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class SheetPhase(Base):
    """Cópia congelada das fases do produto no momento de criação da folha."""
    __tablename__ = "sheet_phases"
    __table_args__ = (UniqueConstraint("sheet_id", "position", name="uq_sheet_phase_position"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    sheet_id = Column(Integer, ForeignKey("production_sheets.id"), nullable=False, index=True)
    phase_id = Column(String(32), nullable=False)
    position = Column(Integer, nullable=False)
    setup_time = Column(Float, nullable=False, default=0)
    production_time_per_piece = Column(Float, nullable=False, default=0)


class PhaseLog(Base):
    __tablename__ = "phase_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    operator_id = Column(String(80), nullable=False, index=True)

    sheet_id = Column(Integer, ForeignKey("production_sheets.id"), nullable=False, index=True)
    order_number = Column(String(64), nullable=False)
    sheet_number = Column(String(64), nullable=False)
    product_id = Column(String(64), nullable=False)
    phase_id = Column(String(32), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    # find | setup | production
    stage = Column(String(16), nullable=False)

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)

    quantity_done = Column(Integer, nullable=False, default=0)
    total_quantity = Column(Integer, nullable=False, default=0)

    find_material_time = Column(Float, nullable=True)
    setup_time = Column(Float, nullable=True)
    production_time = Column(Float, nullable=True)


# no máximo um registro aberto por operador (checado de novo na escrita)
Index(
    "uq_phase_logs_one_open",
    PhaseLog.operator_id,
    unique=True,
    postgresql_where=PhaseLog.end_time.is_(None),
    sqlite_where=PhaseLog.end_time.is_(None),
)


class DeadTimeLog(Base):
    __tablename__ = "dead_time_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    operator_id = Column(String(80), nullable=False, index=True)

    code = Column(Integer, nullable=False)
    description = Column(String(200), nullable=False)

    product_id = Column(String(64), nullable=True)
    sheet_id = Column(Integer, nullable=True)
    order_number = Column(String(64), nullable=True)
    sheet_number = Column(String(64), nullable=True)

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)


Index(
    "uq_dead_time_logs_one_open",
    DeadTimeLog.operator_id,
    unique=True,
    postgresql_where=DeadTimeLog.end_time.is_(None),
    sqlite_where=DeadTimeLog.end_time.is_(None),
)


def init_db(engine) -> None:
    """Cria as tabelas, se ainda não existirem."""
    Base.metadata.create_all(bind=engine)
