import datetime
import json
import uuid
from pathlib import Path

from sqlalchemy import BigInteger, DateTime, Integer, String, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from backend.config import DATABASE_URL

engine = create_async_engine(DATABASE_URL, echo=False)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)

_DEMO_COMPANIES = Path(__file__).parent / "data" / "demo_companies.json"


class Base(DeclarativeBase):
    pass


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String, index=True)
    # Monetary amounts are whole currency units, not cents
    arr: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    revenue: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    cash_balance: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    valuation: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    employees: Mapped[int | None] = mapped_column(Integer, nullable=True)
    founded_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str | None] = mapped_column(String, nullable=True)  # Active|Exited|...
    vertical_group: Mapped[str | None] = mapped_column(String, nullable=True)
    deal_lead: Mapped[str | None] = mapped_column(String, nullable=True)
    currency: Mapped[str] = mapped_column(String, default="USD")  # USD|AUD|...

    # Provenance, one per data attribute
    arr_source: Mapped[str | None] = mapped_column(String, nullable=True)
    revenue_source: Mapped[str | None] = mapped_column(String, nullable=True)
    cash_balance_source: Mapped[str | None] = mapped_column(String, nullable=True)
    valuation_source: Mapped[str | None] = mapped_column(String, nullable=True)
    employees_source: Mapped[str | None] = mapped_column(String, nullable=True)
    founded_year_source: Mapped[str | None] = mapped_column(String, nullable=True)
    status_source: Mapped[str | None] = mapped_column(String, nullable=True)
    vertical_group_source: Mapped[str | None] = mapped_column(String, nullable=True)
    deal_lead_source: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime, default=datetime.datetime.utcnow
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime, default=datetime.datetime.utcnow
    )


async def create_tables(bind=None) -> None:
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def load_demo_companies() -> list[dict]:
    return json.loads(_DEMO_COMPANIES.read_text(encoding="utf-8"))


async def seed_demo_companies(session_factory: async_sessionmaker = AsyncSessionLocal) -> int:
    """Insert the demo portfolio if the companies table is empty. Returns rows added."""
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(Company))
        if result.scalar_one() > 0:
            return 0

        companies = load_demo_companies()
        for entry in companies:
            session.add(Company(**entry))
        await session.commit()
        return len(companies)
