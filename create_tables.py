"""Local bootstrap: create the reseller billing tables on DATABASE_URL."""
from dotenv import load_dotenv
load_dotenv()

from app.db.session import engine
from app.db.base import Base
import app.models  # noqa: F401  registers the billing tables

print("Creating reseller billing tables...")
Base.metadata.create_all(bind=engine)
print(f"✅ Tables ready: {', '.join(sorted(Base.metadata.tables))}")
