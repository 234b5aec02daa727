"""Main FastAPI application entry point."""
import logging
import os

from fastapi import FastAPI

from rowaudit.database import engine, Base
from rowaudit.api.routes import router
# Import models to register them with SQLAlchemy Base
from rowaudit.models.audit import AuditUser, Changeset, AuditedTable, Field, Action, Change

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

# Create database tables
Base.metadata.create_all(bind=engine)

# Create FastAPI app
app = FastAPI(
    title="rowaudit - Row Change Audit Log",
    description="Read-only access to the normalized history of row-level changes.",
    version="0.1.0"
)

# Include API routes
app.include_router(router, prefix="/api", tags=["Audit log"])


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "rowaudit"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
