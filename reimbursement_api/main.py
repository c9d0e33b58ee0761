import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import models
from .config import API_PREFIX, CORS_ORIGINS, LOG_LEVEL, SEED_DATA
from .database import SessionLocal, engine
from .routers import approvals, auth, dashboard, master_data, reimbursements, users
from .seed import seed_all

logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Creating tables in the database
    models.Base.metadata.create_all(bind=engine)
    if SEED_DATA:
        db = SessionLocal()
        try:
            seed_all(db, auth.bcrypt_context)
        finally:
            db.close()
    logger.info("Reimbursement API started, routes under %s", API_PREFIX)
    yield


app = FastAPI(
    title="Reimbursement Workflow API",
    description="Expense claims, multi-level approvals and master data",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Enabling routes
app.include_router(auth.router, prefix=API_PREFIX)
app.include_router(users.router, prefix=API_PREFIX)
app.include_router(master_data.router, prefix=API_PREFIX)
app.include_router(reimbursements.router, prefix=API_PREFIX)
app.include_router(approvals.router, prefix=API_PREFIX)
app.include_router(dashboard.router, prefix=API_PREFIX)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
