import logging

from fastapi import FastAPI

from splitledger.config import config
from splitledger.db import init_db
from splitledger.routes.group import router as group_router
from splitledger.routes.expense import router as expense_router
from splitledger.routes.settlement import router as settlement_router

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = FastAPI(title="Split Ledger")

# include routers
app.include_router(group_router)
app.include_router(expense_router)
app.include_router(settlement_router)


@app.on_event("startup")
def on_startup():
    init_db()
