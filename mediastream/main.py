import logging
import os

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI

from mediastream import app_context
from mediastream.app.routes.billing import router as billing_router
from mediastream.app.services.billing import get_billing_config

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


def get_conn():
    return psycopg2.connect(**get_billing_config().db_config)


app_context.configure(get_conn=get_conn)

app = FastAPI(title="Mediastream Billing API")

app.include_router(billing_router)

