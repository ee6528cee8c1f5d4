import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from accessaudit.api_routers.v1 import api_router
from accessaudit.features.health.routes.health import router as health_router
from accessaudit.platform.config import settings
from accessaudit.platform.exceptions import add_exception_handlers

# Configure logging to show INFO level messages
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

app = FastAPI(
    title="Access Audit API",
    description="Accessibility scanning of single web pages",
    version="1.0.0",
    debug=settings.DEBUG,
)


@app.get("/", tags=["Info"])
def root():
    return {
        "app_name": "Access Audit API",
        "description": "Automated accessibility audits with bounded, graded results.",
        "version": "1.0.0",
        "docs_url": "/docs",
        "api_base": "/api/v1",
    }


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

add_exception_handlers(app)

app.include_router(health_router)
app.include_router(api_router, prefix="/api/v1")
