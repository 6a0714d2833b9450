import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from macroplanner.api import meal_plan
from macroplanner.core.config import settings

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="MacroPlanner API",
    description="Macro-targeted meal plan generation with LP ingredient scaling",
    version="1.0.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(meal_plan.router, prefix="/api")


@app.get("/")
def root():
    return {"message": "MacroPlanner API", "version": "1.0.0"}


@app.get("/health")
def health_check():
    return {"status": "healthy", "environment": settings.environment}
