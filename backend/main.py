import logging
import os
import sys

# Ensure this directory is in the path for uvicorn and other runners
current_dir = os.path.dirname(os.path.abspath(__file__))
if current_dir not in sys.path:
    sys.path.append(current_dir)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import ASSISTANT_NAME
from database import init_db
from logging_config import setup_logging
from routes.coach_routes import router as coach_router
from routes.intervention_routes import router as intervention_router

setup_logging()
logger = logging.getLogger(__name__)

# Initialize db configuration
init_db()

app = FastAPI(title=f"{ASSISTANT_NAME} API")


@app.get("/api/v1/health-check")
async def health():
    from services.fallback_chain import get_fallback_chain
    return {
        "status": "ok",
        "message": "Backend is alive!",
        "providers": get_fallback_chain().get_provider_status(),
    }


app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(coach_router)
app.include_router(intervention_router)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
