"""
Lead Automation API entry point
"""
import logging
import os

import uvicorn
from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from lead_automation.api import app
from lead_automation.config import EngineSettings


if __name__ == "__main__":
    settings = EngineSettings.from_env(dotenv=False)
    reload = os.getenv("API_RELOAD", "false").lower() == "true"

    if reload:
        uvicorn.run(
            "lead_automation.api.app:app",
            host=settings.api_host,
            port=settings.api_port,
            reload=True,
            log_level="info"
        )
    else:
        uvicorn.run(
            app,
            host=settings.api_host,
            port=settings.api_port,
            log_level="info"
        )
