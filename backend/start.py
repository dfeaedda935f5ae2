"""Launcher script for init-manager compatibility.
Starts uvicorn programmatically instead of via CLI.
"""
import uvicorn

from mailtriage.config import Settings

if __name__ == "__main__":
    settings = Settings()
    uvicorn.run(
        "mailtriage.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
