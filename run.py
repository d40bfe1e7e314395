"""
Application Runner

This script is the entry point for running the dashboard API.
Use: python run.py
"""

import uvicorn

from review_dashboard.config import get_settings


def main():
    """Run the application with uvicorn."""
    settings = get_settings()

    uvicorn.run(
        "review_dashboard.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
        access_log=settings.log_requests
    )


if __name__ == "__main__":
    main()
