#!/usr/bin/env python3
# run.py
"""
Development server runner.

Starts the booking engine API with auto-reload. Settings come from the
environment or a .env file next to this script.
"""

import uvicorn

from booking_engine.core.config import settings

if __name__ == "__main__":
    print("Starting booking engine API")
    print(f"Environment: {settings.environment}, payment gateway: {settings.payment_gateway}")
    print("API Docs: http://localhost:8000/docs")

    uvicorn.run(
        "booking_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
    )
