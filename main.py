#!/usr/bin/env python3
"""
Main entry point for the Agora orchestration service.
"""

import uvicorn

from agora.core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "agora.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload and settings.debug,
        log_level=settings.log_level.lower(),
        workers=1
    )
