"""
Main entry point for running the application
"""
import uvicorn

from simwego_gateway.core.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "simwego_gateway.api.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
