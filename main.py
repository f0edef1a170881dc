"""
Entry point for the chatflow engine
"""
import uvicorn
from chatflow.core.config import settings


if __name__ == "__main__":
    uvicorn.run(
        "chatflow.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
