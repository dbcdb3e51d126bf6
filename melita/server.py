"""
Server entry point for the Melita backend.
"""
import uvicorn

from melita.config import settings, logger


def main():
    """Run the server."""
    logger.info("Starting Melita on %s:%d", settings.HOST, settings.PORT)

    uvicorn.run(
        "melita.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
