"""Serve the API: `python -m gradadmin` or the `gradadmin` script."""
import uvicorn

from gradadmin.config import settings


def main():
    uvicorn.run(
        "gradadmin.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
