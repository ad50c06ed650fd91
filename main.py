from tutor_gateway.logging_config import setup_logging
from tutor_gateway.routes import create_app


# Configure logging once for the whole process.
setup_logging()

# FastAPI application instance for uvicorn.
app = create_app()


def run() -> None:
    import uvicorn

    # Keep our own logging configuration from tutor_gateway.logging_config.
    uvicorn.run("main:app", host="0.0.0.0", port=3001, log_config=None)


if __name__ == "__main__":
    run()
