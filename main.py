from yuanbao_proxy.logging_config import setup_logging
from yuanbao_proxy.routes import create_app
from yuanbao_proxy.settings import load_settings


# Configuration problems raise ConfigError here and abort start-up.
settings = load_settings()

# Configure logging once for the whole process.
setup_logging(settings)

# FastAPI application instance for uvicorn.
app = create_app(settings)


def run() -> None:
    import uvicorn

    # Use our own logging configuration configured in yuanbao_proxy.logging_config.
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
