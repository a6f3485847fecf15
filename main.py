# main.py
import uvicorn
from dotenv import load_dotenv

from feedrunner.api import create_app
from feedrunner.config import Settings
from feedrunner.logger import get_logger, log_file_for


def main() -> None:
    load_dotenv()
    settings = Settings.from_env()
    logger = get_logger("feedrunner.main")

    if not settings.runner_token:
        logger.warning("⚠️  RUNNER_TOKEN is not set; every /runner request will be refused")

    logger.info("🚀 Feed runner listening on http://%s:%s", settings.host, settings.port)
    logger.info("📝 Logs: %s", log_file_for().resolve())
    logger.info("📁 Runs: %s", settings.runs_dir.resolve())

    app = create_app(settings=settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="info")


if __name__ == "__main__":
    main()
