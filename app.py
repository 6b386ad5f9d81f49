import logging

from api import create_app
from claims.config import API_HOST, API_PORT, DATA_DIR, LOG_LEVEL
from claims.coordinator import ClaimCoordinator

if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Create coordinator over the configured data directory
    coordinator = ClaimCoordinator(data_dir=DATA_DIR)

    # Create and run the API
    app = create_app(coordinator)
    app.run(host=API_HOST, port=API_PORT)
