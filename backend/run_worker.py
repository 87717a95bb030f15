"""Run the token cleanup worker as a standalone process."""

import logging
import time

from app.services.token_cleanup_worker import token_cleanup_worker


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    token_cleanup_worker.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        token_cleanup_worker.stop()


if __name__ == "__main__":
    main()
