import logging
import sys

from common.logger import config_logger
from shipper.common.config_init import initialize_config
from shipper.common.controller import Controller


def main(argv=None):
    try:
        config = initialize_config(argv)
        config_logger(config.logging_level, verbose=config.verbose)
    except (KeyError, ValueError) as e:
        logging.error(f"Invalid configuration: {e}")
        return 1

    try:
        return Controller(config).start()
    except KeyboardInterrupt:
        logging.info("Shipper stopped by user")
        return 0
    except Exception as e:
        logging.error(f"Shipper error: {e}", exc_info=True)
        return 1


def run():
    sys.exit(main())


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)-8s %(message)s')
    logging.info("Starting shipper module")
    run()
