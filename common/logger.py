import logging

LOG_FORMAT = '%(asctime)s %(levelname)-8s %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def config_logger(logging_level, verbose=False):
    """Configure the root logger for the whole process.

    ``verbose`` forces DEBUG so that per message publish progress is shown.
    pika is very chatty at INFO, so it is kept at WARNING unless verbose.
    """
    level = logging.DEBUG if verbose else getattr(logging, str(logging_level).upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Invalid logging level: {logging_level}")

    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=DATE_FORMAT, force=True)
    logging.getLogger("pika").setLevel(logging.INFO if verbose else logging.WARNING)
    logging.getLogger("RabbitMQ").setLevel(level)
