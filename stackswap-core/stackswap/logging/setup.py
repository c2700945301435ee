import logging
import sys
import warnings

from stackswap import config, constants

# The log levels for modules are evaluated incrementally for logging granularity,
# from highest (DEBUG) to lowest (TRACE). Hence, each module below should have
# higher level which serves as the default.

default_log_levels = {
    "asyncio": logging.INFO,
    "boto3": logging.INFO,
    "botocore": logging.ERROR,
    "moto": logging.WARNING,
    "plux": logging.WARNING,
    "s3transfer": logging.INFO,
    "urllib3": logging.WARNING,
    "stackswap.utils.waiter": logging.INFO,
}

trace_log_levels = {
    "botocore": logging.DEBUG,
    "stackswap.utils.waiter": logging.DEBUG,
}

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)5s --- [%(threadName)12.12s] %(name)-26.26s : %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


class DefaultFormatter(logging.Formatter):
    def __init__(self, fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT):
        super().__init__(fmt=fmt, datefmt=datefmt)


def get_log_level_from_config():
    # overriding the log level if STACKSWAP_LOG has been set
    if config.STACKSWAP_LOG:
        log_level = str(config.STACKSWAP_LOG).upper()
        if log_level.lower() == constants.LOG_LEVEL_TRACE:
            log_level = "DEBUG"
        log_level = logging._nameToLevel[log_level]
        return log_level

    return logging.DEBUG if config.DEBUG else logging.INFO


def setup_logging_from_config():
    """
    Configures logging from ``DEBUG`` and ``STACKSWAP_LOG``. The hotswap entry points never call this
    themselves, as it replaces the handlers of the root logger: applications and scripts running hotswap
    deployments call it once on startup.
    """
    log_level = get_log_level_from_config()
    setup_logging(log_level)

    if config.is_trace_logging_enabled():
        for name, level in trace_log_levels.items():
            logging.getLogger(name).setLevel(level)


def create_default_handler(log_level: int):
    log_handler = logging.StreamHandler(stream=sys.stderr)
    log_handler.setLevel(log_level)
    log_handler.setFormatter(DefaultFormatter())
    return log_handler


def setup_logging(log_level=logging.INFO) -> None:
    """
    Configures the python logging environment for stackswap.

    :param log_level: the optional log level.
    """
    # set create a default handler for the root logger (basically logging.basicConfig but explicit)
    log_handler = create_default_handler(log_level)

    # replace any existing handlers
    logging.basicConfig(level=log_level, handlers=[log_handler], force=True)

    # disable some logs and warnings
    warnings.filterwarnings("ignore")
    logging.captureWarnings(True)

    # set log levels of loggers
    logging.root.setLevel(log_level)
    logging.getLogger("stackswap").setLevel(log_level)
    for logger, level in default_log_levels.items():
        logging.getLogger(logger).setLevel(level)
