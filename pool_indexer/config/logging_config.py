import logging.config

from pool_indexer.utils.shortname import ShortNameFilter


def logging_config(level: str = "INFO") -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "shortname": {"()": ShortNameFilter},
        },
        "formatters": {
            "custom": {
                "format": "[%(asctime)s] [%(levelname)s] %(shortname)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "custom",
                "filters": ["shortname"],
            },
        },
        "root": {"level": level, "handlers": ["console"]},
        # web3 / urllib3 are chatty at DEBUG
        "loggers": {
            "web3": {"level": "WARNING"},
            "urllib3": {"level": "WARNING"},
        },
    }


def setup_logging(level: str = "INFO") -> None:
    logging.config.dictConfig(logging_config(level))
