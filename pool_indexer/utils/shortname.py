import logging


class ShortNameFilter(logging.Filter):
    """Adds `record.shortname`: the last two components of the logger name,
    e.g. ``pool_indexer.ingestion.ingestor`` → ``ingestion-ingestor``."""

    def filter(self, record):
        path = record.name.split(".")
        record.shortname = "-".join(path[-2:])
        return True
