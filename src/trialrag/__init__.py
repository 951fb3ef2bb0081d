"""trialrag — ingest clinical-trial report pages into a vector store and search them."""

__version__ = "0.1.0"
