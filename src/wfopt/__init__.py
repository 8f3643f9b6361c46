"""Walk-forward optimization scheduling for parameter searches."""

__version__ = "0.1.0"
