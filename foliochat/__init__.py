"""FolioChat — portfolio chat core: conversation store and model-fallback proxy."""

__version__ = "1.0.0"
