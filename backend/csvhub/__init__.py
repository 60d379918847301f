"""
csvhub - CSV upload and viewing backend with a hybrid storage engine.
"""

from csvhub.utils.logging import get_logger

__version__ = "0.1.0"

__all__ = ["get_logger", "__version__"]
