"""
Local semantic knowledge retrieval: chunk, embed, store and search documents.
"""

from .core.config import VERSION

__version__ = VERSION
