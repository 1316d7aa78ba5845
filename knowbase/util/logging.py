"""
Structured logging for the knowledge engine.
Every component logs through the module-level `logger`; messages follow the
"Operation: <op>, Status: <status>, Details: {...}" layout.
"""

import logging
from typing import Any, Dict, List


class StructuredLogger:
    """Structured logger for ingestion, search, cache and storage operations."""

    def __init__(self, name: str = "knowbase"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_ingestion(self, stage: str, document_id: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log an ingestion pipeline boundary (started, chunked, batch, completed)."""
        log_details = {"document_id": document_id}
        if details:
            log_details.update(details)

        level = logging.WARNING if status in ("failed", "cancelled") else logging.INFO
        self.log_operation(f"ingestion.{stage}", status, log_details, level)

    def log_search(self, collection_id: str, query: str, result_count: int, duration_ms: float, details: Dict[str, Any] = None):
        """Log a completed search request."""
        log_details = {
            "collection_id": collection_id,
            "query": query[:50] + "..." if len(query) > 50 else query,
            "result_count": result_count,
            "duration_ms": round(duration_ms, 2),
        }
        if details:
            log_details.update(details)

        self.log_operation("search.completed", "success", log_details)

    def log_cache(self, event: str, details: Dict[str, Any] = None):
        """Log a cache event (hit, miss, store, invalidated)."""
        self.log_operation(f"cache.{event}", "success", details, logging.DEBUG if event in ("hit", "miss", "store") else logging.INFO)

    def log_fallback(self, collection_id: str, initial_threshold: float, ladder: List[float]):
        """Log activation of the threshold fallback ladder."""
        log_details = {
            "collection_id": collection_id,
            "initial_threshold": initial_threshold,
            "ladder": list(ladder),
        }
        self.log_operation("search.fallback", "activated", log_details)

    def log_vector_operation(self, operation: str, collection_id: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a vector store operation."""
        log_details = {"collection_id": collection_id}
        if details:
            log_details.update(details)

        self.log_operation(f"vector.{operation}", status, log_details)

    def log_health(self, component: str, ok: bool, error: str = None):
        """Log the outcome of a health probe."""
        details = {"component": component}
        if error:
            details["error"] = error[:100]
        self.log_operation("health.probe", "ok" if ok else "failed", details, logging.INFO if ok else logging.WARNING)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()
