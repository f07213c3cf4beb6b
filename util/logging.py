"""
Search diagnostics scope only. Do not implement beyond this file's responsibilities.
Structured logging for corpus loading, validation and two-stage search.
"""

import logging
from typing import Any, Dict, List, Optional


class StructuredLogger:
    """Structured logger for search, load and validation operations."""

    def __init__(self, name: str = "district_search"):
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

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "rejected"):
            self.logger.error(message)
        elif status in ("clamped", "skipped", "issue"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_search(self, top_m_clusters: int, top_k_per_cluster: int, final_top_n: int,
                   cluster_ids: List[str], result_count: int, start_time: float, end_time: float,
                   requested_top_m: Optional[int] = None):
        """Log a completed two-stage search; top_m_clusters is the count actually scanned."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {
            "top_m_clusters": top_m_clusters,
            "top_k_per_cluster": top_k_per_cluster,
            "final_top_n": final_top_n,
            "clusters": cluster_ids,
            "result_count": result_count,
            "duration_ms": duration_ms
        }
        if requested_top_m is not None and requested_top_m != top_m_clusters:
            log_details["top_m_requested"] = requested_top_m
        self.log_operation("search.completed", "success", log_details)

    def log_parameter_clamp(self, parameter: str, requested: int, applied: int, reason: str):
        """Log a search parameter that was clamped to a usable value."""
        log_details = {
            "parameter": parameter,
            "requested": requested,
            "applied": applied,
            "reason": reason
        }
        self.log_operation("search.clamp", "clamped", log_details)

    def log_missing_cluster(self, cluster_id: str):
        """Log a cluster selected by the centroid index but absent from the store."""
        self.log_operation("search.cluster_missing", "skipped", {"cluster_id": cluster_id})

    def log_corpus_load(self, manifest_path: str, centroid_count: int, cluster_count: int,
                        document_count: int, status: str = "success", details: Dict[str, Any] = None):
        """Log corpus loading outcome."""
        log_details = {
            "manifest_path": manifest_path,
            "centroid_count": centroid_count,
            "cluster_count": cluster_count,
            "document_count": document_count
        }
        if details:
            log_details.update(details)

        self.log_operation("corpus.load", status, log_details)

    def log_validation_issue(self, context: str, issue: str):
        """Log a single corpus validation finding."""
        # Limit issue length
        log_details = {"context": context, "issue": issue[:200]}
        self.log_operation("corpus.validation", "issue", log_details)

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
