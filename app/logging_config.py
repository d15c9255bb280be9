"""
Logging configuration for Cloud Run and local environments.

Automatically detects Cloud Run environment and configures appropriate logging:
- Cloud Run: google-cloud-logging with trace correlation
- Local/Test: Standard Python logging to stdout with JSON formatting

Both setups install a redaction filter so provider secrets that show up
in diagnostic messages (e.g. an echoed token response) never reach a sink.
"""

import json
import logging
import os
import re
from datetime import UTC, datetime


class SecretRedactionFilter(logging.Filter):
    """Redacts credential material from log messages before they are emitted."""

    PATTERNS: list[tuple[re.Pattern, str]] = [
        (
            re.compile(
                r"((?:oauth_token_secret|oauth_signature|access_token|refresh_token|"
                r"client_secret|consumer_secret)[\"']?\s*[:=]\s*[\"']?)[^\"'&,\s]+",
                re.IGNORECASE,
            ),
            r"\1[REDACTED]",
        ),
        (re.compile(r"\bwhsec_[a-zA-Z0-9]+"), "[REDACTED_WEBHOOK_SECRET]"),
        (re.compile(r"Bearer\s+[a-zA-Z0-9_\-\.]+", re.IGNORECASE), "Bearer [REDACTED]"),
    ]

    def redact(self, text: str) -> str:
        """Apply every redaction pattern to a string."""
        for pattern, replacement in self.PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, shaped like Cloud Logging entries."""

    def format(self, record: logging.LogRecord) -> str:
        log_object = {
            "timestamp": datetime.now(UTC).isoformat(),
            "severity": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }

        # Structured context passed as extra={"extra_fields": ...}
        if hasattr(record, "extra_fields") and isinstance(record.extra_fields, dict):
            log_object.update(record.extra_fields)

        if record.exc_info:
            log_object["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_object, default=str)


def setup_global_logging() -> None:
    """
    Configure global logging based on environment.

    When running in Cloud Run (K_SERVICE env var is set):
    - Uses google-cloud-logging for structured logs with trace correlation.

    When running locally or in tests:
    - Uses standard Python logging with a custom JSON formatter on stdout.
    """
    is_cloud_run = os.getenv("K_SERVICE") is not None
    redaction = SecretRedactionFilter()

    if is_cloud_run:
        try:
            import google.cloud.logging

            client = google.cloud.logging.Client()
            client.setup_logging()
            logging.info("Cloud Logging initialized for Cloud Run.")
        except Exception as e:
            # Fallback for Cloud Logging import/initialization errors
            logging.basicConfig(
                level=logging.INFO,
                format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            )
            logging.warning(f"Cloud Logging setup failed, using basic config: {e}")
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())

        root_logger = logging.getLogger()
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.INFO)

        # Remove default handlers to avoid duplicate logs
        if len(root_logger.handlers) > 1:
            for h in root_logger.handlers[:-1]:
                root_logger.removeHandler(h)

    for h in logging.getLogger().handlers:
        h.addFilter(redaction)
