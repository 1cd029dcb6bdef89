"""
Structured Logging

DESIGN DECISION: Every significant ledger step emits a structured event
(snake_case name plus key/value context) so a failed operation can be
traced across the wallet, transaction and budget writes it touched.

Logging never replaces error propagation: components log a failure and
then raise it.
"""

import structlog


_configured = False


def configure_logging() -> None:
    """Configure structlog for local JSON logging (idempotent)."""
    global _configured
    if _configured:
        return

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a named structured logger."""
    configure_logging()
    return structlog.get_logger(name)
