"""OpenTelemetry tracing for agent framework chat calls."""

from __future__ import annotations

import logging
import os
from typing import Optional

from agent_framework.observability import setup_observability

logger = logging.getLogger(__name__)

_initialized = False


def _should_capture_sensitive_data() -> bool:
    raw = os.getenv("MAF_TRACING_CAPTURE_SENSITIVE", "false").strip().lower()
    return raw in {"1", "true", "yes", "on"}


def initialize_tracing(
    *,
    endpoint: Optional[str] = None,
    enable_sensitive_data: Optional[bool] = None,
) -> bool:
    """Export interview completion spans to an OTLP collector.

    Returns ``True`` only on the call that actually configured tracing.
    """

    global _initialized
    if _initialized:
        return False

    otlp_endpoint = (endpoint or os.getenv("MAF_OTLP_ENDPOINT", "")).strip()
    if not otlp_endpoint:
        logger.info("Tracing skipped because no OTLP endpoint is configured.")
        return False

    if enable_sensitive_data is None:
        enable_sensitive_data = _should_capture_sensitive_data()
    try:
        setup_observability(
            otlp_endpoint=otlp_endpoint,
            enable_sensitive_data=enable_sensitive_data,
        )
    except Exception as exc:  # pragma: no cover - exporter setup is external
        logger.warning("Tracing initialization failed: %s", exc)
        return False

    _initialized = True
    logger.info("Tracing initialized with OTLP endpoint %s", otlp_endpoint)
    return True
