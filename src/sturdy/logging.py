"""Secure logging with credential redaction for Sturdy.

Everything is written to the ``"sturdy"`` logger. Credentials never reach a
handler: header values, query parameters and free text pass through the
:class:`RequestLogger` masks first.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Pattern

import httpx

from sturdy.models import AttemptEvent

SENSITIVE_HEADERS = (
    "authorization",
    "proxy-authorization",
    "x-api-key",
    "api-key",
    "x-auth-token",
    "cookie",
    "set-cookie",
)

SENSITIVE_QUERY_PARAMS = (
    "password",
    "token",
    "secret",
    "api_key",
    "apikey",
    "access_token",
)

SECRET_PATTERNS = (
    r"(?:password|passwd|token|secret|api_?key)[\"']?\s*[:=]\s*[\"']?([^\s\"'&,}]+)",
    r"(?:Bearer|Basic)\s+(\S+)",
)


class MaskStyle(str, Enum):
    """How a secret is rendered once masked."""
    FULL = "full"
    PARTIAL = "partial"
    HASH = "hash"


@dataclass
class LogConfig:
    """What the request logger records and how it masks secrets."""

    level: str = "INFO"
    log_request_headers: bool = True
    log_attempts: bool = True
    log_timing: bool = True
    redact_headers: List[str] = field(default_factory=lambda: list(SENSITIVE_HEADERS))
    redact_patterns: List[str] = field(default_factory=lambda: list(SECRET_PATTERNS))
    redact_query_params: List[str] = field(
        default_factory=lambda: list(SENSITIVE_QUERY_PARAMS)
    )
    mask_style: MaskStyle = MaskStyle.PARTIAL
    partial_mask_chars: int = 4


class RequestLogger:
    """Request logger with credential redaction.

    Default sink for attempt events; records carry structured ``extra``
    fields (``request_id``, ``attempt``, ``outcome``...) for log processors.
    """

    REDACTION_PLACEHOLDER = "***REDACTED***"

    def __init__(self, config: Optional[LogConfig] = None) -> None:
        self.config = config or LogConfig()
        self.logger = logging.getLogger("sturdy")
        self._header_names = {name.lower() for name in self.config.redact_headers}
        self._query_names = {name.lower() for name in self.config.redact_query_params}
        self._patterns: List[Pattern] = [
            re.compile(pattern, re.IGNORECASE) for pattern in self.config.redact_patterns
        ]

    def mask(self, value: str) -> str:
        """Mask one secret according to ``mask_style``."""
        style = self.config.mask_style
        if style == MaskStyle.HASH:
            digest = hashlib.sha256(value.encode()).hexdigest()
            return f"[HASH:{digest[:8]}]"
        if style == MaskStyle.PARTIAL:
            keep = self.config.partial_mask_chars
            if len(value) > keep * 2:
                return f"{value[:keep]}...{value[-keep:]}"
            return "****"
        return self.REDACTION_PLACEHOLDER

    def _mask_group(self, match: "re.Match[str]") -> str:
        if not match.lastindex:
            return self.mask(match.group(0))
        start, end = match.span(1)
        offset = match.start(0)
        whole = match.group(0)
        return whole[: start - offset] + self.mask(match.group(1)) + whole[end - offset:]

    def redact_text(self, value: str) -> str:
        """Mask token-like substrings in free text."""
        for pattern in self._patterns:
            value = pattern.sub(self._mask_group, value)
        return value

    def redact_headers(self, headers: Dict[str, str]) -> Dict[str, str]:
        """Copy of ``headers`` that is safe to log.

        Args:
            headers: Request or response headers.

        Returns:
            A copy where sensitive header values are masked whole and the
            remaining values are scrubbed of embedded secrets.
        """
        return {
            key: self.mask(value) if key.lower() in self._header_names else self.redact_text(value)
            for key, value in headers.items()
        }

    def redact_url(self, url: str) -> str:
        """Mask sensitive query parameters of ``url``."""
        parsed = httpx.URL(url)
        if not parsed.query:
            return url
        params = [
            (key, self.mask(value) if key.lower() in self._query_names else value)
            for key, value in parsed.params.multi_items()
        ]
        return str(parsed.copy_with(params=params))

    def log_request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        request_id: Optional[str] = None,
    ) -> None:
        """Log the start of a logical call."""
        safe_url = self.redact_url(url)
        self.logger.info(
            f"Request started: {method} {safe_url}",
            extra={"request_id": request_id, "method": method, "url": safe_url},
        )

        if self.config.log_request_headers and headers:
            safe_headers = self.redact_headers(headers)
            self.logger.debug(
                f"Request headers: {safe_headers}",
                extra={"request_id": request_id, "headers": safe_headers},
            )

    def log_attempt(self, event: AttemptEvent) -> None:
        """Log the outcome of one send attempt."""
        if not self.config.log_attempts:
            return

        parts = [
            f"Attempt {event.attempt} {event.method} {self.redact_url(event.url)}: {event.outcome}"
        ]
        if event.status_code is not None:
            parts.append(f"[{event.status_code}]")
        extra: Dict[str, Any] = {
            "request_id": event.request_id,
            "operation": event.operation,
            "attempt": event.attempt,
            "outcome": event.outcome,
            "status_code": event.status_code,
            "error_kind": event.error_kind,
        }
        if self.config.log_timing:
            parts.append(f"({event.elapsed_seconds:.3f}s)")
            extra["duration_seconds"] = event.elapsed_seconds

        self.logger.log(
            logging.DEBUG if event.succeeded else logging.WARNING,
            " ".join(parts),
            extra=extra,
        )

    def log_error(
        self,
        error: Exception,
        request_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log the terminal error of a logical call."""
        extra = {"request_id": request_id, "error_type": type(error).__name__}
        extra.update(context or {})
        self.logger.error(f"Request error: {self.redact_text(str(error))}", extra=extra)

    def log_retry(
        self,
        attempt: int,
        max_attempts: int,
        delay: float,
        reason: str,
        request_id: Optional[str] = None,
    ) -> None:
        """Log a scheduled retry."""
        reason = self.redact_text(reason)
        self.logger.warning(
            f"Retry {attempt}/{max_attempts} after {delay:.2f}s: {reason}",
            extra={
                "request_id": request_id,
                "attempt": attempt,
                "max_attempts": max_attempts,
                "delay_seconds": delay,
                "reason": reason,
            },
        )

    def log_circuit_breaker_event(self, old_state: str, new_state: str) -> None:
        self.logger.warning(
            f"Circuit breaker {old_state} -> {new_state}",
            extra={"event": "circuit_breaker", "old_state": old_state, "state": new_state},
        )

    def log_page(self, url: str, page: int, items: int, has_next: bool) -> None:
        """Log one fetched page of a paginated listing."""
        suffix = "" if has_next else " (last)"
        self.logger.debug(
            f"Page {page} from {self.redact_url(url)}: {items} items{suffix}",
            extra={"page": page, "items": items, "has_next": has_next},
        )


def setup_logging(
    level: str = "INFO",
    format_string: Optional[str] = None,
) -> None:
    """Set up logging for Sturdy.

    Args:
        level: Log level.
        format_string: Custom format string.
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=format_string or "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
