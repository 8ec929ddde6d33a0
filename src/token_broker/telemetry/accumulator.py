from __future__ import annotations

import threading


class TokenMetrics:
    """In-process token generation counters served by the metrics endpoint."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._request_count = 0
        self._token_generations = 0
        self._token_errors = 0
        self._total_response_ms = 0.0

    def record_token_generation(
        self, duration_ms: float, error: BaseException | None = None
    ) -> None:
        with self._lock:
            self._request_count += 1
            self._total_response_ms += max(duration_ms, 0.0)
            if error is not None:
                self._token_errors += 1
            else:
                self._token_generations += 1

    def get_stats(self) -> dict[str, object]:
        with self._lock:
            count = self._request_count
            avg_response_ms = self._total_response_ms / count if count else 0.0
            error_rate = self._token_errors / count if count else 0.0
            return {
                "total_requests": count,
                "token_generations": self._token_generations,
                "token_errors": self._token_errors,
                "avg_response_time_ms": avg_response_ms,
                "error_rate": error_rate,
            }

    def reset(self) -> None:
        with self._lock:
            self._request_count = 0
            self._token_generations = 0
            self._token_errors = 0
            self._total_response_ms = 0.0
