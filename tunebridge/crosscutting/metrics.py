import json
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class ResolutionMetrics:
    """Counters accumulated across resolution passes."""
    messages: int = 0
    extracted_refs: int = 0
    hydration_failures: int = 0
    matches_by_strategy: Dict[str, int] = field(default_factory=dict)
    no_matches: int = 0
    match_failures: int = 0
    pages_fetched: int = 0
    pagination_failures: int = 0
    shortlink_hops: int = 0
    total_duration_ms: int = 0
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None

    @property
    def total_matches(self) -> int:
        return sum(self.matches_by_strategy.values())

    @property
    def match_rate(self) -> float:
        """Share of match attempts that produced a resource."""
        attempts = self.total_matches + self.no_matches + self.match_failures
        if attempts == 0:
            return 0.0
        return self.total_matches / attempts


class MetricsCollector:
    """Thread-safe collector shared by the resolution components."""

    def __init__(self):
        """Initialize metrics collector."""
        self.metrics = ResolutionMetrics()
        self._lock = threading.Lock()

    def record_message(self, extracted_refs: int) -> None:
        with self._lock:
            self.metrics.messages += 1
            self.metrics.extracted_refs += extracted_refs

    def record_hydration_failure(self) -> None:
        with self._lock:
            self.metrics.hydration_failures += 1

    def record_match(self, strategy: str) -> None:
        with self._lock:
            counts = self.metrics.matches_by_strategy
            counts[strategy] = counts.get(strategy, 0) + 1

    def record_no_match(self) -> None:
        with self._lock:
            self.metrics.no_matches += 1

    def record_match_failure(self) -> None:
        with self._lock:
            self.metrics.match_failures += 1

    def record_page(self) -> None:
        with self._lock:
            self.metrics.pages_fetched += 1

    def record_pagination_failure(self) -> None:
        with self._lock:
            self.metrics.pagination_failures += 1

    def record_shortlink_hop(self) -> None:
        with self._lock:
            self.metrics.shortlink_hops += 1

    def record_duration(self, duration_ms: int) -> None:
        with self._lock:
            self.metrics.total_duration_ms += duration_ms

    @contextmanager
    def timed(self):
        """Context manager adding the elapsed time of the block to the total."""
        started = datetime.now()
        try:
            yield self
        finally:
            self.record_duration(int((datetime.now() - started).total_seconds() * 1000))

    def finish(self) -> None:
        with self._lock:
            self.metrics.end_time = datetime.now()

    def get_metrics(self) -> ResolutionMetrics:
        with self._lock:
            return self.metrics

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary for JSON serialization."""
        with self._lock:
            data = asdict(self.metrics)
            data['matches_by_strategy'] = dict(self.metrics.matches_by_strategy)
            data['total_matches'] = self.metrics.total_matches
            data['match_rate'] = self.metrics.match_rate
            data['start_time'] = self.metrics.start_time.isoformat()
            if self.metrics.end_time:
                data['end_time'] = self.metrics.end_time.isoformat()
            return data

    def save_to_file(self, file_path: str) -> None:
        """Save metrics to JSON file."""
        with open(file_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

    def print_summary(self) -> None:
        """Print metrics summary to stdout."""
        metrics = self.get_metrics()

        print("\n=== Resolution Metrics ===")
        print(f"Messages: {metrics.messages}")
        print(f"Extracted refs: {metrics.extracted_refs}")
        print(f"Hydration failures: {metrics.hydration_failures}")
        print(f"Matches: {metrics.total_matches} ({metrics.match_rate:.2%})")
        for strategy, count in sorted(metrics.matches_by_strategy.items()):
            print(f"  {strategy}: {count}")
        print(f"No match: {metrics.no_matches}")
        print(f"Match errors: {metrics.match_failures}")
        print(f"Pages fetched: {metrics.pages_fetched} (failed walks: {metrics.pagination_failures})")
        print(f"Short link hops: {metrics.shortlink_hops}")
        print(f"Total duration: {metrics.total_duration_ms}ms")
