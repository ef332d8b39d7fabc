#!/usr/bin/env python3
"""
Swap Metrics
============
Collects per-swap timings and outcomes and renders them as Rich tables:
- success / failure counts per provider and per leg
- average and worst latency
- per-identity tallies
"""

import json
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from rich.table import Table
from rich import box

# Swaps kept in full for the JSON dump; totals cover every swap
RECENT_LIMIT = 500


@dataclass
class SwapMetric:
    """Timing and outcome of one executed swap leg."""
    identity: str
    leg: str
    start_time: float
    end_time: Optional[float] = None
    duration_ms: Optional[float] = None
    success: bool = False
    provider: Optional[str] = None
    signature: Optional[str] = None
    error: Optional[str] = None
    providers_tried: List[str] = field(default_factory=list)

    def finalize(self, success: bool, provider: Optional[str] = None,
                 signature: Optional[str] = None, error: Optional[str] = None):
        """Finalize the metric with result."""
        self.end_time = time.time()
        self.duration_ms = (self.end_time - self.start_time) * 1000
        self.success = success
        self.provider = provider
        self.signature = signature
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            'identity': self.identity,
            'leg': self.leg,
            'start_time': datetime.fromtimestamp(self.start_time).isoformat(),
            'duration_ms': round(self.duration_ms, 2) if self.duration_ms else None,
            'success': self.success,
            'provider': self.provider,
            'signature': self.signature,
            'error': self.error,
            'providers_tried': self.providers_tried,
        }


class MetricsCollector:
    """Collects and aggregates swap metrics; keeps only the latest swaps in full."""

    def __init__(self, recent_limit: int = RECENT_LIMIT):
        self.recent: Deque[SwapMetric] = deque(maxlen=recent_limit)
        self._lock = threading.Lock()
        self._total = 0
        self._successes = 0
        self._duration_sum = 0.0
        self._duration_count = 0
        self._duration_max = 0.0
        self._provider_counts: Dict[str, Dict[str, int]] = {}
        self._leg_counts: Dict[str, Dict[str, int]] = {}
        self._identity_counts: Dict[str, Dict[str, int]] = {}

    @staticmethod
    def _bump(table: Dict[str, Dict[str, int]], key: str, success: bool):
        counts = table.setdefault(key, {'total': 0, 'success': 0, 'failure': 0})
        counts['total'] += 1
        counts['success' if success else 'failure'] += 1

    def add_metric(self, metric: SwapMetric):
        """Add a metric to the collector."""
        with self._lock:
            self.recent.append(metric)
            self._total += 1
            if metric.success:
                self._successes += 1
            if metric.duration_ms is not None:
                self._duration_sum += metric.duration_ms
                self._duration_count += 1
                self._duration_max = max(self._duration_max, metric.duration_ms)
            self._bump(self._leg_counts, metric.leg, metric.success)
            self._bump(self._identity_counts, metric.identity, metric.success)
            # A failed swap counts against every provider it went through
            if metric.success and metric.provider:
                self._bump(self._provider_counts, metric.provider, True)
            for name in metric.providers_tried:
                self._bump(self._provider_counts, name, False)

    def get_summary(self) -> Dict[str, Any]:
        """Get summary statistics."""
        with self._lock:
            return {
                'total_swaps': self._total,
                'successful_swaps': self._successes,
                'success_rate': round(self._successes / self._total * 100, 2) if self._total else 0,
                'avg_duration_ms': (
                    round(self._duration_sum / self._duration_count, 2) if self._duration_count else 0
                ),
                'max_duration_ms': round(self._duration_max, 2),
                'providers': {k: dict(v) for k, v in self._provider_counts.items()},
                'legs': {k: dict(v) for k, v in self._leg_counts.items()},
                'identities': {k: dict(v) for k, v in self._identity_counts.items()},
            }

    def summary_table(self, title: str = "Swap Statistics") -> Table:
        summary = self.get_summary()

        table = Table(title=title, box=box.ROUNDED)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Swaps", str(summary['total_swaps']))
        table.add_row("Successful", str(summary['successful_swaps']))
        table.add_row("Success Rate", f"{summary['success_rate']}%")
        table.add_row("Avg Latency", f"{summary['avg_duration_ms']} ms")
        for leg, counts in sorted(summary['legs'].items()):
            table.add_row(f"Leg: {leg}", f"{counts['success']}/{counts['total']}")
        for provider, counts in sorted(summary['providers'].items()):
            table.add_row(f"Provider: {provider}", f"{counts['success']} ok / {counts['failure']} failed")
        return table

    def save_to_file(self, filepath: str):
        """Save the summary and the most recent swaps to a JSON file."""
        summary = self.get_summary()
        with self._lock:
            data = {
                'summary': summary,
                'recent': [m.to_dict() for m in self.recent]
            }
        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(data, f, indent=2)
