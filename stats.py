"""
Statistics for the per-vertex diagonalization phase.

This module tracks how long each mesh vertex took to diagonalize, how many
vertices carried degenerate eigenvalues, and at which vertices
codiagonalization could not resolve every degenerate range. The latter
is the observable record of degraded codiagonalization: band extraction
still runs, but continuation near those vertices is less reliable.

Main Components:
    - diagonalization_statistics: Collects per-vertex outcomes and timings
    - Merging of worker statistics after parallel diagonalization
    - Summary logging and CSV export

Usage:
    stats = diagonalization_statistics()
    stats.log_vertex(index=3, duration=0.01, degenerate=True, resolved=False)
    stats.log_statistics()
"""

import csv
import os
from constants import logging, time
from constants import List, Optional, Dict, Union, Any


class diagonalization_statistics():
    """
    Per-vertex timing and codiagonalization outcomes of one bandstructure run.

    Attributes:
        vertex_times (Dict[int, float]): Diagonalization time of each processed vertex.
        degenerate_vertices (List[int]): Vertices whose spectrum contained degeneracies.
        degraded_vertices (List[int]): Vertices left with unresolved degenerate ranges.
        start_time (Optional[float]): Timestamp when collection started.
        connection_time (float): Duration of the band-connection step.
    """
    def __init__(self) -> None:
        """Initialize empty statistics collection."""
        self.vertex_times: Dict[int, float] = {}
        self.degenerate_vertices: List[int] = []
        self.degraded_vertices: List[int] = []
        self.start_time: Optional[float] = None
        self.connection_time: float = 0.0

    @property
    def processed_vertices(self) -> int:
        return len(self.vertex_times)

    @property
    def degraded_count(self) -> int:
        return len(self.degraded_vertices)

    def log_vertex(self, index: int, duration: float = 0.0, degenerate: bool = False, resolved: bool = True) -> None:
        """
        Record the outcome of one vertex.

        Args:
            index (int): Mesh vertex index.
            duration (float): Time spent filling, diagonalizing and resolving, in seconds.
            degenerate (bool): Whether the spectrum had degenerate ranges.
            resolved (bool): Whether every degenerate range was resolved.
        """
        self.vertex_times[index] = duration
        if degenerate:
            self.degenerate_vertices.append(index)
        if not resolved:
            self.degraded_vertices.append(index)

    def merge(self, other: "diagonalization_statistics") -> None:
        """Fold the records of a worker into this collection."""
        self.vertex_times.update(other.vertex_times)
        self.degenerate_vertices = sorted(self.degenerate_vertices + other.degenerate_vertices)
        self.degraded_vertices = sorted(self.degraded_vertices + other.degraded_vertices)

    def summary(self) -> Dict[str, Union[int, float]]:
        """Aggregate numbers of the run."""
        times = list(self.vertex_times.values())
        return {
            'processed_vertices': self.processed_vertices,
            'degenerate_vertices': len(self.degenerate_vertices),
            'degraded_vertices': self.degraded_count,
            'total_diagonalization_seconds': sum(times),
            'average_vertex_seconds': sum(times) / len(times) if times else 0.0,
            'connection_seconds': self.connection_time,
            'total_runtime_seconds': time.time() - self.start_time if self.start_time else 0.0,
        }

    def log_statistics(self) -> None:
        """Log the summary of the run."""
        if not self.vertex_times:
            return
        summary = self.summary()
        logging.info(f"=== DIAGONALIZATION STATISTICS ===")
        logging.info(f"Vertices diagonalized: {summary['processed_vertices']}")
        logging.info(f"Average time per vertex: {summary['average_vertex_seconds'] * 1e3:.3f} ms")
        logging.info(f"Band connection time: {summary['connection_seconds']:.3f} s")
        logging.info(f"Vertices with degeneracies: {summary['degenerate_vertices']}")
        if self.degraded_vertices:
            logging.warning(f"  Codiagonalization left {self.degraded_count} vertices unresolved: {self.degraded_vertices[:20]}"
                            f"{' ...' if self.degraded_count > 20 else ''}")
        else:
            logging.info(f"  All degeneracies resolved")

    def save_statistics(self, filename: str) -> None:
        """
        Save per-vertex records to a CSV file.

        Args:
            filename (str): Output path; parent directories are created.
        """
        if not self.vertex_times:
            logging.warning("No diagonalization data to save")
            return
        directory = os.path.dirname(filename)
        if directory:
            os.makedirs(directory, exist_ok=True)
        degenerate = set(self.degenerate_vertices)
        degraded = set(self.degraded_vertices)
        with open(filename, 'w', newline='') as csvfile:
            writer = csv.DictWriter(csvfile, fieldnames=['vertex', 'seconds', 'degenerate', 'resolved'])
            writer.writeheader()
            for index, seconds in sorted(self.vertex_times.items()):
                writer.writerow({'vertex': index, 'seconds': seconds,
                                 'degenerate': index in degenerate, 'resolved': index not in degraded})
        logging.info(f"Statistics saved to {filename}")

    def cleanup(self) -> None:
        """Clear all collected data."""
        self.vertex_times.clear()
        self.degenerate_vertices.clear()
        self.degraded_vertices.clear()
        self.start_time = None
        self.connection_time = 0.0

    def __enter__(self) -> 'diagonalization_statistics':
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: Optional[type], exc_value: Optional[Exception], traceback: Optional[Any]) -> bool:
        """Context manager exit with cleanup."""
        self.cleanup()
        return False
