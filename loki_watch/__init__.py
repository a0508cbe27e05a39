"""Poll Grafana Loki and act only on entries not seen before."""

__version__ = "0.1.0"
