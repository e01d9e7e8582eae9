"""
Query benchmarking for Seq-compatible data endpoints.

Runs a declarative set of query cases against a server several times each,
reduces the elapsed times to summary statistics and reports one structured
event per case to the console and, optionally, to a remote Seq or Kafka sink.
"""

__version__ = "0.1.0"
