"""
Benchmark harness for query workloads.

- cases: load, validate and hash case-set documents
- timings: elapsed-time statistics
- runner: sequential execution of every case
- reporter: structured result events and sink delivery
- export: CSV, chart and manifest artefacts
"""
