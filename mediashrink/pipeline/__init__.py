"""
This package contains the run pipelines of mediashrink.

A pipeline wires the services together for one run over a library:

- `TranscodePipeline` walks the library, suppresses files covered by a skip
  marker and hands the rest to the `JobScheduler`, which runs one
  `TranscodeJob` per file with bounded concurrency.
- `DedupPipeline` runs the `DeduplicationEngine`, in audit mode or for real.

Both write a YAML run report at the end.
"""
