"""
mediashrink: batch transcoding and duplicate clean-up for video libraries.

The package is laid out in layers:

- `config`: constants, profiles and the frozen `TranscodeSettings`.
- `domain`: media descriptors, classification results, the filename grammar,
  job records and the exception taxonomy.
- `services`: discovery, classification, skip markers, encoder commands, the
  per-file transcode job, deduplication and the run report.
- `pipeline`: the job scheduler and the two run types (transcode, dedup).
- `utils`: external tool lookup, the cancellable process runner and formatting.

`mediashrink.app.main` is the console entry point.
"""

__version__ = "0.3.0"
