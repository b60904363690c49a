"""
Services Package for mediashrink.

This package contains the "service layer" of the application. A service performs
one high-level task and sits between the pipelines (the "when" of processing) and
the domain models and external tools (the "what" and "with what").

- **Discovery (`FileWalker`, `sweep_tagged_artefacts`):**
  Lazily lists candidate videos and removes stray temp outputs and their sidecars.

- **Classification (`ClassificationEngine`):**
  Decides from a probed `MediaDescriptor` whether a file must be converted, which
  streams are re-encoded, which filter chain applies and which tracks are kept.

- **Skip markers (`SkipMarkerStore`):**
  Reads and writes the sentinel files that exclude a directory, a show or an
  episode from future runs.

- **Encoder commands (`FfmpegCommandBuilder`, `HandBrakeCommandBuilder`):**
  Turn a classification into the argument list of the external encoder.

- **Transcode job (`TranscodeJob`):**
  The per-file state machine: probe, classify, encode, verify, then replace the
  original or write a skip marker.

- **Deduplication (`DeduplicationEngine`):**
  Keeps the best copy of each duplicate episode or movie and deletes the rest.

- **Logging (`ErrorLog`, `RunReport`):**
  Plain-text error log for failed encodes and the YAML run report.
"""
