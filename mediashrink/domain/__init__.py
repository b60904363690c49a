"""
This package contains the core domain models of mediashrink.

The domain layer represents the fundamental concepts of the transcode workflow,
independent of the CLI, the services and the external tools.

Modules:
    exceptions.py: The exception taxonomy. `ToolUnavailable` aborts a run, every
                   other exception is confined to one file.
    media.py: `MediaDescriptor` and `MediaProbe`, the strict view of ffprobe output.
    classification.py: `ClassificationResult` and the enums the decision engine
                       produces.
    naming.py: The filename grammar (show key, episode code).
    temp_models.py: `JobRecord`, the transient per-file state machine record.
"""
