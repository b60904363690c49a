"""
Configuration Package for mediashrink.

This package centralizes all the static configuration settings for the application.
By separating configuration from the application logic, it becomes easier to manage
and modify parameters without changing the core code.

This package includes settings for:
- Video targets, bitrate ceilings, encoder parameters and library profiles.
- Audio targets and the language-based track retention policy.
- Common settings like logging formats, processed-file tags, skip marker names and
  job statuses.
- `settings.TranscodeSettings`, the frozen configuration object built once per run
  from the defaults, the selected profile, the user YAML file and the CLI flags.
"""
