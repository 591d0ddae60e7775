import os

# Keep OpenTelemetry instrumentation out of unit tests
os.environ.setdefault("DISABLE_TELEMETRY", "true")
