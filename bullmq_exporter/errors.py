class ExporterError(Exception):
    """Base exporter error."""


class ConfigError(ExporterError):
    """Configuration cannot be parsed. The process must not start serving."""


class ExporterLoadError(ExporterError):
    """Exporter used out of lifecycle order (not connected, already running, ...)."""
