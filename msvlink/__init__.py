"""Named remote function calls with typed values and images over framed TCP."""

__version__ = "0.1.0"

__all__ = ["protocol", "transport", "framing", "registry", "comm", "client", "demo"]