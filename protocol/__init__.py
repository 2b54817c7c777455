"""Wire-level helpers: escape re-encoding and the RabbitMQ client wrapper.

``rabbit_wrapper`` imports pika, so it is left for callers to import
explicitly; the codec has no dependencies.
"""

from protocol.escape_codec import unescape

__all__: list[str] = ["unescape"]
