from .transport import MQTTTransport

__all__ = ["MQTTTransport"]
