"""TelemetryTransport - Interface base de los transportes en vivo.

Un transporte entrega ``(topic, payload, TransportMeta)`` al sink que recibe
en su constructor (normalmente ``IngestionDispatcher.submit``). Los bridges
HTTP llaman directo a ``AppContext.ingest`` y no necesitan esta interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Union

from ..core.domain.models import TransportMeta

MessageSink = Callable[[str, Union[bytes, str], TransportMeta], bool]


class TelemetryTransport(ABC):
    """Interface común: ``MQTTTransport`` (vivo) y ``NullTransport``."""

    @abstractmethod
    def start(self) -> bool:
        """Inicia el transporte.

        Returns:
            True si el inicio fue exitoso, False si falló
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Detiene el transporte y libera la conexión."""
        pass

    @abstractmethod
    def publish(self, topic: str, payload: str, qos: int = 1, retain: bool = True) -> bool:
        """Publica un mensaje. False si el transporte no puede publicar."""
        pass

    @property
    @abstractmethod
    def transport_name(self) -> str:
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @property
    def stats(self) -> Dict[str, Any]:
        return {"transport": self.transport_name, "connected": self.is_connected}
