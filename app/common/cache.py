"""
Señal de invalidación de vistas.

La capa de presentación registra listeners para refrescar sus vistas en
caché; el ledger solo emite la señal después de cada commit exitoso.
"""
from typing import Callable, List
import logging

logger = logging.getLogger(__name__)

InvalidationListener = Callable[[tuple], None]

_listeners: List[InvalidationListener] = []


def register_invalidation_listener(listener: InvalidationListener) -> None:
    if listener not in _listeners:
        _listeners.append(listener)


def invalidate_views(*paths: str) -> None:
    """Notificar a los listeners qué vistas quedaron obsoletas."""
    logger.debug(f"Invalidating cached views: {paths}")
    for listener in list(_listeners):
        try:
            listener(paths)
        except Exception as e:
            # Un listener roto no debe revertir una operación ya confirmada
            logger.error(f"View invalidation listener failed: {str(e)}", exc_info=True)
