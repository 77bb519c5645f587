"""
Frontera RPC del ledger: convierte excepciones en respuestas uniformes.
"""
from typing import Callable, TypeVar
import logging

from fastapi import HTTPException, status

from app.common.exceptions import LedgerError, NotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

GENERIC_FAILURE = "Error inesperado al procesar la operación"


def run_ledger_operation(operation: Callable[[], T], result_key: str, failure_message: str = GENERIC_FAILURE) -> dict:
    """
    Ejecutar una operación del ledger y devolver `{success, <result_key> | message}`.

    Los errores de negocio conservan su mensaje y la marca `retryable`; los
    errores inesperados se registran con traceback y se reportan con un
    mensaje genérico.
    """
    try:
        result = operation()
    except LedgerError as e:
        logger.warning(f"Ledger operation rejected ({type(e).__name__}): {e.message}")
        return {"success": False, "message": e.message, "retryable": e.retryable}
    except Exception as e:
        logger.error(f"Unexpected ledger failure: {str(e)}", exc_info=True)
        return {"success": False, "message": failure_message, "retryable": False}

    if result_key == "message":
        return {"success": True, "message": result}
    return {"success": True, result_key: result}


def to_http_exception(error: LedgerError) -> HTTPException:
    """Para los endpoints de lectura y datos maestros, que responden con códigos HTTP."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
    if error.retryable:
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error.message)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)
