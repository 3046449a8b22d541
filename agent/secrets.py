"""
Secrets — Credenciales de integraciones externas por tenant.

El nombre del secreto es determinístico: ``tenant/{organization_id}/{service}``.
El agente no los lee; los usan las integraciones (p. ej. voz).
"""

import logging
from typing import Any, Dict, Iterable, Optional

from agent.db_service import DBService
from rag.query.retriever import validate_namespace

logger = logging.getLogger(__name__)

DEFAULT_SERVICES = ("vapi",)


def secret_name(organization_id: str, service: str) -> str:
    return f"tenant/{organization_id}/{service}"


class SecretsService:
    """Upsert/lectura de secretos con catálogo cerrado de servicios."""

    def __init__(self, db: DBService, services: Iterable[str] = DEFAULT_SERVICES):
        self._db = db
        self._services = frozenset(services)

    @property
    def services(self) -> frozenset:
        return self._services

    def _validate(self, organization_id: str, service: str) -> None:
        validate_namespace(organization_id)
        if service not in self._services:
            raise ValueError(
                f"Servicio no soportado: {service!r} "
                f"(válidos: {', '.join(sorted(self._services))})"
            )

    def upsert_secret(
        self, organization_id: str, service: str, value: Any
    ) -> Dict[str, str]:
        """
        Guarda el secreto del tenant y registra el plugin asociado.

        Returns:
            {"status": "success"}

        Raises:
            ValueError: servicio fuera del catálogo
            NamespaceError: organization id inválido
        """
        self._validate(organization_id, service)
        name = secret_name(organization_id, service)

        self._db.upsert_secret(name, value)
        self._db.upsert_plugin(organization_id, service, name)

        logger.info(f"Secreto actualizado: {name}")
        return {"status": "success"}

    def get_secret(self, organization_id: str, service: str) -> Optional[Any]:
        self._validate(organization_id, service)
        return self._db.get_secret(secret_name(organization_id, service))
