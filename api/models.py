"""
Pydantic models para validación de requests/responses.

Define schemas tipados para todos los endpoints de la API.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# Error Response (RFC 7807 simplificado)


class ErrorResponse(BaseModel):
    """
    Modelo de error estructurado inspirado en RFC 7807.

    Se usa como response_model en todos los errores para garantizar
    un formato consistente y predecible para los consumidores de la API.
    """

    type: str = Field(
        ..., description="Categoría del error (ej: 'validation_error', 'not_found')"
    )
    title: str = Field(..., description="Título breve del error")
    status: int = Field(..., description="Código HTTP del error")
    detail: str = Field(..., description="Descripción legible del error")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "tenant_isolation",
                    "title": "Forbidden",
                    "status": 403,
                    "detail": "The conversation does not belong to this organization.",
                }
            ]
        }
    }


# Conversations


class StartConversationRequest(BaseModel):
    """Request para iniciar una conversación desde el widget."""

    organization_id: str = Field(
        ...,
        description="Organization id autenticado del tenant",
        min_length=1,
        max_length=128,
        pattern=r"^[A-Za-z0-9_\-]+$",
    )


class ConversationResponse(BaseModel):
    """Conversación y su status actual."""

    conversation_id: str = Field(..., description="ID de la conversación")
    organization_id: str = Field(..., description="Tenant dueño")
    thread_id: str = Field(..., description="Thread de mensajes")
    status: str = Field(..., description="unresolved | escalated | resolved")


class MessageInfo(BaseModel):
    """Mensaje del thread"""

    role: str = Field(..., description="user | assistant | system | tool")
    content: str = Field(..., description="Contenido del mensaje")
    tool_name: Optional[str] = Field(None, description="Tool que generó el mensaje")
    created_at: str = Field(..., description="Timestamp ISO")


class ConversationListResponse(BaseModel):
    """Conversaciones de un tenant, más recientes primero."""

    organization_id: str
    conversations: List[ConversationResponse] = Field(default_factory=list)


class ConversationDetailResponse(ConversationResponse):
    """Conversación con su transcript."""

    messages: List[MessageInfo] = Field(default_factory=list)


class MessageRequest(BaseModel):
    """Request con un mensaje nuevo del usuario"""

    organization_id: str = Field(
        ..., description="Organization id autenticado del tenant", min_length=1
    )
    message: str = Field(
        ..., description="Mensaje del usuario", min_length=1, max_length=2000
    )
    message_id: Optional[str] = Field(
        default=None, description="ID del cliente para deduplicar reintentos"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "organization_id": "org_2abc",
                    "message": "What's your refund policy?",
                    "message_id": "msg_123",
                }
            ]
        }
    }


class MessageResponse(BaseModel):
    """Respuesta del agente a un turno"""

    thread_id: str = Field(..., description="Thread de la conversación")
    reply: str = Field(..., description="Respuesta del asistente")
    status: str = Field(..., description="Status de la conversación tras el turno")
    duplicate: bool = Field(
        default=False, description="True si el message_id ya había sido procesado"
    )


# Secrets


class SecretUpsertRequest(BaseModel):
    """Request para guardar la credencial de una integración del tenant."""

    organization_id: str = Field(..., min_length=1, description="Tenant")
    service: str = Field(..., min_length=1, description="Integración (ej: 'vapi')")
    value: Any = Field(..., description="Valor del secreto (JSON)")


class SecretUpsertResponse(BaseModel):
    status: str = Field(..., description="'success' si se guardó")


class SecretStatusResponse(BaseModel):
    """Indica si la integración tiene credencial cargada (nunca el valor)."""

    organization_id: str
    service: str
    configured: bool


# Health


class HealthResponse(BaseModel):
    """Response del health check"""

    status: str = Field(..., description="Estado del servicio")
    version: str = Field(..., description="Versión de la API")
    components: Dict[str, str] = Field(..., description="Estado de componentes")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "status": "healthy",
                    "version": "1.0.0",
                    "components": {
                        "database": "ok",
                        "knowledge_store": "ok",
                        "groq_api": "ok",
                    },
                }
            ]
        }
    }
