"""
Agent — Capa conversacional de SupportDesk.

Agente de soporte multi-tenant capaz de:
- Responder consultas con la base de conocimiento del tenant (tool ``search``)
- Resolver conversaciones cuando el usuario terminó (``resolveConversation``)
- Derivar a un humano ante frustración o pedido explícito (``escalateConversation``)
- Pedir una aclaración cuando el mensaje es ambiguo
"""
