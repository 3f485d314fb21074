"""
The main entrypoint for the DealPilot package.

This module contains the ``DealPilot`` class, which wires the pillars
(LLM, store, tools, CRM) into an ``AgentOrchestrator`` from settings. Every
pillar can be injected to replace the default.
"""

import logging
from typing import Optional

from . import crm, llm, store, tools
from .config import Settings, configure_logging
from .crm_tools import build_crm_tools
from .engine import AgentOrchestrator, AgentState
from .errors import (
    ConfigurationError,
    DealPilotError,
    InvalidArguments,
    QuotaExceeded,
    TransportError,
    UnknownTool,
)
from .models import AgentEvent, ChatMessage, Conversation, Credential, ToolInvocation

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "AgentEvent",
    "AgentOrchestrator",
    "AgentState",
    "ChatMessage",
    "ConfigurationError",
    "Conversation",
    "Credential",
    "DealPilot",
    "DealPilotError",
    "InvalidArguments",
    "QuotaExceeded",
    "Settings",
    "ToolInvocation",
    "TransportError",
    "UnknownTool",
    "configure_logging",
]


class DealPilot(AgentOrchestrator):
    """
    A CRM co-pilot agent for one conversation.

    The constructor fills every pillar that is not injected from ``settings``,
    making it easy to get started while remaining fully customizable.
    """

    def __init__(
        self,
        conversation_id: str = "default",
        crm: Optional["crm.CRM"] = None,
        llm: Optional["llm.LLM"] = None,
        secondary_llm: Optional["llm.LLM"] = None,
        store: Optional["store.ConversationStore"] = None,
        tools: Optional["tools.Tool"] = None,
        settings: Optional[Settings] = None,
        **kwargs,
    ) -> None:
        """
        Initialize the agent with configurable pillars.

        Parameters
        ----------
        conversation_id : str, default="default"
            Identity under which the conversation is persisted.
        crm : crm.CRM, optional
            The live business records. When given, the CRM toolset is bound to
            it and its snapshot backs the offline replies.
        llm : llm.LLM, optional
            Primary model client. Defaults to the provider in ``settings``
            using the primary credential.
        secondary_llm : llm.LLM, optional
            Failover model client. Defaults to the secondary credential in
            ``settings``, if one is configured.
        store : store.ConversationStore, optional
            Defaults to a ``store.File`` log under ``settings.store_dir`` or,
            without one, an in-memory log.
        tools : tools.Tool, optional
            Defaults to the CRM toolset when ``crm`` is given, else no tools.
        settings : Settings, optional
            Defaults to ``Settings()`` read from the environment. A
            ``log_level`` in it turns on console logging.
        **kwargs
            Passed on to ``AgentOrchestrator`` (``system_prompt``,
            ``on_tool_call``, ``degraded``...).

        Raises
        ------
        ConfigurationError
            If no ``llm`` is injected and no primary API key is configured.

        Examples
        --------
        >>> agent = DealPilot(crm=crm.InMemoryCRM(), llm=llm.Echo())

        >>> agent = DealPilot(
        ...     crm=my_crm,
        ...     settings=Settings(primary_api_key="key-1", secondary_api_key="key-2"),
        ... )
        """
        settings = settings if settings is not None else Settings()
        if settings.log_level:
            configure_logging(settings.log_level)
        llm_module = globals()["llm"]
        store_module = globals()["store"]
        tools_module = globals()["tools"]

        if llm is None:
            llm = llm_module.create_llm(settings.provider, settings.primary_credential())
        if secondary_llm is None:
            secondary = settings.secondary_credential()
            if secondary is not None:
                secondary_llm = llm_module.create_llm(settings.provider, secondary)

        if store is None:
            backend = (
                store_module.File(str(settings.store_dir))
                if settings.store_dir
                else store_module.InMemory()
            )
            store = store_module.ConversationStore(backend)

        if tools is None:
            tools = build_crm_tools(crm) if crm is not None else tools_module.NoTool()

        kwargs.setdefault("step_budget", settings.step_budget)
        kwargs.setdefault("failover_delay", settings.failover_delay)
        if crm is not None:
            kwargs.setdefault("snapshot", crm.snapshot)

        self.crm = crm
        self.settings = settings
        super().__init__(
            conversation_id,
            llm=llm,
            tools=tools,
            store=store,
            secondary_llm=secondary_llm,
            **kwargs,
        )
