"""
The main entrypoint for the RiskChat package.

This module contains the primary RiskChat class, which wires the extensible
pillars together. Each pillar is defined by an abstract base class in its own
module (``llm.LLM``, ``store.Store``, ``auth.Auth``, ``i18n.Translator``), and
any of them can be swapped for a custom implementation.
"""

import logging
from typing import Optional

from . import (
    attachments,
    auth,
    capture,
    config,
    engine,
    errors,
    history,
    i18n,
    llm,
    models,
    parsing,
    prompts,
    store,
)

logger = logging.getLogger(__name__)

__all__ = [
    "RiskChat",
    "attachments",
    "auth",
    "capture",
    "config",
    "engine",
    "errors",
    "history",
    "i18n",
    "llm",
    "models",
    "parsing",
    "prompts",
    "store",
]


class RiskChat:
    """
    The main class for the RiskChat conversation framework.

    This class acts as the central composition root, using the injected pillar
    components to create orchestrators for the current user. The constructor
    uses concrete default implementations, making it easy to get started while
    remaining fully customizable.
    """

    def __init__(
        self,
        llm: Optional["llm.LLM"] = None,
        store: Optional["store.Store"] = None,
        auth: Optional["auth.Auth"] = None,
        translator: Optional["i18n.Translator"] = None,
        settings: Optional["config.Settings"] = None,
    ) -> None:
        """
        Initialize RiskChat with configurable pillars.

        Parameters
        ----------
        llm : llm.LLM, optional
            Provider used for every turn. Defaults to llm.Gemini(), or
            llm.Echo() when 'google-genai' is not installed.
        store : store.Store, optional
            Durable key-value store for history. Defaults to the backend
            named by ``settings.storage_backend``.
        auth : auth.Auth, optional
            Identity source. Defaults to auth.SingleUser().
        translator : i18n.Translator, optional
            Localization capability. Defaults to i18n.Catalog(settings.language).
        settings : config.Settings, optional
            Defaults to config.get_settings().

        Examples
        --------
        Basic usage with defaults:

        >>> app = RiskChat()
        >>> session = app.session()
        >>> reply = session.submit("Is this message a scam?")

        Custom configuration:

        >>> app = RiskChat(
        ...     llm=llm.OpenAI(),
        ...     store=store.SQLite("./history.db"),
        ... )
        """
        self.settings = settings if settings is not None else config.get_settings()

        if llm is not None:
            self.llm = llm
        else:
            try:
                from .llm import Gemini

                self.llm = Gemini(
                    default_model=self.settings.model_name,
                    api_key=self.settings.effective_api_key or "",
                )
            except ImportError:
                import warnings

                warnings.warn(
                    "RiskChat is running with a simple Echo LLM because the 'google-genai' package is not installed. "
                    'For the default Gemini integration, install with: pip install "riskchat[default]"',
                    UserWarning,
                )
                from .llm import Echo

                self.llm = Echo()

        store_module = globals()["store"]
        auth_module = globals()["auth"]

        self.store = store if store is not None else self._default_store(store_module)
        self.auth = auth if auth is not None else auth_module.SingleUser()
        self.translator = (
            translator if translator is not None else i18n.Catalog(self.settings.language)
        )
        self.history = history.ConversationHistory(
            self.store, self.translator, max_saved=self.settings.max_saved_conversations
        )

    def _default_store(self, store_module) -> "store.Store":
        backend = self.settings.storage_backend
        if backend == "file":
            return store_module.File(self.settings.storage_path)
        if backend == "sqlite":
            return store_module.SQLite(f"{self.settings.storage_path}/riskchat.db")
        return store_module.InMemory()

    def session(self, conversation_id: Optional[str] = None, **auth_kwargs) -> "engine.Orchestrator":
        """Creates an orchestrator for the current user.

        Resumes ``conversation_id`` when it is persisted; otherwise a fresh
        conversation is started.
        """
        user_id = self.auth.get_current_user_id(**auth_kwargs)
        stager = attachments.AttachmentStager(
            self.translator,
            max_file_bytes=self.settings.max_file_bytes,
            max_text_file_bytes=self.settings.max_text_file_bytes,
        )
        orchestrator = engine.Orchestrator(
            user_id=user_id,
            llm=self.llm,
            history=self.history,
            translator=self.translator,
            stager=stager,
            request_timeout=self.settings.request_timeout,
        )
        if conversation_id:
            orchestrator.load_conversation(conversation_id)
        logger.debug("Opened session for user %s", user_id)
        return orchestrator
