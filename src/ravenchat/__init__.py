"""
The main entrypoint for the RavenChat package.

This module contains the RavenChat Dash application, which wires together the
pillars of the chat client: the LLM transport, the session store, the layout
and the send engine. Each pillar has an abstract base class, so any of them can
be swapped for a custom implementation.
"""

from typing import Optional

from dash import Dash

from . import layout, llm, store
from .config import Settings, configure_logging, load_settings
from .engine import Engine

__version__ = "0.1.0"


class RavenChat(Dash):
    """
    The RavenChat streaming chat client.

    The constructor uses concrete default implementations, making it easy to
    get started while remaining fully customizable.
    """

    def __init__(
        self,
        layout: Optional["layout.Layout"] = None,
        llm: Optional["llm.LLM"] = None,
        store: Optional["store.Store"] = None,
        settings: Optional[Settings] = None,
        **kwargs,
    ) -> None:
        """
        Initialize the RavenChat application with configurable pillars.

        Parameters
        ----------
        layout : layout.Layout, optional
            Layout builder for constructing the Dash component tree.
            Defaults to layout.Bootstrap().
        llm : llm.LLM, optional
            Transport used to stream completions. Defaults to an
            OpenAI-compatible client for the configured provider, or
            llm.Echo() when no API key is configured.
        store : store.Store, optional
            Session store. Defaults to store.File when ``settings.sessions_path``
            is set, otherwise store.InMemory().
        settings : Settings, optional
            Provider selection and user preferences. Defaults to values read
            from ``RAVENCHAT_*`` environment variables, then from the saved
            settings file named by ``RAVENCHAT_SETTINGS_PATH``.
        **kwargs
            Additional arguments passed to the Dash constructor.

        Raises
        ------
        ValueError
            If the layout is missing component IDs the callbacks rely on.

        Examples
        --------
        >>> app = RavenChat()

        >>> app = RavenChat(
        ...     settings=Settings(provider="Groq", api_key="gsk-...", model="llama3-8b-8192"),
        ...     store=store.File("./sessions.json"),
        ... )
        """
        layout_module = globals()["layout"]
        llm_module = globals()["llm"]
        store_module = globals()["store"]

        self.settings = settings if settings is not None else load_settings()
        self.layout_builder = layout if layout is not None else layout_module.Bootstrap()

        if "external_stylesheets" not in kwargs:
            kwargs["external_stylesheets"] = []
        kwargs["external_stylesheets"].extend(
            self.layout_builder.get_external_stylesheets()
        )

        if "external_scripts" not in kwargs:
            kwargs["external_scripts"] = []
        kwargs["external_scripts"].extend(self.layout_builder.get_external_scripts())

        super().__init__(**kwargs)

        self.llm = llm if llm is not None else llm_module.from_settings(self.settings)
        if store is not None:
            self.store = store
        elif self.settings.sessions_path:
            self.store = store_module.File(self.settings.sessions_path)
        else:
            self.store = store_module.InMemory()
        self.engine = Engine(self.llm, self.store, self.settings)

        self.layout = self.layout_builder.build_layout()
        missing = layout_module.REQUIRED_IDS - layout_module.collect_ids(self.layout)
        if missing:
            raise ValueError(
                f"Layout is missing required component IDs: {', '.join(sorted(missing))}"
            )
        self._register_callbacks()

    def _register_callbacks(self) -> None:
        """Registers all the callbacks that orchestrate the pillars."""
        from .callbacks import register_callbacks

        register_callbacks(self)


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    RavenChat(settings=settings).run(debug=False)


__all__ = ["RavenChat", "Engine", "Settings", "main"]
