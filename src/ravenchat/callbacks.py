"""Dash callbacks that connect the layout to the send engine and the store."""

import asyncio
import logging

from dash import ALL, Input, Output, State, callback_context, html, no_update

from .catalog import fetch_models, filter_models
from .errors import RavenChatError
from .models import ASSISTANT_ROLE, ChatMessage, Model

logger = logging.getLogger(__name__)


def register_callbacks(app):
    @app.callback(
        [
            Output("messages_container", "children"),
            Output("input_textarea", "value"),
            Output("session_id", "data"),
            Output("conversations_version", "data"),
        ],
        [Input("submit_button", "n_clicks")],
        [
            State("input_textarea", "value"),
            State("session_id", "data"),
            State("mode_selector", "value"),
            State("model_dropdown", "value"),
            State("conversations_version", "data"),
        ],
        running=[
            (Output("submit_button", "disabled"), True, False),
            (Output("stream_interval", "disabled"), False, True),
        ],
        prevent_initial_call=True,
    )
    def send_message(n_clicks, user_input, session_id, mode, model, version):
        if not n_clicks or not user_input or not user_input.strip():
            return no_update, no_update, no_update, no_update

        try:
            if not session_id:
                session_id = app.engine.new_session(mode, model).id
            asyncio.run(
                app.engine.send_message(
                    session_id, user_input, feature_mode=mode, model=model
                )
            )
            session = app.store.load_session(session_id)
            messages = session.messages if session else []
            return (
                app.layout_builder.build_messages(messages),
                "",
                session_id,
                (version or 0) + 1,
            )

        except Exception as e:
            logger.exception("Send callback failed")
            error_message = ChatMessage(
                role=ASSISTANT_ROLE,
                content=f"I encountered an error: {str(e)}. Please try again.",
            )
            return (
                app.layout_builder.build_messages([error_message]),
                "",
                session_id,
                (version or 0) + 1,
            )

    @app.callback(
        [
            Output("messages_container", "children", allow_duplicate=True),
            Output("reasoning_indicator", "children"),
        ],
        [Input("stream_interval", "n_intervals")],
        [State("session_id", "data")],
        prevent_initial_call=True,
    )
    def poll_stream(n_intervals, session_id):
        if not session_id:
            return no_update, ""
        session = app.store.load_session(session_id)
        if session is None:
            return no_update, ""
        reasoning = app.engine.streaming_reasoning(session_id)
        indicator = ""
        if reasoning:
            indicator = html.Details([html.Summary("Thinking..."), reasoning], open=True)
        return app.layout_builder.build_messages(session.messages), indicator

    @app.callback(
        Output("messages_container", "children", allow_duplicate=True),
        [Input("session_id", "data")],
        prevent_initial_call="initial_duplicate",
    )
    def load_conversation(session_id):
        if not session_id:
            return []
        session = app.store.load_session(session_id)
        if not session or not session.messages:
            return []
        return app.layout_builder.build_messages(session.messages)

    @app.callback(
        Output("session_id", "data", allow_duplicate=True),
        [Input("new_conversation_button", "n_clicks")],
        [State("mode_selector", "value"), State("model_dropdown", "value")],
        prevent_initial_call=True,
    )
    def create_new_chat(n_clicks, mode, model):
        if not n_clicks:
            return no_update
        return app.engine.new_session(mode, model).id

    @app.callback(
        [
            Output("session_id", "data", allow_duplicate=True),
            Output("mode_selector", "value"),
        ],
        [Input({"type": "convo-item", "id": ALL}, "n_clicks")],
        prevent_initial_call=True,
    )
    def switch_conversation(n_clicks):
        if not _clicked():
            return no_update, no_update

        selected_id = callback_context.triggered_id["id"]
        session = app.engine.switch_session(selected_id)
        if session is None:
            return no_update, no_update
        return session.id, session.feature_mode

    @app.callback(
        Output("sidebar", "hidden"),
        [Input("sidebar_toggle", "n_clicks")],
        [State("sidebar", "hidden")],
        prevent_initial_call=True,
    )
    def toggle_sidebar(toggle_clicks, is_hidden):
        if not toggle_clicks:
            return no_update
        return not is_hidden

    @app.callback(
        Output("conversations_list", "children"),
        [
            Input("session_id", "data"),
            Input("conversations_version", "data"),
            Input("search_input", "value"),
        ],
    )
    def update_conversation_list(session_id, version, query):
        sessions = app.store.search_sessions(query or "")
        return app.layout_builder.build_conversation_list(
            [s for s in sessions if s.messages]
        )

    @app.callback(
        [Output("model_dropdown", "options"), Output("model_dropdown", "value")],
        [Input("mode_selector", "value")],
        [State("model_dropdown", "value")],
    )
    def load_models(mode, current_model):
        settings = app.engine.settings
        try:
            models = asyncio.run(fetch_models(app.llm, settings.provider))
        except (RavenChatError, OSError) as e:
            logger.warning("Could not fetch models from %s: %s", settings.provider, e)
            models = []
        if not models:
            models = [
                Model(
                    id=settings.model,
                    name=settings.model,
                    supports_web_search=settings.provider == "OpenRouter",
                )
            ]

        models = filter_models(models, mode or settings.feature_mode, settings.provider)
        options = [{"label": m.name, "value": m.id} for m in models]
        ids = [m.id for m in models]
        for candidate in (current_model, settings.model):
            if candidate in ids:
                return options, candidate
        return options, ids[0] if ids else None

    @app.callback(
        [
            Output("conversations_version", "data", allow_duplicate=True),
            Output("session_id", "data", allow_duplicate=True),
        ],
        [Input({"type": "convo-delete", "id": ALL}, "n_clicks")],
        [State("session_id", "data"), State("conversations_version", "data")],
        prevent_initial_call=True,
    )
    def delete_conversation(n_clicks, session_id, version):
        if not _clicked():
            return no_update, no_update

        deleted_id = callback_context.triggered_id["id"]
        app.engine.delete_session(deleted_id)
        logger.info("Deleted session %s", deleted_id)
        return (version or 0) + 1, None if deleted_id == session_id else no_update

    @app.callback(
        [
            Output("rename_modal", "is_open"),
            Output("rename_target", "data"),
            Output("rename_input", "value"),
        ],
        [Input({"type": "convo-rename", "id": ALL}, "n_clicks")],
        prevent_initial_call=True,
    )
    def open_rename(n_clicks):
        if not _clicked():
            return no_update, no_update, no_update

        target_id = callback_context.triggered_id["id"]
        session = app.store.load_session(target_id)
        if session is None:
            return no_update, no_update, no_update
        return True, target_id, session.title

    @app.callback(
        [
            Output("rename_modal", "is_open", allow_duplicate=True),
            Output("conversations_version", "data", allow_duplicate=True),
        ],
        [Input("rename_confirm", "n_clicks"), Input("rename_cancel", "n_clicks")],
        [
            State("rename_target", "data"),
            State("rename_input", "value"),
            State("conversations_version", "data"),
        ],
        prevent_initial_call=True,
    )
    def close_rename(confirm_clicks, cancel_clicks, target_id, title, version):
        if callback_context.triggered_id != "rename_confirm" or not target_id:
            return False, no_update
        if app.engine.rename_session(target_id, title or "") is None:
            return False, no_update
        return False, (version or 0) + 1

    @app.callback(
        Output("reasoning_toggle", "value"),
        [Input("session_id", "data")],
    )
    def restore_preferences(session_id):
        return app.engine.settings.show_reasoning

    @app.callback(
        [Input("reasoning_toggle", "value"), Input("model_dropdown", "value")],
        prevent_initial_call=True,
    )
    def save_preferences(show_reasoning, model):
        try:
            app.engine.update_preferences(
                show_reasoning=None if show_reasoning is None else bool(show_reasoning),
                model=model,
            )
        except (RavenChatError, OSError) as e:
            logger.warning("Could not save preferences: %s", e)


def _clicked() -> bool:
    """Whether the triggering pattern-matched button was actually clicked.

    Re-rendering the conversation list recreates its buttons with zero clicks,
    which also triggers the pattern-matched callbacks.
    """
    triggered = callback_context.triggered
    return bool(triggered and triggered[0].get("value"))
