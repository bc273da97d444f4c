"""Concrete implementations for layout builders."""

from abc import ABC, abstractmethod
from typing import List

import dash_bootstrap_components as dbc
from dash import dcc, html
from dash.development.base_component import Component as DashComponent

from .models import FEATURE_MODES, USER_ROLE, ChatMessage, ChatSession

REQUIRED_IDS = {
    "session_id",
    "sidebar",
    "sidebar_toggle",
    "new_conversation_button",
    "search_input",
    "conversations_list",
    "mode_selector",
    "model_dropdown",
    "messages_container",
    "reasoning_indicator",
    "input_textarea",
    "submit_button",
    "stream_interval",
    "conversations_version",
    "reasoning_toggle",
    "rename_target",
    "rename_modal",
    "rename_input",
    "rename_confirm",
    "rename_cancel",
}

MODE_LABELS = {
    "standard": "Chat",
    "reasoning": "Think",
    "web-search": "Search",
    "vision": "Vision",
}


def collect_ids(component) -> set:
    """Walks a component tree and returns every string ``id`` in it."""
    ids = set()
    component_id = getattr(component, "id", None)
    if isinstance(component_id, str):
        ids.add(component_id)
    children = getattr(component, "children", None)
    if children is None:
        return ids
    if not isinstance(children, (list, tuple)):
        children = [children]
    for child in children:
        if isinstance(child, DashComponent):
            ids |= collect_ids(child)
    return ids


class Layout(ABC):
    """Interface for building the Dash component layout."""

    @abstractmethod
    def build_layout(self) -> DashComponent:
        """Constructs and returns the entire Dash component tree for the UI."""
        pass

    @abstractmethod
    def build_messages(self, messages: List[ChatMessage]) -> List[DashComponent]:
        """Converts a list of message models into renderable Dash components."""
        pass

    def build_conversation_list(self, sessions: List[ChatSession]) -> List[DashComponent]:
        # The buttons sit beside the title, not inside it, so their clicks
        # do not also count as clicks on the item.
        button_style = {"border": "none", "background": "none", "padding": "0 4px"}
        return [
            html.Div(
                style={"display": "flex", "alignItems": "center"},
                children=[
                    html.Div(
                        session.title,
                        id={"type": "convo-item", "id": session.id},
                        n_clicks=0,
                        style={
                            "cursor": "pointer",
                            "padding": "8px",
                            "wordWrap": "break-word",
                            "flexGrow": 1,
                        },
                    ),
                    html.Button(
                        "✎",
                        id={"type": "convo-rename", "id": session.id},
                        n_clicks=0,
                        title="Rename",
                        style=button_style,
                    ),
                    html.Button(
                        "×",
                        id={"type": "convo-delete", "id": session.id},
                        n_clicks=0,
                        title="Delete",
                        style=button_style,
                    ),
                ],
            )
            for session in sessions
        ]

    def get_external_stylesheets(self) -> List:
        return []

    def get_external_scripts(self) -> List:
        return []


class Bootstrap(Layout):
    """The default chat layout, built with dash-bootstrap-components."""

    def get_external_stylesheets(self) -> List:
        return [dbc.themes.BOOTSTRAP, dbc.icons.BOOTSTRAP]

    def build_layout(self) -> DashComponent:
        return html.Div(
            className="d-flex flex-column vh-100",
            children=[
                dcc.Store(id="session_id"),
                dcc.Store(id="conversations_version", data=0),
                dcc.Store(id="rename_target"),
                dcc.Interval(id="stream_interval", interval=300, disabled=True),
                self.build_header(),
                html.Div(
                    className="d-flex flex-grow-1",
                    style={"overflow": "hidden"},
                    children=[self.build_sidebar(), self.build_chat_area()],
                ),
                self.build_input_area(),
                self.build_rename_modal(),
            ],
        )

    def build_header(self) -> DashComponent:
        return html.Header(
            className="p-2 bg-light border-bottom",
            children=[
                dbc.Row(
                    align="center",
                    children=[
                        dbc.Col(dbc.Button("☰", id="sidebar_toggle", n_clicks=0), width="auto"),
                        dbc.Col(html.H4("RavenChat", className="m-0"), width="auto"),
                        dbc.Col(
                            dbc.RadioItems(
                                id="mode_selector",
                                options=[
                                    {"label": MODE_LABELS[mode], "value": mode}
                                    for mode in FEATURE_MODES
                                ],
                                value="standard",
                                inline=True,
                            )
                        ),
                        dbc.Col(
                            dcc.Dropdown(id="model_dropdown", clearable=False),
                            width=4,
                        ),
                        dbc.Col(
                            dbc.Switch(
                                id="reasoning_toggle", label="Show reasoning", value=True
                            ),
                            width="auto",
                        ),
                    ],
                )
            ],
        )

    def build_sidebar(self) -> DashComponent:
        return html.Aside(
            id="sidebar",
            hidden=False,
            className="border-end p-2",
            style={"width": "260px", "overflowY": "auto"},
            children=[
                dbc.Button(
                    "New Chat",
                    id="new_conversation_button",
                    color="primary",
                    className="w-100 mb-2",
                ),
                dbc.Input(id="search_input", placeholder="Search chats...", debounce=True),
                html.Div(id="conversations_list", className="mt-2"),
            ],
        )

    def build_chat_area(self) -> DashComponent:
        return html.Main(
            className="flex-grow-1 p-3",
            style={"overflowY": "auto"},
            children=[
                html.Div(id="messages_container"),
                html.Div(id="reasoning_indicator", className="text-muted fst-italic"),
            ],
        )

    def build_input_area(self) -> DashComponent:
        return html.Footer(
            className="p-3 bg-light border-top",
            children=[
                dbc.InputGroup(
                    [
                        dbc.Textarea(id="input_textarea", placeholder="Type a message..."),
                        dbc.Button("Send", id="submit_button", color="primary"),
                    ]
                )
            ],
        )

    def build_rename_modal(self) -> DashComponent:
        return dbc.Modal(
            id="rename_modal",
            is_open=False,
            children=[
                dbc.ModalHeader(dbc.ModalTitle("Rename chat")),
                dbc.ModalBody(dbc.Input(id="rename_input", maxLength=100)),
                dbc.ModalFooter(
                    [
                        dbc.Button("Cancel", id="rename_cancel", color="secondary"),
                        dbc.Button("Save", id="rename_confirm", color="primary"),
                    ]
                ),
            ],
        )

    def build_messages(self, messages: List[ChatMessage]) -> List[DashComponent]:
        if not messages:
            return []
        return [self.build_message(msg) for msg in messages]

    def build_message(self, message: ChatMessage) -> DashComponent:
        style = {
            "padding": "10px",
            "borderRadius": "15px",
            "marginBottom": "10px",
            "maxWidth": "70%",
            "width": "fit-content",
        }
        if message.role == USER_ROLE:
            style["marginLeft"] = "auto"
            style["backgroundColor"] = "#dcf8c6"
        else:
            style["marginRight"] = "auto"
            style["backgroundColor"] = "#ffffff"
            style["border"] = "1px solid #eee"

        children = []
        if message.reasoning:
            children.append(
                html.Details([html.Summary("Reasoning"), dcc.Markdown(message.reasoning)])
            )
        children.append(dcc.Markdown(message.text()))
        if message.citations:
            children.append(
                html.Ul(
                    [
                        html.Li(html.A(c.title or c.url, href=c.url, target="_blank"))
                        for c in message.citations
                    ],
                    className="small",
                )
            )
        return html.Div(children, style=style)
