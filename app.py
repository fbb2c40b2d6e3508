import asyncio
import logging

import streamlit as st

from gemchat.client.artifacts import split_artifacts
from gemchat.client.chat import ChatController
from gemchat.client.mentions import apply_mention, find_mention
from gemchat.client.storage import ChatStorage, LocalState
from gemchat.core.config import Settings, setup_logging
from gemchat.core.gemini_api import CATEGORY_PROMPTS
from gemchat.core.models import ArtifactRead

logger = logging.getLogger(__name__)

settings = Settings.from_env()
setup_logging(settings.environment)


# --- Asyncio Event Loop Management ---
def get_event_loop() -> asyncio.AbstractEventLoop:
    """One loop per browser session; the HTTP client is bound to it"""
    if "event_loop" not in st.session_state:
        st.session_state.event_loop = asyncio.new_event_loop()
    return st.session_state.event_loop


def run_async(coro):
    """Runs an async coroutine in the session's event loop."""
    return get_event_loop().run_until_complete(coro)


def get_controller() -> ChatController:
    if "controller" not in st.session_state:
        storage = ChatStorage(settings.api_url, LocalState(settings.state_file))
        controller = ChatController(storage)
        run_async(controller.initialize())
        st.session_state.controller = controller
    return st.session_state.controller


def init_session_state():
    """Initialize session state variables"""
    st.session_state.setdefault("pending_prompt", None)
    st.session_state.setdefault("suggestions", [])
    st.session_state.setdefault("draft", "")
    if "pending_draft" in st.session_state:
        st.session_state.draft = st.session_state.pop("pending_draft")


# --- Rendering ---
def render_content(content: str):
    for segment in split_artifacts(content):
        if isinstance(segment, ArtifactRead):
            st.caption(segment.language or "code")
            st.code(segment.content, language=segment.language)
        else:
            st.markdown(segment)


def render_history(controller: ChatController, session):
    last_index = len(session.messages) - 1
    for index, message in enumerate(session.messages):
        with st.chat_message(message.role):
            render_content(message.content)
            for artifact in message.artifacts or []:
                if artifact.type == "code":
                    st.code(artifact.content, language=artifact.language)
                else:
                    with st.expander("Document", expanded=artifact.expanded):
                        st.markdown(artifact.content)

            if message.role == "assistant" and not message.is_streaming:
                if st.button("🔄 Regenerate", key=f"regen_{message.id}"):
                    st.session_state.pending_action = ("regenerate", message.id, None)
                    st.rerun()
                if index == last_index and message.follow_up_questions:
                    st.markdown("**Follow-up questions**")
                    for q_index, question in enumerate(message.follow_up_questions):
                        if st.button(question, key=f"followup_{message.id}_{q_index}"):
                            st.session_state.pending_prompt = question
                            st.rerun()
            elif message.role == "user":
                with st.expander("✏️ Edit prompt"):
                    edited = st.text_area("Prompt", value=message.content, key=f"edit_{message.id}")
                    if st.button("Resend", key=f"resend_{message.id}") and edited.strip():
                        st.session_state.pending_action = ("edit", message.id, edited.strip())
                        st.rerun()


def stream_reply(controller: ChatController, session_id: str, action):
    """Run a streaming action, re-rendering the reply as it arrives

    Clicking stop (or any other widget) reruns the script; the rerun unwinds
    through the controller, which keeps the partial reply and marks it finished.
    """
    with st.chat_message("assistant"):
        placeholder = st.empty()
        st.button("⏹ Stop generating", key="stop_generating", on_click=controller.stop_generating)

    def on_change():
        session = controller.active_session
        if session and session.messages and session.messages[-1].role == "assistant":
            last = session.messages[-1]
            placeholder.markdown(last.content + ("▌" if last.is_streaming else ""))

    controller.on_change = on_change
    try:
        run_async(action)
        run_async(controller.fetch_follow_up_questions(session_id))
    except Exception as e:
        st.error("❌ Failed to process message")
        logger.error(f"Message processing error: {e}")
    finally:
        controller.on_change = None


# Streamlit UI
st.set_page_config(page_title="Gemini Chat", layout="wide", initial_sidebar_state="expanded")
init_session_state()
controller = get_controller()

# First run: ask for a username
if not controller.user_id:
    st.title("👋 Welcome")
    with st.form("username"):
        username = st.text_input("Choose a username")
        if st.form_submit_button("Start chatting") and username.strip():
            if run_async(controller.setup_user(username)):
                st.rerun()
            else:
                st.error("❌ Could not reach the chat server")
    st.stop()

# Sidebar
with st.sidebar:
    st.header("💬 Chat Sessions")
    st.caption(f"Signed in as {controller.username}")

    if st.button("➕ New Chat", use_container_width=True):
        run_async(controller.add_session())
        st.rerun()

    st.divider()

    for session in list(controller.sessions):
        col1, col2 = st.columns([0.85, 0.15])
        with col1:
            is_current = session.id == controller.active_session_id
            if st.button(
                f"{'🟢' if is_current else '⚪'} {session.title}",
                key=f"session_{session.id}",
                use_container_width=True,
            ):
                run_async(controller.switch_session(session.id))
                st.rerun()
        with col2:
            if st.button("🗑️", key=f"delete_{session.id}", help="Delete this session"):
                run_async(controller.delete_session(session.id))
                st.rerun()

    st.divider()
    if st.button("🧹 Clear history", use_container_width=True):
        run_async(controller.clear_history())
        st.rerun()

active = controller.active_session
if active is None:
    st.info("No chat sessions yet. Click 'New Chat' to start!")
    st.stop()

st.subheader(f"💬 {active.title}")
render_history(controller, active)

# Category suggestions for an empty chat
if not active.messages:
    st.markdown("*Need inspiration? Pick a category:*")
    columns = st.columns(len(CATEGORY_PROMPTS))
    for column, category in zip(columns, CATEGORY_PROMPTS):
        with column:
            if st.button(category.capitalize(), key=f"category_{category}", use_container_width=True):
                with st.spinner("Fetching suggestions..."):
                    st.session_state.suggestions = run_async(controller.fetch_suggestions(category))
    for s_index, suggestion in enumerate(st.session_state.suggestions):
        if st.button(suggestion, key=f"suggestion_{s_index}"):
            st.session_state.suggestions = []
            st.session_state.pending_prompt = suggestion
            st.rerun()

# @mention helper
with st.expander("@ Mention someone"):
    draft = st.text_input("Draft", key="draft", help="Type @ followed by a name")
    mention = find_mention(draft)
    if mention is not None and mention.query:
        for name in run_async(controller.search_people(mention.query))[:5]:
            if st.button(name, key=f"mention_{name}"):
                st.session_state.pending_draft = apply_mention(draft, mention, None, name)
                st.rerun()
    if st.button("Send draft") and draft.strip():
        st.session_state.pending_prompt = draft.strip()
        st.session_state.pending_draft = ""
        st.rerun()

# Chat input
prompt = st.chat_input("Ask anything...")
pending_action = st.session_state.pop("pending_action", None)

if prompt or st.session_state.pending_prompt:
    text = prompt or st.session_state.pending_prompt
    st.session_state.pending_prompt = None
    st.session_state.suggestions = []
    with st.chat_message("user"):
        st.markdown(text)
    stream_reply(controller, active.id, controller.stream_message(active.id, text))
    st.rerun()
elif pending_action:
    kind, message_id, new_prompt = pending_action
    if kind == "regenerate":
        stream_reply(controller, active.id, controller.regenerate_message(active.id, message_id))
    else:
        stream_reply(controller, active.id, controller.edit_prompt(active.id, message_id, new_prompt))
    st.rerun()

# Footer
st.divider()
st.markdown("*🤖 Powered by Gemini AI*")
