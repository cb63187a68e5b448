import html
import logging
import os
import re
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from telegram import LinkPreviewOptions, Update
from telegram.constants import ParseMode
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    Defaults,
    MessageHandler,
    filters,
)
from telegram.request import HTTPXRequest

from purchase_assistant.config import get_assistant_settings, get_web_base_url, load_config
from purchase_assistant.logging import turn_context
from services import memory as memory_service
from services.assistant import (
    HELP_TEXT,
    WELCOME_TEXT,
    ConversationSession,
    outcome_kind,
    outcome_to_dict,
)
from services.memory import add_message, get_or_create_active_session, init_db
from services.metrics import format_metrics_telegram, record_error
from services.record_store import SqliteRecordStore
from services.tg_format import render_outcome, tg_escape

logger = logging.getLogger(__name__)

CONFIG = load_config()

TELEGRAM_MESSAGE_LIMIT = 3500
SESSION_KEY = "assistant_session"
NO_PREVIEW = LinkPreviewOptions(is_disabled=True)


def _allowed_user_ids() -> set[int]:
    # TELEGRAM_ALLOWED_USER_IDS is folded into this key by the config loader.
    telegram_cfg = CONFIG.get("telegram") if isinstance(CONFIG.get("telegram"), dict) else {}
    ids: set[int] = set()
    for value in telegram_cfg.get("allowed_user_ids") or []:
        try:
            ids.add(int(value))
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid allowed user id %r.", value)
    return ids


def _allowed(update: Update) -> bool:
    allowed_ids = _allowed_user_ids()
    if not allowed_ids:
        logger.warning("SECURITY: no allowed_user_ids configured, the bot answers every user.")
        return True

    user = update.effective_user
    return bool(user and user.id in allowed_ids)


def _to_plain_text(html_text: str) -> str:
    no_tags = re.sub(r"<[^>]+>", "", html_text or "")
    return html.unescape(no_tags).strip()


def _split_for_telegram(text: str, limit: int = TELEGRAM_MESSAGE_LIMIT) -> List[str]:
    """Pack whole lines into messages under the Telegram size limit."""
    chunks: List[str] = []
    current = ""
    for line in (text or "").strip().splitlines():
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current.strip():
        chunks.append(current)
    return chunks


def new_session() -> ConversationSession:
    settings = get_assistant_settings(CONFIG)
    return ConversationSession(
        SqliteRecordStore(),
        max_candidates=settings["max_candidates"],
        history_limit=settings["history_limit"],
    )


def get_session(context: ContextTypes.DEFAULT_TYPE) -> ConversationSession:
    """One session per chat, kept for the lifetime of the bot process."""
    session = context.chat_data.get(SESSION_KEY)
    if session is None:
        session = new_session()
        context.chat_data[SESSION_KEY] = session
    return session


def _record_transcript(
    chat_id: int,
    user_id: int,
    role: str,
    content: str,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """Append one message to the chat transcript; a failed write never blocks the reply."""
    try:
        session_id = get_or_create_active_session(chat_id, user_id)
        add_message(session_id, role, content, payload=payload)
    except (sqlite3.Error, OSError) as exc:
        logger.error("Transcript write failed for chat %s: %s", chat_id, exc)
        record_error("transcript", type(exc).__name__)


async def _send_html_reply(update: Update, formatted_text: str) -> None:
    if not update.message:
        return

    for chunk in _split_for_telegram(formatted_text):
        try:
            await update.message.reply_text(
                chunk,
                parse_mode=ParseMode.HTML,
                link_preview_options=NO_PREVIEW,
            )
        except Exception as exc:
            logger.warning(
                "Failed to send formatted HTML reply, falling back to escaped text: %s", exc
            )
            await update.message.reply_text(
                html.escape(_to_plain_text(chunk)),
                parse_mode=ParseMode.HTML,
                link_preview_options=NO_PREVIEW,
            )


async def start_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not _allowed(update) or not update.message:
        return
    get_session(context)
    await update.message.reply_text(tg_escape(WELCOME_TEXT))


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not _allowed(update) or not update.message:
        return
    await update.message.reply_text(tg_escape(HELP_TEXT))


async def cancel_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not _allowed(update) or not update.message:
        return
    session = get_session(context)
    had_pending = session.has_pending_selection()
    session.pending.clear()
    await update.message.reply_text("Choice list cleared." if had_pending else "Nothing to cancel.")


async def metrics_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not _allowed(update) or not update.message:
        return
    await _send_html_reply(update, format_metrics_telegram())


async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not _allowed(update):
        return
    if not update.message or not update.message.text:
        return

    text = update.message.text.strip()
    user = update.effective_user
    chat_obj = update.effective_chat
    telegram_user_id = int(user.id) if user else 0
    chat_id = int(chat_obj.id) if chat_obj else telegram_user_id

    with turn_context() as turn_id:
        logger.info("Received text message: %s...", text[:50])
        session = get_session(context)
        _record_transcript(chat_id, telegram_user_id, "user", text)

        outcome = session.handle_turn(text)
        formatted = render_outcome(
            outcome,
            currency=get_assistant_settings(CONFIG)["currency"],
            web_base_url=get_web_base_url(CONFIG),
        )

        payload = outcome_to_dict(outcome)
        payload["turn_id"] = turn_id
        _record_transcript(
            chat_id, telegram_user_id, "assistant", _to_plain_text(formatted), payload=payload
        )

        try:
            await _send_html_reply(update, formatted)
            logger.info("Reply sent (%s).", outcome_kind(outcome))
        except Exception as exc:
            logger.error("Failed to send reply: %s", exc)


def run_bot() -> None:
    env_path = Path(".") / ".env"
    load_dotenv(dotenv_path=env_path)
    init_db()
    logger.info("Purchase assistant DB path: %s", str(memory_service.get_db_path()))

    telegram_cfg = CONFIG.get("telegram") if isinstance(CONFIG.get("telegram"), dict) else {}
    env_var_name = telegram_cfg.get("bot_token_env_var", "TELEGRAM_BOT_TOKEN")
    token = os.getenv(env_var_name, "").strip()
    if not token:
        raise RuntimeError(f"{env_var_name} is not set. Put it in your .env file.")

    request = HTTPXRequest(
        connect_timeout=30,
        read_timeout=60,
        write_timeout=60,
        pool_timeout=30,
    )

    defaults = Defaults(parse_mode=ParseMode.HTML, link_preview_options=NO_PREVIEW)
    # Updates are processed one at a time, so turns within a chat never overlap.
    app = (
        Application.builder()
        .token(token)
        .request(request)
        .defaults(defaults)
        .concurrent_updates(False)
        .build()
    )

    app.add_handler(CommandHandler("start", start_command))
    app.add_handler(CommandHandler("help", help_command))
    app.add_handler(CommandHandler("cancel", cancel_command))
    app.add_handler(CommandHandler("metrics", metrics_command))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text))

    app.run_polling(close_loop=False)


if __name__ == "__main__":
    run_bot()
