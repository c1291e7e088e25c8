import logging
import asyncio
from pathlib import Path

import toml
from telegram import Update
from telegram.ext import (
    ApplicationBuilder,
    CommandHandler,
    ContextTypes,
)

from signals.config import load_config
from storage import init_db
from .jobs import CONFIG_PATH, help_job, orders_job, reconcile_job, status_job, trades_job

# --- load config ---
_cfg_path = Path(__file__).with_name("config.toml")
if not _cfg_path.exists():
    _cfg_path = CONFIG_PATH
_cfg = toml.load(_cfg_path)
TOKEN = _cfg["telegram"]["bot_token"]
AUTHORIZED_CHAT_ID = str(_cfg["telegram"]["chat_id"])
PAIRS_CFG = load_config(_cfg_path)

logging.basicConfig(level=logging.INFO)


def restricted(func):
    """
    Decorator to block unauthorized chats but reply politely.
    """
    async def wrapped(update: Update, context: ContextTypes.DEFAULT_TYPE):
        chat_id = str(update.effective_chat.id)
        if chat_id != AUTHORIZED_CHAT_ID:
            await update.message.reply_text("🚫 You are not authorized to use this bot.")
            logging.warning("Unauthorized access attempt from %s", chat_id)
            return
        await func(update, context)
    return wrapped


@restricted
async def status(update: Update, context: ContextTypes.DEFAULT_TYPE):
    text = await asyncio.to_thread(status_job, PAIRS_CFG, _cfg_path)
    await update.message.reply_text(text)


@restricted
async def trades(update: Update, context: ContextTypes.DEFAULT_TYPE):
    text = await asyncio.to_thread(trades_job, PAIRS_CFG)
    await update.message.reply_text(text)


@restricted
async def orders(update: Update, context: ContextTypes.DEFAULT_TYPE):
    text = await asyncio.to_thread(orders_job)
    await update.message.reply_text(text)


@restricted
async def reconcile(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """Clear a halt once real exposure on the venue was checked by hand."""
    mode = context.args[0].lower() if context.args else ""
    if mode not in ("flat", "keep"):
        return await update.message.reply_text("Usage: /reconcile flat|keep")
    try:
        text = await asyncio.to_thread(reconcile_job, PAIRS_CFG, mode == "keep")
        await update.message.reply_text(text)
    except Exception as e:
        logging.error("Reconcile failed: %s", e)
        await update.message.reply_text(f"❌ Reconcile failed – {e}")


@restricted
async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.message.reply_text(help_job())


def main():
    init_db()
    app = ApplicationBuilder().token(TOKEN).build()

    app.add_handler(CommandHandler("status", status))
    app.add_handler(CommandHandler("trades", trades))
    app.add_handler(CommandHandler("orders", orders))
    app.add_handler(CommandHandler("reconcile", reconcile))
    app.add_handler(CommandHandler("help", help_command))

    app.run_polling()


if __name__ == "__main__":
    main()
