import logging
import pathlib

import requests
import toml
from requests.adapters import HTTPAdapter, Retry

_session = requests.Session()
retries = Retry(total=3, backoff_factor=0.5, status_forcelist=[500,502,503,504])
_session.mount("https://", HTTPAdapter(max_retries=retries))

_cfg_path = pathlib.Path(__file__).with_name("config.toml")
if not _cfg_path.exists():
    _cfg_path = pathlib.Path(__file__).parent.parent / "config.toml"


def _telegram_cfg():
    if not _cfg_path.exists():
        return None
    section = toml.load(_cfg_path).get("telegram") or {}
    if not section.get("bot_token") or not section.get("chat_id"):
        return None
    return section


def send(text: str):
    cfg = _telegram_cfg()
    if cfg is None:
        logging.info("Telegram not configured, message not sent: %s", text)
        return
    url = f"https://api.telegram.org/bot{cfg['bot_token']}/sendMessage"
    try:
        _session.post(url, json={"chat_id": cfg["chat_id"], "text": text}, timeout=5)
    except Exception as exc:
        logging.error("Telegram failed: %s", exc)
