import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from chat_core.config.settings import settings


# 含用户输入或模型输出的字段，开启脱敏时只保留长度
CONTENT_FIELDS = ("input_text", "content")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if settings.log_redact_content:
            msg = (msg or "")[:64]
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "name": record.name,
            "msg": msg,
        }
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            fields = dict(extra)
            if settings.log_redact_content:
                for key in CONTENT_FIELDS:
                    if isinstance(fields.get(key), str):
                        fields[key] = f"<{len(fields[key])} chars>"
            payload.update(fields)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logger() -> logging.Logger:
    logger = logging.getLogger("chat_core")
    logger.setLevel(logging.INFO)
    if any(getattr(h, "_chat_core", False) for h in logger.handlers):
        return logger
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_dir / "chat.log", encoding="utf-8")
    fh.setLevel(logging.INFO)
    fh.setFormatter(JsonFormatter())
    fh._chat_core = True
    logger.addHandler(fh)
    return logger


logger = setup_logger()
