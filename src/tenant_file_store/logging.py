import logging, sys, json


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False)


def configure(level: str = "INFO") -> None:
    """Ставит JSON-handler на stdout. Повторный вызов меняет уровень и заново привязывает текущий sys.stdout."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    existing = [h for h in root.handlers if isinstance(h.formatter, JsonFormatter)]
    if existing:
        for h in existing:
            if isinstance(h, logging.StreamHandler):
                h.stream = sys.stdout
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
