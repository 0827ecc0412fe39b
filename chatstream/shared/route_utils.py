from loguru import logger


async def log_connection(protocol: str, conversation_id: str, extra: dict | None = None) -> None:
    """
    Single structured log entry for a stream opening or closing.
    Writes: protocol, conversation_id, and any extra fields.
    The chat route calls this once on connect and once on disconnect.
    """
    log_str = f"protocol={protocol} conversation_id={conversation_id}"
    for k, v in (extra or {}).items():
        log_str += f" {k}={v}"
    logger.info(log_str)
