import uuid
from pathlib import Path
from typing import Optional, Union

from loguru import logger

DEFAULT_CLIENT_ID_PATH = Path.home() / '.chat_relay' / 'client_id'


def generate_client_id() -> str:
    return f'client_{uuid.uuid4()}'


def load_client_id(path: Optional[Union[str, Path]] = None) -> str:
    """Return the persisted client id, creating it on first use.

    A location that cannot be read or written still yields a usable id for
    the current process; it just will not survive a restart.
    """
    target = Path(path) if path else DEFAULT_CLIENT_ID_PATH
    try:
        stored = target.read_text(encoding='utf-8').strip() if target.is_file() else ''
    except OSError as exc:
        logger.warning('Could not read client id from {}: {}', target, exc)
        return generate_client_id()
    if stored:
        return stored

    created = generate_client_id()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(created, encoding='utf-8')
    except OSError as exc:
        logger.warning('Could not persist client id to {}: {}', target, exc)
    return created
