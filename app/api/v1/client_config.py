from fastapi import APIRouter

from app.core.config import settings
from app.schemas.chat import ConfigOut

router = APIRouter(tags=['config'])


@router.get('/config', response_model=ConfigOut)
def get_client_config() -> ConfigOut:
    return ConfigOut(
        automation_host=settings.automation_host,
        configured=bool(settings.AUTOMATION_WEBHOOK_URL),
        table_default_rows=settings.TABLE_DEFAULT_ROWS,
        table_max_rows=settings.TABLE_MAX_ROWS,
    )
