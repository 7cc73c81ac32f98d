# app/infrastructure/database/template_repository.py
import json
import logging
from typing import Dict, Optional

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.database import get_db
from app.infrastructure.database.models import Template

logger = logging.getLogger(__name__)


def parse_svg_slots(raw) -> Dict[str, str]:
    """Normalize the ``svg`` column into a ``{slot: filename}`` dict.

    Older rows keep the mapping as JSON text, newer ones as a JSON object.
    """
    if raw is None:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Template svg column is not valid JSON")
            return {}
    if isinstance(raw, list):
        return {str(i): name for i, name in enumerate(raw) if name}
    if isinstance(raw, dict):
        return {str(k): v for k, v in raw.items() if v}
    return {}


class TemplateRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_svg_ref(self, template_id: str, slot: str) -> Optional[str]:
        result = await self.session.execute(
            select(Template.svg).where(Template.uuid == template_id)
        )
        row = result.first()
        if row is None:
            logger.warning(f"Template {template_id} not found")
            return None
        svg_ref = parse_svg_slots(row[0]).get(str(slot))
        if svg_ref is None:
            logger.warning(f"Template {template_id} has no SVG for slot {slot}")
        return svg_ref


def get_template_repository(db: AsyncSession = Depends(get_db)) -> TemplateRepository:
    return TemplateRepository(db)
