import logging
from typing import Any, Dict, Optional


_LOGGER = logging.getLogger("campaignflow")


def log(level: int, campaign_id: Optional[str], message: str, **dimensions: Any) -> None:
    dims: Dict[str, Any] = {"campaignId": campaign_id} if campaign_id else {}
    dims.update(dimensions)
    try:
        _LOGGER.log(level, message, extra={"custom_dimensions": dims})
    except Exception:
        # Fallback if extra/custom_dimensions not supported in the environment
        _LOGGER.log(level, f"{message} | {dims}")


def info(campaign_id: Optional[str], message: str, **dimensions: Any) -> None:
    log(logging.INFO, campaign_id, message, **dimensions)


def warning(campaign_id: Optional[str], message: str, **dimensions: Any) -> None:
    log(logging.WARNING, campaign_id, message, **dimensions)


def error(campaign_id: Optional[str], message: str, **dimensions: Any) -> None:
    log(logging.ERROR, campaign_id, message, **dimensions)
