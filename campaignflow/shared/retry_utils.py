import time
from typing import Callable, Optional, Tuple, TypeVar

from campaignflow.shared.logging_utils import warning as log_warning

T = TypeVar("T")


def retry_with_backoff(
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    delay: float = 1.5,
    backoff: float = 1.5,
    max_delay: Optional[float] = None,
    exceptions: Tuple[type, ...] = (Exception,),
    retry_if: Optional[Callable[[BaseException], bool]] = None,
    label: str = "operation",
    campaign_id: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``operation`` until it succeeds or ``attempts`` run out.

    Only exceptions matching ``exceptions`` (and accepted by ``retry_if``,
    when given) are retried; anything else is raised on the spot. The wait
    grows by ``backoff`` after each failure and never exceeds ``max_delay``.
    """
    attempt = 1
    while True:
        try:
            return operation()
        except exceptions as exc:  # type: ignore[misc]
            if attempt >= attempts or (retry_if is not None and not retry_if(exc)):
                raise
            log_warning(
                campaign_id,
                "retry:backoff",
                label=label,
                attempt=attempt,
                delaySeconds=round(delay, 3),
                error=str(exc),
            )
            sleep(delay)
            attempt += 1
            delay = delay * backoff if max_delay is None else min(delay * backoff, max_delay)
