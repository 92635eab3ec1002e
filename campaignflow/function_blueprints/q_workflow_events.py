import azure.functions as func

from campaignflow.campaigns.event_consumer import process_event_message
from campaignflow.shared.event_publisher import CAMPAIGN_EVENTS_QUEUE
from campaignflow.shared.logging_utils import error as log_error, info as log_info
from .dependencies import get_campaign_service

bp = func.Blueprint()


@bp.function_name(name="q_workflow_events")
@bp.queue_trigger(
    arg_name="msg",
    queue_name="%CAMPAIGN_EVENTS_QUEUE%",
    connection="AzureWebJobsStorage",
)
def q_workflow_events(msg: func.QueueMessage) -> None:
    body = msg.get_body().decode("utf-8")
    log_info(None, "queue:dequeued", queue=CAMPAIGN_EVENTS_QUEUE, messageId=getattr(msg, "id", None))
    try:
        process_event_message(body, get_campaign_service())
    except Exception as exc:
        log_error(None, "events:consume_failed", messageId=getattr(msg, "id", None), error=str(exc))
        raise
