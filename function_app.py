import os
import logging
import azure.durable_functions as df

from campaignflow.function_blueprints.durable_campaign import bp as durable_campaign_bp
from campaignflow.function_blueprints.http_campaigns import bp as http_campaigns_bp
from campaignflow.function_blueprints.q_workflow_events import bp as q_workflow_events_bp

# Use DFApp as the root app so Durable triggers/activities are correctly registered
app = df.DFApp()


def _configure_logging() -> None:
    lvl = (os.getenv("AZURE_SDK_LOG_LEVEL") or "").upper()
    if lvl:
        level = getattr(logging, lvl, logging.INFO)
        logging.getLogger("azure").setLevel(level)
        logging.getLogger("azure.cosmos").setLevel(level)
    logging.getLogger("campaignflow").setLevel(logging.INFO)


_configure_logging()

app.register_functions(durable_campaign_bp)
app.register_functions(http_campaigns_bp)
app.register_functions(q_workflow_events_bp)
