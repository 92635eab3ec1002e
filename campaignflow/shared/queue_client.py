"""
Storage queue access for campaign event batches.
"""
import os
from functools import lru_cache

from azure.core.exceptions import ResourceExistsError
from azure.storage.queue import QueueClient, TextBase64EncodePolicy

from campaignflow.shared.logging_utils import error as log_error, info as log_info
from campaignflow.specs.common.errors import ConfigurationError

QUEUE_CONNECTION_SETTING = "AzureWebJobsStorage"


@lru_cache(maxsize=None)
def get_queue_client(queue_name: str, connection_setting: str = QUEUE_CONNECTION_SETTING) -> QueueClient:
    """Return a cached client for ``queue_name``, creating the queue on first use.

    Messages are base64 encoded so the Functions queue trigger can read them
    with its default settings.
    """
    conn_str = os.environ.get(connection_setting)
    if not conn_str:
        raise ConfigurationError(f"{connection_setting} connection string not found")

    client = QueueClient.from_connection_string(
        conn_str=conn_str,
        queue_name=queue_name,
        message_encode_policy=TextBase64EncodePolicy(),
    )
    try:
        client.create_queue()
        log_info(None, "queue:created", queue=queue_name)
    except ResourceExistsError:
        pass
    except Exception as exc:
        log_error(None, "queue:create_failed", queue=queue_name, error=str(exc))
        raise
    return client
