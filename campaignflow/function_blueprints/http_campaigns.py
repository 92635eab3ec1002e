import azure.functions as func
import azure.durable_functions as df

from campaignflow.http import campaign_handlers as handlers
from .dependencies import get_campaign_service

# Durable Blueprint so the HTTP routes can bind a durable client
bp = df.Blueprint()


@bp.function_name(name="campaigns_create")
@bp.route(route="campaigns", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
@bp.durable_client_input(client_name="client")
async def campaigns_create(req: func.HttpRequest, client: df.DurableOrchestrationClient) -> func.HttpResponse:
    return await handlers.create_campaign(req, client, get_campaign_service())


@bp.function_name(name="campaigns_list")
@bp.route(route="campaigns", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
@bp.durable_client_input(client_name="client")
async def campaigns_list(req: func.HttpRequest, client: df.DurableOrchestrationClient) -> func.HttpResponse:
    return await handlers.list_campaigns(req, client, get_campaign_service())


@bp.function_name(name="campaigns_get")
@bp.route(route="campaigns/{campaign_id}", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
@bp.durable_client_input(client_name="client")
async def campaigns_get(req: func.HttpRequest, client: df.DurableOrchestrationClient) -> func.HttpResponse:
    return await handlers.get_campaign(req, client, get_campaign_service())


@bp.function_name(name="campaigns_update")
@bp.route(route="campaigns/{campaign_id}", methods=["PATCH"], auth_level=func.AuthLevel.FUNCTION)
@bp.durable_client_input(client_name="client")
async def campaigns_update(req: func.HttpRequest, client: df.DurableOrchestrationClient) -> func.HttpResponse:
    return await handlers.update_campaign(req, client, get_campaign_service())


@bp.function_name(name="campaign_posts_list")
@bp.route(route="campaigns/{campaign_id}/posts", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
@bp.durable_client_input(client_name="client")
async def campaign_posts_list(req: func.HttpRequest, client: df.DurableOrchestrationClient) -> func.HttpResponse:
    return await handlers.list_posts(req, client, get_campaign_service())


@bp.function_name(name="campaign_post_status")
@bp.route(route="campaigns/{campaign_id}/posts/{post_id}/status", methods=["PUT"], auth_level=func.AuthLevel.FUNCTION)
@bp.durable_client_input(client_name="client")
async def campaign_post_status(req: func.HttpRequest, client: df.DurableOrchestrationClient) -> func.HttpResponse:
    return await handlers.update_post_status(req, client, get_campaign_service())


@bp.function_name(name="campaign_post_review")
@bp.route(route="campaigns/{campaign_id}/posts/{post_id}/review", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
@bp.durable_client_input(client_name="client")
async def campaign_post_review(req: func.HttpRequest, client: df.DurableOrchestrationClient) -> func.HttpResponse:
    return await handlers.review_post(req, client, get_campaign_service())


# Reached from the reviewer link; the callback token is the credential
@bp.function_name(name="campaign_approval")
@bp.route(route="campaigns/{campaign_id}/approval", methods=["POST"], auth_level=func.AuthLevel.ANONYMOUS)
@bp.durable_client_input(client_name="client")
async def campaign_approval(req: func.HttpRequest, client: df.DurableOrchestrationClient) -> func.HttpResponse:
    return await handlers.submit_approval(req, client, get_campaign_service())
