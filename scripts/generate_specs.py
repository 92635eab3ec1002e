#!/usr/bin/env python3
"""
Generate JSON Schemas, YAML variants, and OpenAPI from Pydantic models.

Outputs under campaignflow/specs/:
 - schemas/*.json (and *.yaml)
 - openapi.yaml and openapi.json
"""
from __future__ import annotations

import json
import sys
from pathlib import Path

import yaml

ROOT = Path(__file__).resolve().parents[1]
SPECS = ROOT / "campaignflow" / "specs"
SCHEMAS_DIR = SPECS / "schemas"

sys.path.insert(0, str(ROOT))

from campaignflow.specs.models import SCHEMA_MODELS  # noqa: E402
from campaignflow.specs.models.http import (  # noqa: E402
    ApprovalRequest,
    ApprovalResponse,
    CampaignListResponse,
    CampaignResponse,
    CreateCampaignRequest,
    CreateCampaignResponse,
    ErrorResponse,
    PostListResponse,
    PostReviewRequest,
    UpdateCampaignRequest,
    UpdatePostStatusRequest,
)
from campaignflow.specs.models.domain import SocialPost  # noqa: E402

COMPONENTS = {
    "CreateCampaignRequest": CreateCampaignRequest,
    "CreateCampaignResponse": CreateCampaignResponse,
    "CampaignResponse": CampaignResponse,
    "CampaignListResponse": CampaignListResponse,
    "UpdateCampaignRequest": UpdateCampaignRequest,
    "PostListResponse": PostListResponse,
    "UpdatePostStatusRequest": UpdatePostStatusRequest,
    "PostReviewRequest": PostReviewRequest,
    "SocialPost": SocialPost,
    "ApprovalRequest": ApprovalRequest,
    "ApprovalResponse": ApprovalResponse,
    "ErrorResponse": ErrorResponse,
}

# (path, method, operationId, summary, request component, success code, response component)
ROUTES = [
    ("/campaigns", "post", "createCampaign", "Create a campaign and start its workflow",
     "CreateCampaignRequest", "202", "CreateCampaignResponse"),
    ("/campaigns", "get", "listCampaigns", "List the tenant's campaigns", None, "200", "CampaignListResponse"),
    ("/campaigns/{campaignId}", "get", "getCampaign", "Get one campaign", None, "200", "CampaignResponse"),
    ("/campaigns/{campaignId}", "patch", "updateCampaign", "Update fields allowed in the current status",
     "UpdateCampaignRequest", "200", "CampaignResponse"),
    ("/campaigns/{campaignId}/posts", "get", "listPosts", "List a campaign's posts", None, "200", "PostListResponse"),
    ("/campaigns/{campaignId}/posts/{postId}/status", "put", "updatePostStatus", "Set a post's status",
     "UpdatePostStatusRequest", "200", "SocialPost"),
    ("/campaigns/{campaignId}/posts/{postId}/review", "post", "reviewPost", "Approve or reject a post in review",
     "PostReviewRequest", "200", "SocialPost"),
    ("/campaigns/{campaignId}/approval", "post", "submitApproval", "Resume a workflow waiting on approval",
     "ApprovalRequest", "202", "ApprovalResponse"),
]

ERROR_CODES = {
    "400": "Validation error",
    "401": "Missing x-tenant-id header",
    "404": "Not found",
    "409": "Version conflict or disallowed transition",
    "500": "Unexpected error",
}


def write_json_yaml(obj: dict, json_path: Path) -> None:
    json_path.parent.mkdir(parents=True, exist_ok=True)
    with json_path.open("w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)
    yaml_path = json_path.with_suffix(".yaml")
    with yaml_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(obj, f, sort_keys=False)


def generate_model_schemas() -> None:
    for filename, model in SCHEMA_MODELS.items():
        schema = model.model_json_schema()
        write_json_yaml(schema, SCHEMAS_DIR / filename)


def _ref(name: str) -> dict:
    return {"application/json": {"schema": {"$ref": f"#/components/schemas/{name}"}}}


def _parameters(path: str, operation_id: str) -> list:
    params = [{"in": "header", "name": "x-tenant-id", "schema": {"type": "string"}, "required": True}]
    for name in ("campaignId", "postId"):
        if "{" + name + "}" in path:
            params.append({"in": "path", "name": name, "schema": {"type": "string"}, "required": True})
    if operation_id == "submitApproval":
        params.append({"in": "query", "name": "token", "schema": {"type": "string"}, "required": False})
    return params


def build_openapi() -> dict:
    paths: dict = {}
    for path, method, operation_id, summary, request, code, response in ROUTES:
        op = {
            "summary": summary,
            "operationId": operation_id,
            "parameters": _parameters(path, operation_id),
            "responses": {code: {"description": "Success", "content": _ref(response)}},
        }
        if request:
            op["requestBody"] = {"required": True, "content": _ref(request)}
        for err_code, description in ERROR_CODES.items():
            op["responses"][err_code] = {"description": description, "content": _ref("ErrorResponse")}
        paths.setdefault(path, {})[method] = op

    return {
        "openapi": "3.0.3",
        "info": {
            "title": "Campaign Orchestration API",
            "version": "0.1.0",
            "description": "HTTP endpoints exposed by the campaign orchestration Functions app.",
        },
        "servers": [
            {"url": "http://localhost:7071/api", "description": "Local Functions host"}
        ],
        "paths": paths,
        "components": {
            "schemas": {
                name: model.model_json_schema(ref_template="#/components/schemas/{model}")
                for name, model in COMPONENTS.items()
            }
        },
    }


def generate_openapi() -> None:
    spec = build_openapi()
    write_json_yaml(spec, SPECS / "openapi.json")


def main() -> None:
    generate_model_schemas()
    generate_openapi()
    print("Specs generated under campaignflow/specs/")


if __name__ == "__main__":
    main()
