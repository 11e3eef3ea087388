"""
HTTP Front End for SlackBridge

Exposes plugin calls and plugin settings over HTTP with FastAPI.
Plugin failures are data: calls always answer 200 with the result object.
"""

import json
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from .logging import get_logger
from .plugin_interfaces import CallMethod, error_result
from .plugin_manager import PluginManager


CALL_METHODS = [m.value for m in CallMethod]


class PluginSummary(BaseModel):
    """Plugin status entry of the admin listing"""
    name: str
    version: str
    description: str
    status: str
    uptime_seconds: float = 0
    call_count: int = 0
    last_error: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


async def _read_args(request: Request) -> Dict[str, Any]:
    """Query parameters merged with a JSON object body, body wins"""
    args: Dict[str, Any] = dict(request.query_params)

    body = await request.body()
    if body:
        payload = json.loads(body)
        if not isinstance(payload, dict):
            raise ValueError("Request body must be a JSON object")
        args.update(payload)

    return args


def create_app(plugin_manager: PluginManager, debug: bool = False) -> FastAPI:
    """
    Build the FastAPI application serving a plugin manager.

    Routes:
        /v1/{plugin}[/{path}]               plugin calls (GET, POST, PUT, DELETE)
        GET /admin/plugins                  plugin status listing
        GET|POST /admin/plugins/{plugin}/settings
    """
    logger = get_logger('web_api')

    app = FastAPI(
        title="SlackBridge",
        description="Plugin call and settings API for SlackBridge",
        version="1.0.0",
        debug=debug
    )

    async def dispatch(plugin: str, path: str, request: Request) -> Dict[str, Any]:
        try:
            args = await _read_args(request)
        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            logger.warning(f"Rejected call body for {plugin}/{path}: {e}")
            return error_result(f"Invalid request body: {e}")

        logger.debug(f"{request.method} /v1/{plugin}/{path}")
        return await plugin_manager.call_plugin(plugin, request.method, path, args)

    @app.api_route("/v1/{plugin}", methods=CALL_METHODS)
    async def call_plugin_root(plugin: str, request: Request):
        return await dispatch(plugin, "", request)

    @app.api_route("/v1/{plugin}/{path:path}", methods=CALL_METHODS)
    async def call_plugin_path(plugin: str, path: str, request: Request):
        return await dispatch(plugin, path, request)

    @app.get("/admin/plugins", response_model=List[PluginSummary])
    async def list_plugins():
        summaries = []
        for name, info in plugin_manager.get_all_plugins().items():
            metrics = info.get_metrics()
            details = None
            if info.instance is not None and hasattr(info.instance, 'get_status'):
                details = info.instance.get_status()
            summaries.append(PluginSummary(
                name=name,
                version=metrics['version'],
                description=metrics['description'],
                status=metrics['status'],
                uptime_seconds=metrics['uptime_seconds'],
                call_count=metrics['call_count'],
                last_error=metrics['last_error'],
                details=details
            ))
        return summaries

    @app.get("/admin/plugins/{plugin}/settings")
    async def get_settings(plugin: str):
        if plugin_manager.get_plugin_info(plugin) is None:
            raise HTTPException(status_code=404, detail=f"Plugin {plugin} not found")
        return plugin_manager.get_plugin_settings(plugin)

    @app.post("/admin/plugins/{plugin}/settings")
    async def set_settings(plugin: str, settings: Dict[str, Any]):
        saved = await plugin_manager.set_plugin_settings(plugin, settings)
        if saved is None:
            raise HTTPException(status_code=404, detail=f"Plugin {plugin} not found")
        return saved

    return app
