# storefront/handlers/base_handler.py
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar
from aiohttp import web
from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError
from ..config import Config
from ..errors import (
    AuthenticationRequired, InventoryError, OutOfStock, StorefrontError, ValidationError
)
from ..utils.security import keys_match

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")

def dumps(data: Any) -> str:
    return json.dumps(data, default=_json_default)

def json_response(body: Dict[str, Any], status: int = 200) -> web.Response:
    return web.json_response(body, status=status, dumps=dumps)

def error_body(error: StorefrontError) -> Dict[str, Any]:
    body = {"success": False, "error": error.message}
    if isinstance(error, InventoryError):
        body["product_id"] = error.product_id
    if isinstance(error, OutOfStock):
        body["available"] = error.available
    return body

@web.middleware
async def error_middleware(request: web.Request, handler):
    """Service errors become JSON envelopes; anything unexpected is a logged 500"""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except StorefrontError as e:
        if e.status >= 500:
            logger.error(f"{request.method} {request.path} failed: {e.message}")
        return json_response(error_body(e), status=e.status)
    except Exception as e:
        logger.error(f"Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
        return json_response({"success": False, "error": "Internal server error"}, status=500)

class BaseHandler:
    """Base class for HTTP handlers"""

    def __init__(self, services):
        self.services = services
        self.logger = logging.getLogger(self.__class__.__module__)

    @staticmethod
    def ok(status: int = 200, **fields) -> web.Response:
        return json_response({"success": True, **fields}, status=status)

    @staticmethod
    def user_id(request: web.Request) -> Optional[str]:
        """Caller identity as established upstream; ``None`` for guests"""
        return request.headers.get("X-User-Id") or None

    def require_user(self, request: web.Request) -> str:
        user_id = self.user_id(request)
        if not user_id:
            raise AuthenticationRequired("Authentication required")
        return user_id

    @staticmethod
    def is_admin(request: web.Request) -> bool:
        return bool(Config.ADMIN_API_KEY) and keys_match(
            Config.ADMIN_API_KEY, request.headers.get("X-Admin-Key")
        )

    def require_admin(self, request: web.Request):
        if not self.is_admin(request):
            raise AuthenticationRequired("Unauthorized")

    @staticmethod
    async def read_json(request: web.Request) -> Dict[str, Any]:
        try:
            data = await request.json()
        except ValueError:
            raise ValidationError("Request body must be valid JSON")
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        return data

    def webhook_payload(self, raw_body: bytes, source: str) -> Optional[Dict[str, Any]]:
        """Decoded webhook body, or None when it is not a JSON object"""
        try:
            payload = json.loads(raw_body or b"null")
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            self.logger.warning(f"{source} webhook ignored, body is not a JSON object: {raw_body[:200]!r}")
            return None
        return payload

    @staticmethod
    def parse(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
        try:
            return model.model_validate(data)
        except ModelValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise ValidationError(f"{location}: {first['msg']}" if location else first["msg"])

    @staticmethod
    def int_param(request: web.Request, name: str) -> int:
        raw = request.match_info.get(name) or request.query.get(name)
        try:
            return int(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid {name}")

    @staticmethod
    def query_int(request: web.Request, name: str, default: int) -> int:
        raw = request.query.get(name)
        if raw is None:
            return default
        try:
            return int(raw)
        except ValueError:
            raise ValidationError(f"Invalid {name}")
