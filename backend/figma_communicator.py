"""
Figma Communicator - Host command RPC over the bridge

Each host-scene operation is a `tool_call` message with a fresh request id;
the plugin answers with a `tool_response` carrying the same id. A future per
request is resolved (or failed) when the response arrives.
"""

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class HostCommandError(Exception):
    """
    A host command failed, timed out, or could not be delivered.

    Carries a structured payload: { code: str, message: str, details?: dict }.
    Known codes: `timeout`, `communication_error`, `plugin_reported_failure`,
    `unknown_plugin_error`, plus whatever codes the plugin itself reports.
    """

    def __init__(self, payload: Any, command: Optional[str] = None, params: Optional[Dict[str, Any]] = None):
        self.command = command
        self.params = params

        if isinstance(payload, dict):
            self.code: str = str(payload.get("code", "unknown_plugin_error"))
            self.message: str = str(payload.get("message", ""))
            self.details: Dict[str, Any] = payload.get("details", {}) or {}
        else:
            self.code = "unknown_plugin_error"
            self.message = str(payload)
            self.details = {}
        self.payload = {"code": self.code, "message": self.message, "details": self.details}

        text = self.message if self.message else self.code
        if command:
            text = f"{command}: {text}"
        super().__init__(text)


class FigmaCommunicator:
    """
    Sends host commands to the Figma plugin and waits for their responses.

    - one future per request id, resolved by `handle_tool_response`
    - per-call timeout (`FIGMA_TOOL_TIMEOUT`, default 30s)
    - every failure surfaces as `HostCommandError`
    """

    def __init__(self, websocket, timeout: float = 30.0):
        self.websocket = websocket
        self.timeout = timeout
        self.pending_requests: Dict[str, asyncio.Future] = {}
        self.request_timestamps: Dict[str, float] = {}
        self.request_meta: Dict[str, Dict[str, Any]] = {}

    def generate_id(self) -> str:
        return str(uuid.uuid4())

    async def send_command(self, command: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Send `command` to the plugin and return its result.

        Raises:
            HostCommandError: plugin error, explicit failure result, timeout,
                or bridge send failure.
        """
        if not self.websocket:
            raise HostCommandError(
                {"code": "communication_error", "message": "WebSocket connection not available"},
                command=command,
                params=params,
            )

        request_id = self.generate_id()
        tool_call_message = {
            "type": "tool_call",
            "id": request_id,
            "command": command,
            "params": params or {},
        }

        future = asyncio.get_running_loop().create_future()
        self.pending_requests[request_id] = future
        self.request_timestamps[request_id] = time.time()
        self.request_meta[request_id] = {"command": command, "params": params or {}}
        logger.debug(f"📝 Added to pending requests: {request_id} (total {len(self.pending_requests)})")

        try:
            logger.info(f"🚀 Sending tool_call: {command} with ID: {request_id}")
            logger.debug(f"🚀 Tool call payload: {json.dumps(tool_call_message)}")
            try:
                await self.websocket.send(json.dumps(tool_call_message))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise HostCommandError(
                    {"code": "communication_error", "message": f"Failed to send command: {e}"},
                    command=command,
                    params=params,
                ) from e

            return await asyncio.wait_for(future, timeout=self.timeout)

        except asyncio.TimeoutError:
            start_time = self.request_timestamps.get(request_id)
            elapsed = time.time() - start_time if start_time else self.timeout
            logger.error(f"⏰ Tool call {command} (ID: {request_id}) timed out after {elapsed:.3f}s (limit: {self.timeout}s)")
            raise HostCommandError(
                {
                    "code": "timeout",
                    "message": f"Command '{command}' timed out after {elapsed:.1f} seconds",
                    "details": {"timeout": self.timeout},
                },
                command=command,
                params=params,
            )

        except HostCommandError as e:
            logger.error(f"❌ Tool call {command} (ID: {request_id}) failed: {e}")
            raise

        finally:
            self.pending_requests.pop(request_id, None)
            self.request_timestamps.pop(request_id, None)
            self.request_meta.pop(request_id, None)

    def handle_tool_response(self, message: Dict[str, Any]) -> None:
        """Resolve the pending future that matches a `tool_response` message."""
        request_id = message.get("id")
        if not request_id:
            logger.warning("❌ Received tool_response without ID")
            return

        future = self.pending_requests.get(request_id)
        if future is None:
            logger.warning(f"❌ Received tool_response for unknown ID: {request_id}")
            return
        if future.done():
            logger.debug(f"⚠️ Future already completed for {request_id}")
            return

        start_time = self.request_timestamps.get(request_id)
        elapsed = time.time() - start_time if start_time else 0
        meta = self.request_meta.get(request_id) or {}
        cmd = meta.get("command")
        params = meta.get("params")

        if isinstance(message.get("error_structured"), dict):
            error_payload = message["error_structured"]
            logger.error(f"❌ Tool call {request_id} failed after {elapsed:.3f}s: code={error_payload.get('code')}, message={error_payload.get('message')}")
            future.set_exception(HostCommandError(error_payload, command=cmd, params=params))
            return

        if "error" in message:
            error_val = message.get("error")
            logger.error(f"❌ Tool call {request_id} failed after {elapsed:.3f}s: {error_val}")
            future.set_exception(HostCommandError(_error_payload(error_val), command=cmd, params=params))
            return

        result = message.get("result", {})
        if isinstance(result, dict) and result.get("success") is False:
            err_text = result.get("message") or "Command reported failure"
            logger.error(f"❌ Tool call {request_id} reported failure after {elapsed:.3f}s: {err_text}")
            future.set_exception(HostCommandError(
                {"code": "plugin_reported_failure", "message": str(err_text), "details": {"result": result}},
                command=cmd,
                params=params,
            ))
            return

        logger.info(f"✅ Tool call {cmd} ({request_id}) completed after {elapsed:.3f}s")
        logger.debug(f"🎯 Result payload: {result}")
        future.set_result(result)

    def cleanup_pending_requests(self) -> None:
        """Cancel all pending requests (called on disconnect and shutdown)."""
        for request_id, future in self.pending_requests.items():
            if not future.done():
                future.cancel()
                logger.info(f"Cancelled pending request: {request_id}")
        self.pending_requests.clear()
        self.request_timestamps.clear()
        self.request_meta.clear()


def _error_payload(error_val: Any) -> Dict[str, Any]:
    """`error` may be an object, a JSON string, or plain text."""
    if isinstance(error_val, dict):
        return error_val
    if isinstance(error_val, str):
        try:
            parsed = json.loads(error_val)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed
    return {"code": "unknown_plugin_error", "message": str(error_val)}
