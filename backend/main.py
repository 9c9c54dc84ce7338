import json
import os
import sys
import signal
import logging
import asyncio
from typing import Any, Awaitable, Dict, Optional
import websockets
from dotenv import load_dotenv
from pydantic import ValidationError

# Load environment variables from .env file
load_dotenv()

from agents.tracing import set_tracing_disabled
set_tracing_disabled(True)

from design_errors import GenerationCancelled, ParseError, ProviderError, RenderError
from design_pipeline import DesignPipeline, completion_message
from design_schema import DesignDocument, ViewportSize
from design_tokens import IndexLimits
from figma_communicator import FigmaCommunicator, HostCommandError
from figma_scene import FigmaScene
from model_providers import DEFAULT_MAX_OUTPUT_TOKENS, GenerationRequest, get_provider
from settings_store import PluginSettings, SettingsStore

# Configure logging with INFO level (DEBUG was too verbose)
logging.basicConfig(
    level=logging.INFO,
    format='[%(asctime)s] [agent] [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%dT%H:%M:%S'
)
logger = logging.getLogger(__name__)

# Bridge housekeeping
MESSAGE_TYPE_JOIN = "join"
MESSAGE_TYPE_PING = "ping"
MESSAGE_TYPE_PONG = "pong"
MESSAGE_TYPE_SYSTEM = "system"
MESSAGE_TYPE_TOOL_RESPONSE = "tool_response"
MESSAGE_TYPE_ERROR = "error"

# UI -> agent
MESSAGE_TYPE_GENERATE_SCREEN = "generate-screen"
MESSAGE_TYPE_REGENERATE_SELECTION = "regenerate-selection"
MESSAGE_TYPE_CANCEL_GENERATION = "cancel-generation"
MESSAGE_TYPE_RENDER_DESIGN = "render-design"
MESSAGE_TYPE_REQUEST_SELECTION_DATA = "request-selection-data"
MESSAGE_TYPE_GET_SELECTION = "get-selection"
MESSAGE_TYPE_REFRESH_DESIGN_SYSTEM = "refresh-design-system"
MESSAGE_TYPE_SAVE_SETTINGS = "save-settings"
MESSAGE_TYPE_LOAD_SETTINGS = "load-settings"

# agent -> UI (selection-changed also arrives from the plugin)
MESSAGE_TYPE_SETTINGS_LOADED = "settings-loaded"
MESSAGE_TYPE_SELECTION_CHANGED = "selection-changed"
MESSAGE_TYPE_SELECTION_DATA = "selection-data"
MESSAGE_TYPE_DESIGN_SYSTEM_LOADED = "design-system-loaded"
MESSAGE_TYPE_GENERATION_STARTED = "generation-started"
MESSAGE_TYPE_GENERATION_PROGRESS = "generation-progress"
MESSAGE_TYPE_GENERATION_COMPLETE = "generation-complete"

PROGRESS_PREVIEW_LIMIT = 200
PROGRESS_PREVIEW_TAIL = 100


def progress_preview(text: str) -> str:
    """Short preview of the streamed text: all of it, or '...' plus the tail."""
    if len(text) <= PROGRESS_PREVIEW_LIMIT:
        return text
    return "..." + text[-PROGRESS_PREVIEW_TAIL:]


class DesignAgent:
    def __init__(
        self,
        bridge_url: str,
        channel: str,
        settings_store: Optional[SettingsStore] = None,
        tool_timeout: float = 30.0,
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        limits: Optional[IndexLimits] = None,
    ):
        self.bridge_url = bridge_url
        self.channel = channel
        self.websocket = None
        self.running = True
        self.reconnect_delay = 1  # Start with 1 second
        self.max_reconnect_delay = 30  # Max 30 seconds
        self._keep_alive_task = None  # Keep-alive task for WebSocket
        self._background_tasks: set[asyncio.Task] = set()  # Scene work runs off the listen loop
        self._cancel_lock = asyncio.Lock()

        self.tool_timeout = tool_timeout
        self.max_output_tokens = max_output_tokens
        self.limits = limits or IndexLimits.from_env()
        self.communicator: Optional[FigmaCommunicator] = None
        self.scene: Optional[FigmaScene] = None
        self.pipeline: Optional[DesignPipeline] = None

        self.settings_store = settings_store or SettingsStore()
        self.settings: PluginSettings = self.settings_store.load().with_env_defaults()
        self._generation_task: Optional[asyncio.Task] = None
        self._cancel_event: Optional[asyncio.Event] = None
        logger.info(f"⚙️ Provider: {self.settings.selected_provider}, viewport: {self.settings.viewport}")

    async def _send_json(self, payload: Dict[str, Any]) -> None:
        """Safely send a JSON-serializable payload over the websocket if connected."""
        if not self.websocket:
            raise RuntimeError("WebSocket not connected")
        await self.websocket.send(json.dumps(payload))

    async def _send_error(self, message: str) -> None:
        await self._send_json({"type": MESSAGE_TYPE_ERROR, "message": message})

    def bind_websocket(self, websocket) -> None:
        """Attach a bridge connection and build the scene/pipeline on top of it."""
        self.websocket = websocket
        self.communicator = FigmaCommunicator(websocket, timeout=self.tool_timeout)
        self.scene = FigmaScene(self.communicator)
        self.pipeline = DesignPipeline(self.scene, self.limits)
        logger.info(f"Initialized FigmaCommunicator for host commands (timeout: {self.tool_timeout}s)")

    async def connect(self) -> bool:
        """Connect to the bridge and join as agent"""
        try:
            logger.info(f"Connecting to bridge at {self.bridge_url}")
            # Remove size limits to allow large selection snapshots/images over WS
            websocket = await websockets.connect(self.bridge_url, max_size=None)
            self.bind_websocket(websocket)

            # Send join message
            join_message = {
                "type": MESSAGE_TYPE_JOIN,
                "role": "agent",
                "channel": self.channel
            }
            await self._send_json(join_message)
            logger.info(f"Sent join message for channel: {self.channel}")

            # Test WebSocket bidirectional communication with a ping
            await self._send_json({"type": MESSAGE_TYPE_PING})
            logger.info("🏓 Sent ping message to test WebSocket bidirectional communication")

            # Start keep-alive mechanism for WebSocket stability
            self._keep_alive_task = asyncio.create_task(self._websocket_keep_alive())
            logger.info("💓 Started WebSocket keep-alive mechanism")

            # Settings, design system and selection for the UI, off the listen loop
            self._spawn(self._initialize_session())

            # Reset reconnect delay on successful connection
            self.reconnect_delay = 1
            return True

        except Exception as e:
            logger.error(f"Failed to connect: {e}")
            return False

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _initialize_session(self) -> None:
        await self._handle_load_settings({})
        try:
            await self._refresh_design_system()
            await self._send_selection_info()
        except HostCommandError as e:
            logger.warning(f"⚠️ Initial design-system/selection read failed (plugin not ready?): {e}")

    # ============================================
    # =============== DISPATCH ===================
    # ============================================

    async def handle_message(self, message: Dict[str, Any]) -> None:
        """Handle incoming messages from the bridge via a clean async dispatch."""
        msg_type = message.get("type")
        logger.info(f"🔍 Raw message received - Type: '{msg_type}', Keys: {list(message.keys())}")

        handlers = {
            MESSAGE_TYPE_SYSTEM: self._handle_system,
            MESSAGE_TYPE_PONG: self._handle_pong,
            MESSAGE_TYPE_TOOL_RESPONSE: self._handle_tool_response,
            MESSAGE_TYPE_ERROR: self._handle_bridge_error,
            MESSAGE_TYPE_GENERATE_SCREEN: self._handle_generate_screen,
            MESSAGE_TYPE_REGENERATE_SELECTION: self._handle_regenerate_selection,
            MESSAGE_TYPE_CANCEL_GENERATION: self._handle_cancel_generation,
            MESSAGE_TYPE_RENDER_DESIGN: self._handle_render_design,
            MESSAGE_TYPE_REQUEST_SELECTION_DATA: self._handle_request_selection_data,
            MESSAGE_TYPE_GET_SELECTION: self._handle_get_selection,
            MESSAGE_TYPE_SELECTION_CHANGED: self._handle_get_selection,
            MESSAGE_TYPE_REFRESH_DESIGN_SYSTEM: self._handle_refresh_design_system,
            MESSAGE_TYPE_SAVE_SETTINGS: self._handle_save_settings,
            MESSAGE_TYPE_LOAD_SETTINGS: self._handle_load_settings,
        }

        handler = handlers.get(msg_type, self._handle_unknown)
        await handler(message)

    async def _handle_system(self, message: Dict[str, Any]) -> None:
        sys_msg = message.get('message')
        logger.info(f"🔧 System message: {sys_msg}")
        if isinstance(sys_msg, str) and 'disconnected' in sys_msg.lower() and 'plugin' in sys_msg.lower():
            await self.cancel_active_operations(reason="plugin_disconnected")

    async def _handle_pong(self, _: Dict[str, Any]) -> None:
        logger.info("🏓 Received pong response - WebSocket bidirectional communication WORKING!")

    async def _handle_tool_response(self, message: Dict[str, Any]) -> None:
        logger.info(f"📨 Received tool_response: {message.get('id', 'no-id')}")
        if self.communicator:
            self.communicator.handle_tool_response(message)
        else:
            logger.warning("Received tool_response but communicator not initialized")

    async def _handle_bridge_error(self, message: Dict[str, Any]) -> None:
        error_msg = message.get("message", "Unknown error")
        logger.error(f"Bridge error: {error_msg}")

    async def _handle_unknown(self, message: Dict[str, Any]) -> None:
        msg_type = message.get("type")
        logger.debug(f"Ignoring unknown message type: {msg_type}")

    # ---------- settings ----------

    async def _handle_save_settings(self, message: Dict[str, Any]) -> None:
        try:
            settings = PluginSettings.model_validate(message.get("settings") or {})
        except ValidationError as e:
            logger.error(f"❌ Invalid settings payload: {e}")
            await self._send_error("Invalid settings")
            return
        self.settings_store.save(settings)
        self.settings = settings.with_env_defaults()

    async def _handle_load_settings(self, _: Dict[str, Any]) -> None:
        # The UI gets what it saved, never keys taken from the environment
        settings = self.settings_store.load()
        await self._send_json({"type": MESSAGE_TYPE_SETTINGS_LOADED, "settings": settings.to_json_dict()})

    # ---------- selection & design system ----------

    async def _handle_get_selection(self, _: Dict[str, Any]) -> None:
        self._spawn(self._guarded(self._send_selection_info(), "Failed to read selection"))

    async def _handle_request_selection_data(self, _: Dict[str, Any]) -> None:
        self._spawn(self._guarded(self._send_selection_data(), "Failed to read selection"))

    async def _handle_refresh_design_system(self, _: Dict[str, Any]) -> None:
        self._spawn(self._guarded(self._refresh_design_system(), "Failed to load design system"))

    async def _send_selection_info(self) -> None:
        info = await self.pipeline.selection_info()
        await self._send_json({"type": MESSAGE_TYPE_SELECTION_CHANGED, "selection": info})

    async def _send_selection_data(self) -> None:
        document = await self.pipeline.selection_data()
        data = document.to_json_dict() if document is not None else None
        await self._send_json({"type": MESSAGE_TYPE_SELECTION_DATA, "data": data})

    async def _refresh_design_system(self) -> None:
        snapshot = await self.pipeline.refresh_design_system()
        await self._send_json({"type": MESSAGE_TYPE_DESIGN_SYSTEM_LOADED, "designSystem": snapshot.to_json_dict()})

    async def _guarded(self, coro: Awaitable[None], failure_text: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except HostCommandError as e:
            logger.error(f"❌ {failure_text}: {e}")
            await self._send_error(f"{failure_text}: {e.message or e.code}")

    # ---------- generation & render ----------

    async def _handle_generate_screen(self, message: Dict[str, Any]) -> None:
        prompt = (message.get("prompt") or "").strip()
        if not prompt:
            await self._send_error("Please enter a description of the screen")
            return
        logger.info(f"💬 Received generate-screen prompt: {prompt}")
        self._start_generation(
            prompt,
            image_data=message.get("imageData"),
            use_selection=bool(message.get("useSelection")),
        )

    async def _handle_regenerate_selection(self, message: Dict[str, Any]) -> None:
        instructions = (message.get("instructions") or "").strip()
        if not instructions:
            await self._send_error("Please describe the changes to make")
            return
        logger.info(f"✏️ Received regenerate-selection: {instructions}")
        self._start_generation(instructions, use_selection=True, require_selection=True)

    async def _handle_cancel_generation(self, _: Dict[str, Any]) -> None:
        if self._cancel_event is not None and not self._cancel_event.is_set():
            logger.info("🛑 Cancel requested by UI")
            self._cancel_event.set()

    async def _handle_render_design(self, message: Dict[str, Any]) -> None:
        try:
            document = DesignDocument.model_validate(message.get("design") or {})
            viewport = ViewportSize.model_validate(message["viewport"]) if message.get("viewport") else self.settings.viewport_size()
        except ValidationError as e:
            logger.error(f"❌ Invalid render-design payload: {e}")
            await self._send_error("Invalid design document")
            return
        self._spawn(self._run_render(document, viewport))

    def _start_generation(
        self,
        prompt: str,
        image_data: Optional[str] = None,
        use_selection: bool = False,
        require_selection: bool = False,
    ) -> None:
        if self._generation_task is not None and not self._generation_task.done():
            logger.warning("⚠️ Generation already running, ignoring new request")
            self._spawn(self._send_error("A generation is already in progress"))
            return
        self._cancel_event = asyncio.Event()
        logger.info("🚀 Starting generation in background task")
        self._generation_task = self._spawn(
            self._run_generation(prompt, image_data, use_selection, require_selection, self._cancel_event)
        )

    async def _send_progress(self, text: str) -> None:
        await self._send_json({"type": MESSAGE_TYPE_GENERATION_PROGRESS, "content": progress_preview(text)})

    async def _run_generation(
        self,
        prompt: str,
        image_data: Optional[str],
        use_selection: bool,
        require_selection: bool,
        cancel_event: asyncio.Event,
    ) -> None:
        """generate → parse → render, reporting every outcome to the UI."""
        await self._send_json({"type": MESSAGE_TYPE_GENERATION_STARTED})
        try:
            existing_design = await self.pipeline.selection_data() if use_selection else None
            if require_selection and existing_design is None:
                await self._send_error("Please select a frame to modify")
                return

            settings = self.settings
            provider = get_provider(
                settings.selected_provider,
                settings.api_key(),
                max_tokens=self.max_output_tokens,
            )
            viewport = settings.viewport_size()
            request = GenerationRequest(
                prompt=prompt,
                viewport=viewport,
                context_instructions=settings.context_instructions,
                palette=settings.custom_colors,
                image_data=image_data,
                existing_design=existing_design,
            )
            document = await self.pipeline.generate(provider, request, on_progress=self._send_progress, cancel_event=cancel_event)
            artifact = await self.pipeline.render(document, viewport)
            await self._send_json({
                "type": MESSAGE_TYPE_GENERATION_COMPLETE,
                "success": True,
                "message": completion_message(artifact),
            })

        except asyncio.CancelledError:
            logger.info("🛑 Generation task cancelled")
            raise
        except GenerationCancelled as e:
            logger.info("🛑 Generation cancelled before render")
            await self._send_json({"type": MESSAGE_TYPE_GENERATION_COMPLETE, "success": False, "message": str(e)})
        except ParseError as e:
            logger.error(f"❌ Parse failed: {e} | excerpt: {e.excerpt}")
            await self._send_error(str(e))
        except ProviderError as e:
            logger.error(f"❌ Provider error (status={e.status}): {e}")
            await self._send_error(_provider_error_text(e))
        except RenderError as e:
            logger.error(f"❌ Render failed: {e}")
            await self._send_error(str(e))
        except HostCommandError as e:
            logger.error(f"❌ Host command failed during generation: {e}")
            await self._send_error(f"Figma command failed: {e.message or e.code}")
        finally:
            if self._cancel_event is cancel_event:
                self._cancel_event = None

    async def _run_render(self, document: DesignDocument, viewport: ViewportSize) -> None:
        await self._send_json({"type": MESSAGE_TYPE_GENERATION_STARTED})
        try:
            artifact = await self.pipeline.render(document, viewport)
        except asyncio.CancelledError:
            raise
        except RenderError as e:
            logger.error(f"❌ Render failed: {e}")
            await self._send_error(str(e))
            return
        except HostCommandError as e:
            logger.error(f"❌ Render failed: {e}")
            await self._send_error(f"Failed to render design: {e.message or e.code}")
            return
        await self._send_json({
            "type": MESSAGE_TYPE_GENERATION_COMPLETE,
            "success": True,
            "message": completion_message(artifact),
        })

    async def cancel_active_operations(self, reason: str = "") -> None:
        """Cancel all in-flight background tasks and pending host commands."""
        async with self._cancel_lock:
            if self._cancel_event is not None:
                self._cancel_event.set()
            if self._background_tasks:
                logger.info(f"🧹 Cancelling {len(self._background_tasks)} active task(s) ({reason})")
                for task in list(self._background_tasks):
                    if not task.done():
                        task.cancel()
                # Allow cancelled tasks to process cancellation
                await asyncio.sleep(0)
            if self.communicator:
                self.communicator.cleanup_pending_requests()

    # ============================================
    # ============== CONNECTION ==================
    # ============================================

    async def listen(self) -> None:
        """Listen for messages from the bridge"""
        logger.info("🎧 Starting to listen for messages from bridge")
        while self.running and self.websocket:
            try:
                raw_message = await self.websocket.recv()
            except asyncio.CancelledError:
                logger.info("🛑 Listen loop cancelled")
                break
            except Exception as e:
                logger.error(f"❌ Error receiving message: {e}")
                break

            if not raw_message:
                logger.warning("📡 Received empty WebSocket message")
                continue

            logger.debug(f"📡 Raw WebSocket message received: {raw_message[:200]}...")
            try:
                message = json.loads(raw_message)
            except json.JSONDecodeError as e:
                logger.error(f"❌ Failed to decode message: {e}, Raw: {raw_message[:200]}")
                continue
            try:
                await self.handle_message(message)
            except Exception as e:
                logger.error(f"❌ Error handling message: {e}")

        # Connection is gone; nothing pending can complete any more
        await self.cancel_active_operations(reason="connection_closed")

    async def _websocket_keep_alive(self, interval: int = 30) -> None:
        """Keep WebSocket connection alive with periodic pings"""
        try:
            while self.running and self.websocket:
                await asyncio.sleep(interval)
                if not self.websocket:
                    break
                try:
                    # Send ping through the WebSocket library's built-in ping
                    pong_waiter = await self.websocket.ping()
                    await asyncio.wait_for(pong_waiter, timeout=10)
                    logger.debug("💓 WebSocket keep-alive ping successful")
                except asyncio.TimeoutError:
                    logger.warning("💔 WebSocket keep-alive ping timed out")
                    break
                except websockets.ConnectionClosed as e:
                    logger.error(f"💔 WebSocket keep-alive ping failed: {e}")
                    break
        except asyncio.CancelledError:
            logger.debug("💓 WebSocket keep-alive task cancelled")

    async def run_with_reconnect(self) -> None:
        """Main loop with reconnection logic"""
        while self.running:
            try:
                if await self.connect():
                    logger.info("🌉 Connected to bridge successfully")
                    await self.listen()
                else:
                    logger.warning("Failed to connect to bridge")

            except KeyboardInterrupt:
                logger.info("Received interrupt signal")
                break
            except Exception as e:
                logger.error(f"Unexpected error: {e}")
            finally:
                if self._keep_alive_task and not self._keep_alive_task.done():
                    self._keep_alive_task.cancel()

            if self.running:
                logger.info(f"Reconnecting in {self.reconnect_delay} seconds...")
                await asyncio.sleep(self.reconnect_delay)

                # Exponential backoff up to max delay
                self.reconnect_delay = min(self.reconnect_delay * 2, self.max_reconnect_delay)

    def shutdown(self) -> None:
        """Graceful shutdown"""
        logger.info("Shutting down agent")
        self.running = False

        # Cancel keep-alive task
        if self._keep_alive_task and not self._keep_alive_task.done():
            self._keep_alive_task.cancel()
            logger.debug("💓 Cancelled WebSocket keep-alive task")

        if self._cancel_event is not None:
            self._cancel_event.set()

        # Clean up communicator
        if self.communicator:
            self.communicator.cleanup_pending_requests()
            logger.info("Cleaned up pending host commands")

        # close() is a coroutine; the event loop tears the socket down on exit
        self.websocket = None


def _provider_error_text(error: ProviderError) -> str:
    if error.status == 401:
        return f"{error.message}: invalid API key (status 401)"
    if error.status == 429:
        return f"{error.message}: rate limited, please try again shortly (status 429)"
    return str(error)


def get_config():
    """Get configuration from environment variables or CLI args"""
    bridge_url = os.getenv("BRIDGE_URL", "ws://localhost:3055")
    channel = os.getenv("FIGMA_CHANNEL")
    settings_path = os.getenv("SETTINGS_PATH")
    tool_timeout = float(os.getenv("FIGMA_TOOL_TIMEOUT", "30.0"))
    max_output_tokens = int(os.getenv("MAX_OUTPUT_TOKENS", str(DEFAULT_MAX_OUTPUT_TOKENS)))

    # Parse CLI args for overrides
    if len(sys.argv) > 1:
        for arg in sys.argv[1:]:
            if arg.startswith("--channel="):
                channel = arg.split("=", 1)[1]
            elif arg.startswith("--bridge-url="):
                bridge_url = arg.split("=", 1)[1]
            elif arg.startswith("--settings-path="):
                settings_path = arg.split("=", 1)[1]
            elif arg.startswith("--max-output-tokens="):
                max_output_tokens = int(arg.split("=", 1)[1])

    # Use a fixed default channel for simplicity
    if not channel:
        channel = "figma-designer-default"
        logger.info(f"No channel specified, using default: {channel}")

    return bridge_url, channel, settings_path, tool_timeout, max_output_tokens


def main():
    bridge_url, channel, settings_path, tool_timeout, max_output_tokens = get_config()

    logger.info("Starting Figma Design Agent (Agents SDK streaming)")
    logger.info(f"Bridge URL: {bridge_url}")
    logger.info(f"Channel: {channel}")
    logger.info(f"Max output tokens: {max_output_tokens}")

    agent = DesignAgent(
        bridge_url,
        channel,
        settings_store=SettingsStore(settings_path),
        tool_timeout=tool_timeout,
        max_output_tokens=max_output_tokens,
    )

    # Handle shutdown signals
    def signal_handler(signum, frame):
        logger.info("Received shutdown signal")
        agent.shutdown()
        sys.exit(0)

    # Register signal handlers
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    try:
        asyncio.run(agent.run_with_reconnect())
    except KeyboardInterrupt:
        logger.info("Agent interrupted")
    finally:
        agent.shutdown()


if __name__ == "__main__":
    main()
