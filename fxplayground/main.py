"""
Playground Audio Engine

Entry point for the audio effect engine. Exposes a session over a
WebSocket server so the playground frontend can load clips, drive the
transport, and move the effect sliders.
"""

import asyncio
import base64
import binascii
import json
import time
from typing import Optional, Set, Any

import websockets

from .effect_settings import EffectSettings
from .errors import PlaygroundError, DecodeError
from .scheduler import AsyncioFrameScheduler
from .session import PlaygroundSession, EngineConfig
from .transport import TransportPhase


class PlaygroundServer:
    """WebSocket server for frontend communication."""

    def __init__(self, session: PlaygroundSession, host: str = "localhost", port: int = 8765,
                 position_broadcast_interval: float = 0.05):
        self.session = session
        self.host = host
        self.port = port
        self.server = None

        # WebSocket clients
        self.clients: Set[Any] = set()

        # Store event loop reference for thread-safe callbacks
        # Will be set when server starts
        self._event_loop: Optional[asyncio.AbstractEventLoop] = None

        # Position broadcast throttling
        self._last_position_broadcast = 0.0
        self._position_broadcast_interval = position_broadcast_interval

        session.transport.add_position_callback(self._on_transport_position)
        session.transport.add_state_callback(self._on_transport_state_change)

    async def broadcast(self, message: dict) -> None:
        """Broadcast message to all connected clients."""
        if not self.clients:
            return

        message_json = json.dumps(message)
        await asyncio.gather(
            *[client.send(message_json) for client in self.clients],
            return_exceptions=True
        )

    def _broadcast_threadsafe(self, message: dict):
        """Schedule a broadcast from any thread (transport callbacks may
        come from a scheduler thread)."""
        if self._event_loop is None or self._event_loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(self.broadcast(message), self._event_loop)

    def _on_transport_position(self, position: float, duration: float):
        """Broadcast transport position to all clients (throttled)."""
        current_time = time.perf_counter()
        if current_time - self._last_position_broadcast >= self._position_broadcast_interval:
            self._last_position_broadcast = current_time
            self._broadcast_threadsafe({
                'type': 'transport_position',
                'data': {
                    'position': position,
                    'duration': duration,
                    'is_playing': self.session.is_playing,
                    'timestamp': current_time
                }
            })

    def _on_transport_state_change(self, phase: TransportPhase):
        """Broadcast transport state change to all clients."""
        self._broadcast_threadsafe({
            'type': 'transport_state',
            'data': {
                'state': phase.value,
                'is_playing': phase == TransportPhase.PLAYING,
                'position': self.session.position,
                'duration': self.session.duration,
                'timestamp': time.perf_counter()
            }
        })

    async def handle_client(self, websocket) -> None:
        """Handle a connected client."""
        self.clients.add(websocket)
        print(f"Client connected. Total clients: {len(self.clients)}")

        try:
            # Send initial status
            await websocket.send(json.dumps({
                'type': 'status',
                'data': self.session.get_status()
            }))

            # Handle incoming messages
            async for message in websocket:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    await websocket.send(json.dumps({
                        'type': 'error',
                        'data': {'message': 'Invalid JSON'}
                    }))
                    continue

                response = await self.handle_message(data)
                if response:
                    await websocket.send(json.dumps(response))

        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self.clients.discard(websocket)
            print(f"Client disconnected. Total clients: {len(self.clients)}")

    async def handle_message(self, data: dict) -> Optional[dict]:
        """Handle incoming WebSocket message."""
        if not isinstance(data, dict):
            return {'type': 'error', 'data': {'message': 'Message must be a JSON object'}}
        msg_type = data.get('type')
        payload = data.get('data') or {}

        try:
            if not isinstance(payload, dict):
                raise TypeError("Message data must be a JSON object")
            return await self._dispatch(msg_type, payload)
        except (PlaygroundError, ValueError, TypeError) as e:
            # Malformed payload values (e.g. a non-numeric position) fail the
            # request, not the connection
            print(f"Request '{msg_type}' failed: {e}")
            return {
                'type': 'error',
                'data': {
                    'request': msg_type,
                    'error': type(e).__name__,
                    'message': str(e),
                }
            }

    async def _dispatch(self, msg_type: Optional[str], payload: dict) -> Optional[dict]:
        if msg_type == 'load':
            clip = await self.session.load(self._source_from(payload))
            return {'type': 'load_response', 'data': {'success': True, 'clip': clip.get_info()}}

        elif msg_type == 'play':
            settings = None
            if 'effects' in payload:
                settings = EffectSettings.from_dict(payload['effects'])
            source = self._source_from(payload) if ('audio' in payload or 'url' in payload) else None
            success = await self.session.play(source, settings)
            return {'type': 'play_response', 'data': {'success': success}}

        elif msg_type == 'pause':
            success = self.session.pause()
            return {'type': 'pause_response', 'data': {'success': success,
                                                       'position': self.session.position}}

        elif msg_type == 'stop':
            self.session.stop()
            return {'type': 'stop_response', 'data': {'success': True}}

        elif msg_type == 'seek':
            position = self.session.seek(float(payload.get('position', 0.0)))
            return {'type': 'seek_response', 'data': {'success': True, 'position': position}}

        elif msg_type == 'update_effects':
            settings = EffectSettings.from_dict(payload)
            applied = self.session.update_effects(settings)
            return {'type': 'effects_updated', 'data': {'applied': applied,
                                                       'settings': settings.to_dict()}}

        elif msg_type == 'reset_effects':
            applied = self.session.reset_effects()
            return {'type': 'effects_updated', 'data': {'applied': applied,
                                                       'settings': self.session.settings.to_dict()}}

        elif msg_type == 'clear':
            self.session.clear_clip()
            return {'type': 'clear_response', 'data': {'success': True}}

        elif msg_type == 'status':
            return {'type': 'status', 'data': self.session.get_status()}

        elif msg_type == 'ping':
            return {'type': 'pong', 'data': {}}

        return None

    @staticmethod
    def _source_from(payload: dict):
        """Audio source from a load/play payload: base64 'audio' or 'url'."""
        if 'audio' in payload:
            try:
                return base64.b64decode(payload['audio'], validate=True)
            except (binascii.Error, TypeError) as e:
                raise DecodeError(f"Audio payload is not valid base64: {e}") from e
        if 'url' in payload:
            return str(payload['url'])
        raise DecodeError("No audio source given (expected 'audio' or 'url')")

    async def start(self) -> None:
        """Start the WebSocket server."""
        self._event_loop = asyncio.get_running_loop()
        self.server = await websockets.serve(
            self.handle_client,
            self.host,
            self.port
        )
        # Port 0 asks the OS for a free port
        self.port = self.server.sockets[0].getsockname()[1]
        print(f"WebSocket server started on ws://{self.host}:{self.port}")

    async def serve_forever(self) -> None:
        """Start the server and run until it is closed."""
        await self.start()
        await self.server.wait_closed()

    async def stop(self) -> None:
        """Stop the WebSocket server."""
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            self.server = None


async def main():
    """Main entry point."""
    print("=" * 50)
    print("Playground Audio Engine")
    print("=" * 50)

    config = EngineConfig()
    scheduler = AsyncioFrameScheduler(asyncio.get_running_loop(), config.frame_rate)
    session = PlaygroundSession(config, scheduler=scheduler)

    server = PlaygroundServer(session, config.websocket_host, config.websocket_port,
                              config.position_broadcast_interval)

    try:
        await server.serve_forever()
    finally:
        print("\nShutting down...")
        session.close()


def run():
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
