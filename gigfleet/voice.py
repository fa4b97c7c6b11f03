from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

from google import genai
from google.genai import types

from .audio import INPUT_RATE, OUTPUT_RATE, PlaybackQueue
from .config import FleetConfig
from .errors import IntelligenceError

logger = logging.getLogger(__name__)

LIVE_SYSTEM_INSTRUCTION = (
    "You are a smart driver companion. Keep responses short and focused on navigation, earnings, and safety."
)

Send = Callable[[Dict[str, Any]], Awaitable[None]]


class VoiceBridge:
    """
    Relays a driver's microphone frames (16 kHz PCM16) to the realtime model
    and paces the model's 24 kHz reply back out. An interruption from the
    model drops every reply frame not yet sent.
    """

    def __init__(self, cfg: FleetConfig, client: Any = None, pace_sec: float = 0.02):
        self.cfg = cfg
        self._client = client
        self.pace_sec = pace_sec

    def connect_config(self) -> types.LiveConnectConfig:
        return types.LiveConnectConfig(
            response_modalities=[types.Modality.AUDIO],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name="Kore"),
                ),
            ),
            system_instruction=LIVE_SYSTEM_INSTRUCTION,
        )

    def connect(self):
        """Async context manager yielding a live session."""
        if self._client is None:
            if not self.cfg.api_key:
                logger.warning("No API key configured for the live voice session")
                raise IntelligenceError("API key is missing", "voice")
            self._client = genai.Client(api_key=self.cfg.api_key)
        return self._client.aio.live.connect(model=self.cfg.live_model, config=self.connect_config())

    async def relay(
        self,
        session: Any,
        inbound: AsyncIterator[bytes],
        send: Send,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        clock = clock or asyncio.get_running_loop().time
        queue = PlaybackQueue(rate=OUTPUT_RATE)
        mime_out = f"audio/pcm;rate={OUTPUT_RATE}"

        async def emit(raw: bytes):
            await send({"type": "audio", "mime_type": mime_out, "data": base64.b64encode(raw).decode("ascii")})

        async def uplink():
            async for frame in inbound:
                await session.send_realtime_input(
                    audio=types.Blob(data=frame, mime_type=f"audio/pcm;rate={INPUT_RATE}")
                )

        async def downlink():
            # receive() ends at each turn boundary; an empty pass means the session closed
            while True:
                seen = 0
                async for msg in session.receive():
                    seen += 1
                    content = getattr(msg, "server_content", None)
                    if content is not None and getattr(content, "interrupted", False):
                        dropped = queue.interrupt()
                        logger.debug("Model interrupted, dropped %d queued frames", dropped)
                        await send({"type": "interrupted", "dropped": dropped})
                    data = getattr(msg, "data", None)
                    if data:
                        queue.enqueue(data, clock())
                if not seen:
                    return

        async def playback():
            while True:
                for f in queue.pop_ready(clock()):
                    await emit(f.raw)
                await asyncio.sleep(self.pace_sec)

        tasks = [asyncio.create_task(c) for c in (uplink(), downlink(), playback())]
        try:
            done, _ = await asyncio.wait(tasks[:2], return_when=asyncio.FIRST_COMPLETED)
            for t in done:
                t.result()
            if tasks[1] in done:
                # model finished: whatever is still queued goes out now
                for f in queue.pop_ready(float("inf")):
                    await emit(f.raw)
        finally:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
