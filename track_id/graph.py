"""
Capture Graph Module

Builds the audio-processing graph once per playback element:

    element -> SourceNode -> GainNode -> DestinationNode (audible output)
                                     +-> StreamTapNode   (capturable stream)

The graph is built lazily on the first identification and reused for every
later attempt. Audible playback keeps flowing through the destination while
the tap feeds recorders. The gain stage mirrors the user's volume and mute,
so the tap hears exactly what the listener hears.
"""

import asyncio
from typing import Callable, List, Optional, Set

from logging_config import get_logger
from .errors import CaptureSetupError
from .helpers import run_in_daemon_executor
from .stream import AudioOutput, apply_gain

logger = get_logger(__name__)

OutputFactory = Callable[[int, int], AudioOutput]


class AudioContext:
    """
    Rendering context for the capture graph.

    Owns the audible output device. A context without an output renders
    nothing (headless).

    States: suspended -> running -> closed
    """

    def __init__(self, sample_rate: int, channels: int, output: Optional[AudioOutput] = None):
        self.sample_rate = sample_rate
        self.channels = channels
        self._output = output
        self.state = "suspended"

    async def resume(self) -> None:
        if self.state == "closed":
            raise RuntimeError("AudioContext is closed")
        if self.state == "running":
            return
        if self._output is not None:
            await run_in_daemon_executor(self._output.open)
        self.state = "running"

    async def render(self, data: bytes) -> None:
        if self.state != "running" or self._output is None:
            return
        await run_in_daemon_executor(self._output.write, data)

    async def close(self) -> None:
        if self.state == "closed":
            return
        self.state = "closed"
        if self._output is not None:
            await run_in_daemon_executor(self._output.close)


class AudioNode:
    """Graph node; forwards processed PCM to every connected node."""

    def __init__(self):
        self._outputs: List['AudioNode'] = []

    def connect(self, node: 'AudioNode') -> 'AudioNode':
        self._outputs.append(node)
        return node

    def disconnect(self) -> None:
        self._outputs = []

    async def process(self, data: bytes) -> None:
        await self._forward(data)

    async def _forward(self, data: bytes) -> None:
        for node in self._outputs:
            await node.process(data)


class SourceNode(AudioNode):
    """Entry point of the graph, attached to a playback element."""

    def __init__(self, element):
        super().__init__()
        self.element = element
        element.capture_source(self.process)


class GainNode(AudioNode):
    def __init__(self, gain: float = 1.0):
        super().__init__()
        self.gain = gain

    async def process(self, data: bytes) -> None:
        await self._forward(apply_gain(data, self.gain))


class DestinationNode(AudioNode):
    """Renders into the audio context (audible output)."""

    def __init__(self, context: AudioContext):
        super().__init__()
        self.context = context

    async def process(self, data: bytes) -> None:
        await self.context.render(data)


class CapturableStream:
    """
    Capturable PCM stream fed by the graph's tap.

    Each reader gets its own queue; blocks pushed while no reader is open
    are dropped.
    """

    MAX_QUEUED_BLOCKS = 1200  # ~2 minutes of 100ms blocks

    def __init__(self, sample_rate: int, channels: int):
        self.sample_rate = sample_rate
        self.channels = channels
        self._readers: Set[asyncio.Queue] = set()

    @property
    def reader_count(self) -> int:
        return len(self._readers)

    def open_reader(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.MAX_QUEUED_BLOCKS)
        self._readers.add(queue)
        return queue

    def close_reader(self, queue: asyncio.Queue) -> None:
        self._readers.discard(queue)

    def push(self, data: bytes) -> None:
        for queue in self._readers:
            try:
                queue.put_nowait(data)
            except asyncio.QueueFull:
                logger.warning("Capture reader is not keeping up, dropping audio block")


class StreamTapNode(AudioNode):
    def __init__(self, stream: CapturableStream):
        super().__init__()
        self.stream = stream

    async def process(self, data: bytes) -> None:
        self.stream.push(data)


class CaptureGraph:
    def __init__(self, element, context: AudioContext, source: SourceNode,
                 gain: GainNode, tap: StreamTapNode):
        self.element = element
        self.context = context
        self.source = source
        self.gain = gain
        self.tap = tap

    @property
    def stream(self) -> CapturableStream:
        return self.tap.stream


class CaptureGraphBuilder:
    """
    Lazily builds and caches the capture graph for one playback element.

    Args:
        output_factory: Creates the audible output for the context
            (sample_rate, channels) -> AudioOutput. None renders headless.
    """

    def __init__(self, output_factory: Optional[OutputFactory] = None):
        self._output_factory = output_factory
        self._graph: Optional[CaptureGraph] = None
        self._gain = 1.0

    @property
    def is_built(self) -> bool:
        return self._graph is not None

    @property
    def graph(self) -> Optional[CaptureGraph]:
        return self._graph

    async def ensure_graph(self, element) -> CapturableStream:
        """
        Return the capturable stream for element, building the graph on first use.

        Raises:
            CaptureSetupError: context could not be created/resumed, the
                element refused the attachment, or the graph is already bound
                to a different element
        """
        if self._graph is not None:
            if self._graph.element is not element:
                raise CaptureSetupError("Capture graph is already bound to another stream element")
            try:
                await self._graph.context.resume()
            except Exception as e:
                raise CaptureSetupError(f"Could not resume audio context: {e}") from e
            return self._graph.stream

        # Context first: a failure here must not consume the element's single attachment
        context = None
        try:
            output = None
            if self._output_factory is not None:
                output = self._output_factory(element.sample_rate, element.channels)
            context = AudioContext(element.sample_rate, element.channels, output)
            await context.resume()
        except Exception as e:
            logger.error(f"Audio context setup failed: {e}")
            raise CaptureSetupError(f"Could not start audio context: {e}") from e

        try:
            source = SourceNode(element)
        except Exception as e:
            logger.error(f"Could not attach to stream element: {e}")
            await context.close()
            raise CaptureSetupError(f"Could not attach to stream element: {e}") from e

        gain = GainNode(self._gain)
        tap = StreamTapNode(CapturableStream(element.sample_rate, element.channels))
        source.connect(gain)
        gain.connect(DestinationNode(context))
        gain.connect(tap)

        self._graph = CaptureGraph(element, context, source, gain, tap)
        logger.info(f"Capture graph built ({element.sample_rate} Hz, {element.channels} ch)")
        return tap.stream

    def set_gain(self, volume: float, muted: bool) -> None:
        self._gain = 0.0 if muted else volume
        if self._graph is not None:
            self._graph.gain.gain = self._gain

    async def close(self) -> None:
        """Tear the graph down. Only at shutdown; the element stays captured."""
        if self._graph is None:
            return
        self._graph.source.disconnect()
        self._graph.gain.disconnect()
        await self._graph.context.close()
