import asyncio
import logging
from typing import Dict, List, Optional, Set, Tuple

from infra.ffmpeg import CompositorUnexpectedExit
from infra.net import PortAllocator
from shared.utils import grid_cells

from hlsmix.domains.bridge import BridgeSetupFailure, MediaBridgeDescriptorWriter
from hlsmix.domains.compose.command import collect_inputs
from hlsmix.domains.compose.events import EventType, OrchestratorEvent
from hlsmix.domains.compose.status import CompositionStatus, ParticipantStatus
from hlsmix.domains.compose.supervisor import CompositorProcessSupervisor
from hlsmix.domains.participants import MediaKind, MediaLeg, ParticipantStreamState
from hlsmix.domains.ports import MediaRouter
from hlsmix.settings import ComposeSettings


class OrchestratorClosed(RuntimeError):
    pass


class StreamOrchestrator:
    """Keeps one composed HLS output in step with call membership.

    Membership events are applied in order by a single control loop. Each
    change bumps the generation and re-arms a debounce timer; when the timer
    fires, a composition pass restarts the compositor with the current set
    of bridged legs. A pass that sees the generation move on abandons its
    result and leaves the restart to the next pass.
    """

    def __init__(
        self,
        router: MediaRouter,
        settings: ComposeSettings,
        *,
        allocator: Optional[PortAllocator] = None,
        bridge: Optional[MediaBridgeDescriptorWriter] = None,
        supervisor: Optional[CompositorProcessSupervisor] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._settings = settings
        self._logger = logger or logging.getLogger("hlsmix.orchestrator")
        self._allocator = allocator or PortAllocator(
            probe_host=settings.port_probe_host,
            max_retries=settings.port_retries,
            retry_delay=settings.port_retry_delay,
            max_probes=settings.port_scan_probes,
        )
        self._bridge = bridge or MediaBridgeDescriptorWriter(
            router, self._allocator, settings
        )
        self._supervisor = supervisor or CompositorProcessSupervisor(settings)
        self._supervisor.set_exit_listener(self._on_compositor_exit)
        self._participants: Dict[str, ParticipantStreamState] = {}
        self._bridging: Set[Tuple[str, MediaKind]] = set()
        self._queue: "asyncio.Queue[OrchestratorEvent]" = asyncio.Queue()
        self._runner: Optional[asyncio.Task] = None
        self._debounce: Optional[asyncio.Task] = None
        self._pass_task: Optional[asyncio.Task] = None
        self._generation = 0
        self._passes = 0
        self._last_error: Optional[str] = None
        self._closed = False
        self._shutdown_task: Optional[asyncio.Future] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def allocator(self) -> PortAllocator:
        return self._allocator

    @property
    def supervisor(self) -> CompositorProcessSupervisor:
        return self._supervisor

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def participants(self) -> List[ParticipantStreamState]:
        return list(self._participants.values())

    def participant(self, participant_id: str) -> Optional[ParticipantStreamState]:
        return self._participants.get(participant_id)

    def start(self) -> asyncio.Task:
        if self._closed:
            raise OrchestratorClosed("orchestrator is shut down")
        if self._runner is None or self._runner.done():
            self._runner = asyncio.create_task(self.run())
        return self._runner

    async def run(self) -> None:
        self._logger.info("orchestrator control loop started")
        while True:
            event = await self._queue.get()
            try:
                result = await self._apply(event)
            except Exception as exc:
                self._logger.exception("failed to apply %s", event.type.value)
                event.fail(exc)
            else:
                event.resolve(result)
            finally:
                self._queue.task_done()
            if event.type is EventType.SHUTDOWN:
                break
        self._logger.info("orchestrator control loop stopped")

    async def publish_started(self, participant_id: str, kind, stream_id: str) -> bool:
        if not stream_id:
            raise ValueError("stream_id is required")
        return await self._submit(
            OrchestratorEvent(
                EventType.PUBLISH_STARTED,
                participant_id=_participant_key(participant_id),
                kind=MediaKind.parse(kind),
                stream_id=str(stream_id),
            )
        )

    async def publish_stopped(self, participant_id: str, kind) -> bool:
        return await self._submit(
            OrchestratorEvent(
                EventType.PUBLISH_STOPPED,
                participant_id=_participant_key(participant_id),
                kind=MediaKind.parse(kind),
            )
        )

    async def participant_left(self, participant_id: str) -> bool:
        return await self._submit(
            OrchestratorEvent(
                EventType.PARTICIPANT_LEFT,
                participant_id=_participant_key(participant_id),
            )
        )

    async def shutdown(self) -> None:
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self._shutdown())
        await asyncio.shield(self._shutdown_task)

    async def _shutdown(self) -> None:
        if self._closed:
            return
        if not self.running:
            await self._teardown()
            return
        await self._submit(OrchestratorEvent(EventType.SHUTDOWN))
        await self._runner

    async def wait_idle(self) -> None:
        """Wait until no debounce timer, queued event or pass is pending."""
        while True:
            debounce = self._debounce
            if debounce is not None and not debounce.done():
                await asyncio.wait([debounce])
            await self._queue.join()
            current = self._pass_task
            if current is not None and not current.done():
                await asyncio.wait([current])
                continue
            if (self._debounce is None or self._debounce.done()) and self._queue.empty():
                return

    def status(self) -> CompositionStatus:
        last = self._supervisor.last_result
        return CompositionStatus(
            generation=self._generation,
            state=self._supervisor.state.value,
            running=self._supervisor.is_running(),
            pid=self._supervisor.pid,
            pending=self._debounce is not None and not self._debounce.done(),
            passes=self._passes,
            last_error=self._last_error,
            last_start=last.as_dict() if last else None,
            playlist=str(self._settings.playlist_path),
            reserved_ports=sorted(self._allocator.reserved),
            participants=[
                ParticipantStatus.from_state(item)
                for item in self._participants.values()
            ],
        )

    async def _submit(self, event: OrchestratorEvent):
        if self._closed:
            raise OrchestratorClosed("orchestrator is shut down")
        if not self.running:
            raise OrchestratorClosed("orchestrator control loop is not running")
        event.done = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(event)
        return await event.done

    def _post(self, event: OrchestratorEvent) -> None:
        if self._closed:
            return
        self._queue.put_nowait(event)

    def _on_compositor_exit(self, error: CompositorUnexpectedExit) -> None:
        self._post(OrchestratorEvent(EventType.COMPOSITOR_EXITED, error=error))

    async def _apply(self, event: OrchestratorEvent):
        if event.type is EventType.PUBLISH_STARTED:
            return await self._apply_publish_started(event)
        if event.type is EventType.PUBLISH_STOPPED:
            return await self._apply_publish_stopped(event)
        if event.type is EventType.PARTICIPANT_LEFT:
            return await self._apply_participant_left(event)
        if event.type is EventType.RUN_PASS:
            return self._apply_run_pass(event)
        if event.type is EventType.COMPOSITOR_EXITED:
            self._last_error = str(event.error)
            self._logger.error("compositor exited: %s", event.error)
            return False
        if event.type is EventType.SHUTDOWN:
            await self._teardown()
            return True
        raise ValueError("unknown event type: {}".format(event.type))

    async def _apply_publish_started(self, event: OrchestratorEvent) -> bool:
        participant = self._participants.get(event.participant_id)
        if participant is None:
            participant = ParticipantStreamState(event.participant_id)
            self._participants[participant.id] = participant
            self._logger.info("participant %s joined", participant.id)
        leg = participant.leg(event.kind)
        if leg.stream_id == event.stream_id:
            return False
        if leg.published:
            await self._release_leg(participant.id, leg)
        leg.stream_id = event.stream_id
        leg.last_error = None
        self._logger.info(
            "%s started publishing %s (%s)",
            participant.id,
            event.kind.value,
            event.stream_id,
        )
        self._membership_changed()
        return True

    async def _apply_publish_stopped(self, event: OrchestratorEvent) -> bool:
        participant = self._participants.get(event.participant_id)
        if participant is None:
            self._logger.warning(
                "publish_stopped for unknown participant %s", event.participant_id
            )
            return False
        leg = participant.leg(event.kind)
        if not leg.published:
            return False
        leg.stream_id = None
        await self._release_leg(participant.id, leg)
        self._logger.info("%s stopped publishing %s", participant.id, event.kind.value)
        if not participant.eligible:
            self._participants.pop(participant.id, None)
            self._logger.info("participant %s has no open legs", participant.id)
        self._membership_changed()
        return True

    async def _apply_participant_left(self, event: OrchestratorEvent) -> bool:
        participant = self._participants.pop(event.participant_id, None)
        if participant is None:
            return False
        for leg in participant.legs.values():
            leg.stream_id = None
            await self._release_leg(participant.id, leg)
        participant.layout = None
        self._logger.info("participant %s left", participant.id)
        self._membership_changed()
        return True

    def _apply_run_pass(self, event: OrchestratorEvent) -> bool:
        if event.generation != self._generation:
            self._logger.debug(
                "dropping pass for stale generation %s", event.generation
            )
            return False
        previous = self._pass_task
        self._pass_task = asyncio.create_task(
            self._run_pass(event.generation, previous)
        )
        return True

    async def _release_leg(self, participant_id: str, leg: MediaLeg) -> None:
        # a pass bridging this leg releases it once the bridge call returns
        if (participant_id, leg.kind) in self._bridging:
            return
        await self._bridge.release(leg)

    def _membership_changed(self) -> None:
        self._generation += 1
        self._schedule(self._generation)

    def _schedule(self, generation: int) -> None:
        if self._debounce is not None and not self._debounce.done():
            self._debounce.cancel()
        self._debounce = asyncio.create_task(self._debounce_elapsed(generation))

    async def _debounce_elapsed(self, generation: int) -> None:
        await asyncio.sleep(self._settings.debounce_seconds)
        self._post(OrchestratorEvent(EventType.RUN_PASS, generation=generation))

    async def _run_pass(self, generation: int, previous: Optional[asyncio.Task]) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        self._passes += 1
        try:
            await self._compose(generation)
        except Exception as exc:
            self._last_error = str(exc)
            self._logger.exception("composition pass %s failed", generation)

    async def _compose(self, generation: int) -> None:
        self._logger.info("composition pass for generation %s", generation)
        was_running = self._supervisor.is_running()
        await self._supervisor.stop()
        if was_running and self._settings.restart_settle > 0:
            await asyncio.sleep(self._settings.restart_settle)
        if self._stale(generation):
            return

        eligible = [item for item in self._participants.values() if item.eligible]
        self._assign_layout(eligible)
        failures = 0
        for participant in eligible:
            failures += await self._bridge_participant(participant)
        if failures:
            self._logger.info("%s leg(s) failed to bridge this pass", failures)
        if self._stale(generation):
            return

        inputs = collect_inputs(
            [item for item in self._participants.values() if item.eligible]
        )
        if not inputs:
            self._logger.info("no bridged inputs, compositor stays stopped")
            return
        result = await self._supervisor.start(inputs)
        if result.success:
            self._last_error = None
        else:
            self._last_error = result.reason

    def _stale(self, generation: int) -> bool:
        if generation == self._generation and not self._closed:
            return False
        self._logger.info(
            "pass for generation %s superseded by %s", generation, self._generation
        )
        return True

    def _assign_layout(self, eligible: List[ParticipantStreamState]) -> None:
        for participant in self._participants.values():
            participant.layout = None
        if not eligible:
            return
        cells = grid_cells(
            len(eligible), self._settings.canvas_width, self._settings.canvas_height
        )
        for participant, cell in zip(eligible, cells):
            participant.layout = cell

    async def _bridge_participant(self, participant: ParticipantStreamState) -> int:
        """Bridge each published leg on its own; returns the number of failures."""
        failures = 0
        for leg in participant.published_legs():
            if leg.ready:
                continue
            key = (participant.id, leg.kind)
            stream_id = leg.stream_id
            self._bridging.add(key)
            try:
                await self._bridge.bridge(participant, leg)
            except BridgeSetupFailure as exc:
                failures += 1
                self._logger.warning(
                    "skipping %s %s this pass: %s", participant.id, leg.kind.value, exc
                )
                continue
            finally:
                self._bridging.discard(key)
            if (
                self._participants.get(participant.id) is not participant
                or leg.stream_id != stream_id
            ):
                await self._bridge.release(leg)
        return failures

    async def _teardown(self) -> None:
        self._closed = True
        self._generation += 1
        if self._debounce is not None and not self._debounce.done():
            self._debounce.cancel()
            await asyncio.wait([self._debounce])
        self._debounce = None
        current = self._pass_task
        if current is not None and not current.done():
            await asyncio.wait([current])
        await self._supervisor.stop()
        for participant in list(self._participants.values()):
            for leg in participant.legs.values():
                await self._bridge.release(leg)
        self._participants.clear()
        self._allocator.teardown()
        self._bridge.remove_all_descriptors()
        self._logger.info("orchestrator shut down")


def _participant_key(participant_id) -> str:
    value = str(participant_id or "").strip()
    if not value:
        raise ValueError("participant_id is required")
    return value
