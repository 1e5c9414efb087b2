import asyncio

import pytest

from gate import ConcurrencyGate
from models import BackgroundMode, GenerationConfig, LightingStyle
from presets import MemoryBlobStore, PresetStore
from prompts import VARIANT_PREAMBLE
from studio import QUICK_COMMANDS, Editing, Idle, Outcome, Selecting, StudioSession
from fakes import FakeImageService, make_image


def _session(results=(), **kwargs):
    service = FakeImageService(results=results)
    session = StudioSession(service, **kwargs)
    session.add_images([make_image()])
    return session, service


def _editing_session(results=(b"A", "variant failed"), **kwargs):
    session, service = _session(results, **kwargs)
    assert asyncio.run(session.generate()) == Outcome.ACCEPTED
    return session, service


def test_two_successes_offer_candidates():
    session, service = _session([b"A", b"B"])

    assert asyncio.run(session.generate()) == Outcome.CANDIDATES
    assert isinstance(session.state.view, Selecting)
    assert [c.data for c in session.candidates] == [b"A", b"B"]
    assert session.history is None
    assert session.state.error is None

    first, second = (payload for payload, _ in service.calls)
    assert second.instructions == VARIANT_PREAMBLE + first.instructions


def test_single_success_is_accepted_directly():
    session, _ = _session([b"A", "B blocked"])

    assert asyncio.run(session.generate()) == Outcome.ACCEPTED
    assert [e.data for e in session.history.entries] == [b"A"]
    assert session.history.position == 0
    assert session.candidates is None
    assert session.state.error is None
    assert not session.can_return_to_candidates


def test_all_failures_surface_first_reason():
    session, _ = _session(["R1", "R2"])

    assert asyncio.run(session.generate()) == Outcome.FAILED
    assert session.state.error == "R1"
    assert isinstance(session.state.view, Idle)
    assert session.history is None


def test_generate_without_images_is_not_started():
    service = FakeImageService()
    session = StudioSession(service)

    assert session.generate_blocked_reason() == "Upload at least one image to get started."
    assert asyncio.run(session.generate()) == Outcome.NOT_STARTED
    assert service.calls == []


def test_generate_sends_images_in_order():
    session, service = _session([b"A", b"B"])
    session.add_images([make_image("second.png")])

    asyncio.run(session.generate())

    for _, images in service.calls:
        assert [img.name for img in images] == ["product.png", "second.png"]


def test_new_generation_clears_previous_error():
    session, service = _session(["R1", "R2"])
    asyncio.run(session.generate())
    assert session.state.error == "R1"

    service.results = [b"A", b"B"]
    assert asyncio.run(session.generate()) == Outcome.CANDIDATES
    assert session.state.error is None


def test_select_return_and_cancel():
    session, _ = _session([b"A", b"B"])
    asyncio.run(session.generate())

    chosen = session.select_candidate(1)
    assert chosen.data == b"B"
    assert isinstance(session.state.view, Editing)
    assert [e.data for e in session.history.entries] == [b"B"]
    assert session.can_return_to_candidates

    assert session.return_to_candidates() is True
    assert [c.data for c in session.candidates] == [b"A", b"B"]

    session.select_candidate(0)
    assert session.active_image.data == b"A"

    session.return_to_candidates()
    session.cancel_selection()
    assert isinstance(session.state.view, Idle)
    assert session.return_to_candidates() is False


def test_select_without_candidates_raises():
    session, _ = _session()
    with pytest.raises(RuntimeError):
        session.select_candidate(0)


def test_refine_appends_and_moves_cursor():
    session, service = _editing_session()
    service.results = [b"R1"]

    assert asyncio.run(session.refine("add shadow")) == Outcome.ACCEPTED
    assert [e.data for e in session.history.entries] == [b"A", b"R1"]
    assert session.history.position == 1
    assert session.active_image.data == b"R1"
    # the active image is the refinement input
    assert [img.data for img in service.calls[-1][1]] == [b"A"]


def test_refine_from_earlier_entry_truncates_redo_tail():
    session, service = _editing_session()
    service.results = [b"R1", b"R2", b"R3", b"X"]
    for command in ("one", "two", "three"):
        asyncio.run(session.refine(command))
    assert len(session.history) == 4

    session.navigate_history(1)
    assert asyncio.run(session.refine("again")) == Outcome.ACCEPTED

    assert [e.data for e in session.history.entries] == [b"A", b"R1", b"X"]
    assert session.history.position == 2
    assert [img.data for img in service.calls[-1][1]] == [b"R1"]


def test_navigate_history_is_idempotent_and_bounded():
    session, service = _editing_session()
    service.results = [b"R1"]
    asyncio.run(session.refine("brighter"))

    session.navigate_history(0)
    session.navigate_history(0)
    assert session.history.position == 0
    assert len(session.history) == 2

    with pytest.raises(IndexError):
        session.navigate_history(5)


def test_failed_refinement_keeps_history():
    session, service = _editing_session()
    service.results = ["Blocked: SAFETY"]

    assert asyncio.run(session.refine("make it red")) == Outcome.FAILED
    assert session.state.error == "Blocked: SAFETY"
    assert [e.data for e in session.history.entries] == [b"A"]

    service.results = [b"R1"]
    assert asyncio.run(session.refine("make it red")) == Outcome.ACCEPTED
    assert session.state.error is None


def test_refine_requires_image_and_command():
    session, service = _session()
    assert asyncio.run(session.refine("brighter")) == Outcome.NOT_STARTED
    assert session.refine_blocked_reason() == "Generate an image before refining it."

    session, service = _editing_session()
    calls = len(service.calls)
    assert asyncio.run(session.refine("   ")) == Outcome.NOT_STARTED
    assert session.refine_blocked_reason("  ") == "Type a refinement command first."
    assert len(service.calls) == calls


def test_refinement_result_discarded_when_lineage_replaced():
    session, service = _editing_session()

    async def scenario():
        service.hold = asyncio.Event()
        task = asyncio.create_task(session.refine("add shadow"))
        await asyncio.sleep(0)
        session.add_images([make_image("another.png")])
        service.hold.set()
        return await task

    assert asyncio.run(scenario()) == Outcome.FAILED
    assert isinstance(session.state.view, Idle)
    assert "discarded" in session.state.error


def test_gate_admits_at_most_max_concurrent_calls():
    session, service = _session(gate=ConcurrencyGate(max_in_flight=3))

    async def scenario():
        service.hold = asyncio.Event()
        tasks = [asyncio.create_task(session.generate()) for _ in range(3)]
        await asyncio.sleep(0)

        assert session.gate.in_flight == 3
        assert session.is_loading
        assert not session.can_generate()
        assert "Limit of 3" in session.generate_blocked_reason()
        assert await session.generate() == Outcome.NOT_STARTED

        service.hold.set()
        outcomes = await asyncio.gather(*tasks)
        assert session.gate.in_flight == 0

        service.hold = None
        outcomes.append(await session.generate())
        return outcomes

    outcomes = asyncio.run(scenario())
    # each new generation supersedes the ones still running; only the latest lands
    assert sorted(outcomes[:3]) == sorted([Outcome.FAILED, Outcome.FAILED, Outcome.CANDIDATES])
    assert outcomes[3] == Outcome.CANDIDATES
    assert session.state.error is None
    assert len(service.calls) == 8


def test_ceiling_shared_by_generate_and_refine_and_freed_one_call_at_a_time():
    gate = ConcurrencyGate(max_in_flight=3)
    editor, edit_service = _editing_session(gate=gate)
    producer, produce_service = _session(gate=gate)

    async def scenario():
        edit_service.stepwise = True
        produce_service.stepwise = True
        edit_service.results = [b"R1", "R2 blocked", b"R4", b"R5"]
        first = asyncio.create_task(editor.refine("one"))
        second = asyncio.create_task(editor.refine("two"))
        generation = asyncio.create_task(producer.generate())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert gate.in_flight == 3

        # the call over the ceiling is refused without touching anything
        calls = (len(edit_service.calls), len(produce_service.calls))
        history = list(editor.history.entries)
        assert await editor.refine("three") == Outcome.NOT_STARTED
        assert await producer.generate() == Outcome.NOT_STARTED
        assert (len(edit_service.calls), len(produce_service.calls)) == calls
        assert editor.history.entries == history
        assert editor.state.error is None
        assert producer.state.error is None

        # one success frees exactly one slot
        edit_service.waiting[0].set()
        assert await first == Outcome.ACCEPTED
        assert gate.in_flight == 2
        fourth = asyncio.create_task(editor.refine("four"))
        await asyncio.sleep(0)
        assert gate.in_flight == 3
        assert await editor.refine("denied") == Outcome.NOT_STARTED

        # one failure frees exactly one slot
        edit_service.waiting[1].set()
        assert await second == Outcome.FAILED
        assert editor.state.error == "R2 blocked"
        assert gate.in_flight == 2
        fifth = asyncio.create_task(editor.refine("five"))
        await asyncio.sleep(0)
        assert gate.in_flight == 3
        assert await producer.generate() == Outcome.NOT_STARTED

        for release in edit_service.waiting + produce_service.waiting:
            release.set()
        outcomes = await asyncio.gather(fourth, fifth, generation)
        assert gate.in_flight == 0
        return outcomes

    assert asyncio.run(scenario()) == [Outcome.ACCEPTED, Outcome.ACCEPTED, Outcome.CANDIDATES]
    assert [e.data for e in editor.history.entries] == [b"A", b"R1", b"R5"]


def test_generation_discarded_when_images_cleared_meanwhile():
    session, service = _session([b"A", b"B"])

    async def scenario():
        service.hold = asyncio.Event()
        task = asyncio.create_task(session.generate())
        await asyncio.sleep(0)
        session.clear_images()
        service.hold.set()
        return await task

    assert asyncio.run(scenario()) == Outcome.FAILED
    assert session.state.images == []
    assert isinstance(session.state.view, Idle)
    assert "discarded" in session.state.error
    assert session.gate.in_flight == 0


def test_generation_does_not_replace_session_after_reset():
    session, service = _editing_session()
    service.results = [b"C", b"D"]

    async def scenario():
        service.hold = asyncio.Event()
        task = asyncio.create_task(session.generate())
        await asyncio.sleep(0)
        session.reset()
        session.add_images([make_image("fresh.png")])
        service.hold.set()
        return await task

    assert asyncio.run(scenario()) == Outcome.FAILED
    assert isinstance(session.state.view, Idle)
    assert [img.name for img in session.state.images] == ["fresh.png"]
    assert "discarded" in session.state.error


def test_gate_token_released_when_all_variants_fail():
    session, _ = _session(["R1", "R2"], gate=ConcurrencyGate(max_in_flight=1))

    asyncio.run(session.generate())

    assert session.gate.in_flight == 0
    assert session.can_generate()


def test_quick_refine_tracks_command_in_flight():
    session, service = _editing_session()
    command = QUICK_COMMANDS[0]

    async def scenario():
        service.hold = asyncio.Event()
        task = asyncio.create_task(session.quick_refine(command))
        await asyncio.sleep(0)
        in_flight = session.state.quick_refine_in_flight
        blocked = session.refine_blocked_reason("anything")
        service.hold.set()
        return in_flight, blocked, await task

    in_flight, blocked, outcome = asyncio.run(scenario())
    assert in_flight == command
    assert blocked == "Wait for the current request to finish."
    assert outcome == Outcome.ACCEPTED
    assert session.state.quick_refine_in_flight is None
    assert len(session.history) == 2


def test_quick_refine_rejects_unknown_command():
    session, _ = _editing_session()
    assert session.quick_refine_blocked_reason("make it pop") is not None
    with pytest.raises(ValueError):
        asyncio.run(session.quick_refine("make it pop"))


def test_enhance_background_keywords_updates_config():
    service = FakeImageService(enhanced="warm oak table, golden hour light")
    session = StudioSession(service)
    session.update_config("background_mode", BackgroundMode.THEMED)
    session.update_config("background_keywords", "wood table")

    assert asyncio.run(session.enhance_background_keywords()) == "warm oak table, golden hour light"
    assert session.state.config.background_keywords == "warm oak table, golden hour light"
    assert service.enhance_calls == [("wood table", "background")]
    assert session.state.enhancing is False


def test_enhancement_failure_keeps_original_text():
    service = FakeImageService(enhance_error=RuntimeError("quota exceeded"))
    session = StudioSession(service)

    assert asyncio.run(session.enhance_refinement("  more light ")) == "more light"
    assert session.state.enhancing is False
    assert session.state.error is None


def test_enhance_skips_blank_text():
    service = FakeImageService(enhanced="should not be used")
    session = StudioSession(service)

    assert asyncio.run(session.enhance_refinement("   ")) == "   "
    assert asyncio.run(session.enhance_background_keywords()) == ""
    assert service.enhance_calls == []


def test_image_list_changes_reset_generation():
    session, _ = _session([b"A", b"B"])
    session.add_images([make_image("b.png"), make_image("c.png")])
    asyncio.run(session.generate())
    assert isinstance(session.state.view, Selecting)

    session.move_image(2, 0)
    assert [img.name for img in session.state.images] == ["c.png", "product.png", "b.png"]
    assert isinstance(session.state.view, Idle)

    removed = session.remove_image(1)
    assert removed.name == "product.png"

    session.clear_images()
    assert session.state.images == []
    assert not session.can_generate()


def test_reset_keeps_config():
    session, _ = _editing_session()
    session.update_config("lighting_style", LightingStyle.SOFT)

    session.reset()

    assert session.state.images == []
    assert isinstance(session.state.view, Idle)
    assert session.state.config.lighting_style == LightingStyle.SOFT


def test_preset_round_trip_through_session():
    store = PresetStore(MemoryBlobStore(), key="presets")
    session = StudioSession(FakeImageService(), preset_store=store)
    session.update_config("lighting_style", LightingStyle.SOFT)
    session.update_config("background_blur", 30)
    saved = session.state.config

    session.save_preset("Catalog")
    session.update_config("lighting_style", LightingStyle.SHARP)
    session.update_config("add_reflection", True)
    assert session.state.config != saved

    assert session.load_preset("catalog") == saved
    assert session.state.config == saved
    assert [p.name for p in session.presets()] == ["Catalog"]

    session.delete_preset("CATALOG")
    assert session.presets() == []


def test_presets_need_a_store():
    session = StudioSession(FakeImageService())
    with pytest.raises(RuntimeError):
        session.presets()


def test_snapshot_reports_view():
    session, _ = _session([b"A", b"B"])
    session.apply_config(GenerationConfig(background_mode=BackgroundMode.AUTOMATIC))
    asyncio.run(session.generate())

    snapshot = session.snapshot()
    assert snapshot["candidates"] == 2
    assert snapshot["history"] == 0
    assert snapshot["loading"] is False
    assert snapshot["config"]["background_mode"] == "automatic"


def test_refine_blocked_while_enhancing():
    session, service = _editing_session()
    service.enhanced = "add a soft contact shadow under the product"

    async def scenario():
        service.hold = asyncio.Event()
        task = asyncio.create_task(session.enhance_refinement("shadow"))
        await asyncio.sleep(0)
        during = (session.state.enhancing, session.refine_blocked_reason("shadow"), session.snapshot()["enhancing"])
        service.hold.set()
        return during, await task

    (enhancing, blocked, reported), enhanced = asyncio.run(scenario())
    assert enhancing is True
    assert reported is True
    assert blocked == "Wait for the current request to finish."
    assert enhanced == "add a soft contact shadow under the product"
    assert session.state.enhancing is False
    assert session.can_refine("shadow")
