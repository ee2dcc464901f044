import asyncio
from typing import List

import pytest
from conftest import FakeGateway
from hypothesis import given, settings
from hypothesis import strategies as st

from photographer.gemini_client import EditFailed
from photographer.images import decode_data_uri
from photographer.observability import ErrorCode
from photographer.photoshoot import (
    BATCH_FAILED_MESSAGE,
    DISH_FAILED_MESSAGE,
    EDIT_FAILED_MESSAGE,
    EMPTY_MENU_MESSAGE,
    EMPTY_PROMPT_MESSAGE,
    PROMPT_IMAGE_FAILED_MESSAGE,
    DishNotFound,
    EditInProgress,
    InputValidationError,
    PromptImageInProgress,
    _running_batches,
    edit_dish,
    generate_prompt_image,
    run_batch,
    stream_batch,
)
from photographer.prompts import style_prompt
from photographer.state import PhotoshootSession


def _session(menu_text: str, style: str = "Bright/Modern") -> PhotoshootSession:
    return PhotoshootSession("session-1", menu_text=menu_text, style=style)


def _prompt_of(image_url: str) -> str:
    return decode_data_uri(image_url).data.decode("utf-8")


async def _collect(session: PhotoshootSession, gateway: FakeGateway) -> List[tuple]:
    return [event async for event in stream_batch(session, gateway)]


# -----------------------------------------------------------------------------
# Generate batch
# -----------------------------------------------------------------------------
def test_batch_results_map_positionally_despite_settle_order():
    dishes = ["Bruschetta", "Carbonara", "Tiramisu"]
    # Later dishes settle first.
    gateway = FakeGateway(delays={"Bruschetta": 0.03, "Carbonara": 0.015, "Tiramisu": 0.0})
    session = _session("\n".join(dishes), style="Rustic/Dark")

    asyncio.run(run_batch(session, gateway))

    assert [d.dish_name for d in session.dishes] == dishes
    for dish in session.dishes:
        assert not dish.is_loading
        assert dish.error is None
        assert _prompt_of(dish.image_url) == style_prompt("Rustic/Dark", dish.dish_name)
    assert not session.is_loading
    assert session.error is None
    assert [aspect for _, aspect in gateway.generate_calls] == ["4:3"] * 3


@settings(max_examples=25, deadline=None)
@given(
    delays=st.lists(st.sampled_from([0.0, 0.001, 0.002, 0.004]), min_size=1, max_size=8),
    failing=st.sets(st.integers(min_value=0, max_value=7)),
)
def test_batch_always_yields_one_record_per_dish(delays: List[float], failing: set):
    names = [f"Dish {i}" for i in range(len(delays))]
    gateway = FakeGateway(
        delays=dict(zip(names, delays)),
        fail_for=[names[i] for i in failing if i < len(names)],
    )
    session = _session("\n".join(names))

    asyncio.run(run_batch(session, gateway))

    assert [d.dish_name for d in session.dishes] == names
    for i, dish in enumerate(session.dishes):
        assert not dish.is_loading
        if i in failing:
            assert dish.image_url == ""
            assert dish.error == DISH_FAILED_MESSAGE
        else:
            assert _prompt_of(dish.image_url) == style_prompt("Bright/Modern", dish.dish_name)


def test_single_failure_is_isolated_to_its_record():
    gateway = FakeGateway(fail_for=["Carbonara"])
    session = _session("Bruschetta\nCarbonara\nTiramisu")

    asyncio.run(run_batch(session, gateway))

    bruschetta, carbonara, tiramisu = session.dishes
    assert carbonara.image_url == ""
    assert not carbonara.is_loading
    assert carbonara.error == DISH_FAILED_MESSAGE
    for dish in (bruschetta, tiramisu):
        assert dish.image_url.startswith("data:image/jpeg;base64,")
        assert not dish.is_loading
        assert dish.error is None
    assert session.error is None


@pytest.mark.parametrize("menu_text", ["", "   ", "\n\t\n"])
def test_empty_menu_is_rejected_without_network_calls(menu_text: str):
    gateway = FakeGateway()
    session = _session(menu_text)

    with pytest.raises(InputValidationError) as excinfo:
        asyncio.run(run_batch(session, gateway))

    assert excinfo.value.code == ErrorCode.EMPTY_MENU
    assert session.error == EMPTY_MENU_MESSAGE
    assert gateway.parse_calls == []
    assert gateway.generate_calls == []
    assert not session.is_loading


def test_parse_failure_clears_whole_batch():
    session = _session("Ramen\nGyoza")
    asyncio.run(run_batch(session, FakeGateway()))
    assert len(session.dishes) == 2

    broken = FakeGateway(parse_error=RuntimeError("extraction exploded"))
    asyncio.run(run_batch(session, broken))

    assert session.dishes == []
    assert session.error == BATCH_FAILED_MESSAGE
    assert not session.is_loading
    assert broken.generate_calls == []


def test_new_batch_replaces_previous_batch():
    session = _session("Ramen\nGyoza")
    gateway = FakeGateway()
    asyncio.run(run_batch(session, gateway))
    first_ids = {d.id for d in session.dishes}

    session.set_menu_text("Pho")
    asyncio.run(run_batch(session, gateway))

    assert [d.dish_name for d in session.dishes] == ["Pho"]
    assert not first_ids & {d.id for d in session.dishes}
    assert len(gateway.generate_calls) == 3


def test_model_extracted_names_drive_the_batch():
    gateway = FakeGateway(dishes=["Margherita Pizza"])
    session = _session("PIZZA\nMargherita Pizza .... $12")
    asyncio.run(run_batch(session, gateway))
    assert [d.dish_name for d in session.dishes] == ["Margherita Pizza"]


def test_stale_batch_results_do_not_leak_into_newer_batch():
    async def scenario() -> PhotoshootSession:
        session = _session("Old Dish")
        slow = FakeGateway()
        slow.generate_gate = asyncio.Event()
        slow.generate_started = asyncio.Event()

        old_run = asyncio.create_task(run_batch(session, slow))
        await slow.generate_started.wait()

        session.set_menu_text("New Dish")
        await run_batch(session, FakeGateway())

        slow.generate_gate.set()
        await old_run
        return session

    session = asyncio.run(scenario())

    assert [d.dish_name for d in session.dishes] == ["New Dish"]
    assert "New Dish" in _prompt_of(session.dishes[0].image_url)
    assert not session.is_loading


def test_stream_emits_lifecycle_events_in_order():
    gateway = FakeGateway(fail_for=["Gyoza"])
    session = _session("Ramen\nGyoza")

    events = asyncio.run(_collect(session, gateway))

    names = [name for name, _ in events]
    assert names == ["status", "menu_data", "status", "image_update", "image_update", "done"]
    menu_data = events[1][1]
    assert [d["dish_name"] for d in menu_data["dishes"]] == ["Ramen", "Gyoza"]
    assert all(d["is_loading"] for d in menu_data["dishes"])
    updates = [payload for name, payload in events if name == "image_update"]
    assert [u["index"] for u in updates] == [0, 1]
    assert updates[1]["code"] == ErrorCode.IMAGE_GEN_FAILED.value
    done = events[-1][1]
    assert done["status"] == "partial"
    assert done["summary"]["items_count"] == 2
    assert done["summary"]["failed_items_count"] == 1


def test_stream_reports_rejected_empty_menu():
    events = asyncio.run(_collect(_session(" "), FakeGateway()))
    assert [name for name, _ in events] == ["error", "done"]
    assert events[0][1]["code"] == ErrorCode.EMPTY_MENU.value
    assert events[1][1]["status"] == "rejected"


def test_stream_reports_batch_failure():
    events = asyncio.run(_collect(_session("Ramen"), FakeGateway(parse_error=RuntimeError("nope"))))
    assert [name for name, _ in events] == ["status", "error", "done"]
    assert events[1][1]["code"] == ErrorCode.BATCH_FAILED.value
    assert events[2][1]["status"] == "failed"


def test_closing_stream_early_still_settles_every_record():
    async def scenario() -> PhotoshootSession:
        session = _session("Ramen\nGyoza\nPho")
        stream = stream_batch(session, FakeGateway())
        async for event, _ in stream:
            if event == "image_update":
                break
        await stream.aclose()
        return session

    session = asyncio.run(scenario())

    assert [(d.dish_name, d.is_loading, bool(d.image_url)) for d in session.dishes] == [
        ("Ramen", False, True),
        ("Gyoza", False, True),
        ("Pho", False, True),
    ]
    assert not session.is_loading


def test_closing_stream_before_images_arrive_lets_batch_finish():
    async def scenario():
        session = _session("Ramen\nGyoza")
        gateway = FakeGateway()
        gateway.generate_gate = asyncio.Event()
        stream = stream_batch(session, gateway)
        async for event, _ in stream:
            if event == "menu_data":
                break
        await stream.aclose()
        assert session.is_loading

        gateway.generate_gate.set()
        loop = asyncio.get_running_loop()
        await asyncio.gather(*[t for t in _running_batches if t.get_loop() is loop])
        return session, gateway

    session, gateway = asyncio.run(scenario())

    assert len(gateway.generate_calls) == 2
    for dish in session.dishes:
        assert not dish.is_loading
        assert _prompt_of(dish.image_url) == style_prompt("Bright/Modern", dish.dish_name)
    assert not session.is_loading


# -----------------------------------------------------------------------------
# Edit one dish
# -----------------------------------------------------------------------------
def _generated_session(gateway: FakeGateway, menu_text: str = "Ramen\nGyoza\nPho") -> PhotoshootSession:
    session = _session(menu_text)
    asyncio.run(run_batch(session, gateway))
    return session


def test_edit_replaces_image_and_leaves_other_records_alone():
    gateway = FakeGateway()
    session = _generated_session(gateway)
    target, *others = session.dishes
    original_url = target.image_url
    others_before = [d.model_dump() for d in others]

    session.set_edit_prompt(target.id, "add steam")
    edited = asyncio.run(edit_dish(session, gateway, target.id))

    assert _prompt_of(edited.image_url) == "edited:add steam"
    assert edited.edit_prompt == ""
    assert not edited.is_editing
    assert gateway.edit_calls == [(original_url, "add steam")]
    assert [d.model_dump() for d in session.dishes[1:]] == others_before


def test_edit_with_explicit_instruction_overrides_pending_prompt():
    gateway = FakeGateway()
    session = _generated_session(gateway)
    dish_id = session.dishes[0].id
    session.set_edit_prompt(dish_id, "old idea")

    edited = asyncio.run(edit_dish(session, gateway, dish_id, "slate plate"))

    assert gateway.edit_calls[0][1] == "slate plate"
    assert _prompt_of(edited.image_url) == "edited:slate plate"


def test_edit_failure_keeps_instruction_for_retry():
    gateway = FakeGateway(edit_error=EditFailed("Image editing failed, no image data returned."))
    session = _generated_session(gateway)
    target = session.dishes[1]
    original_url = target.image_url
    others_before = [session.dishes[0].model_dump(), session.dishes[2].model_dump()]

    result = asyncio.run(edit_dish(session, gateway, target.id, "change plate"))

    assert result.error == EDIT_FAILED_MESSAGE
    assert result.edit_prompt == "change plate"
    assert result.image_url == original_url
    assert not result.is_editing
    assert [session.dishes[0].model_dump(), session.dishes[2].model_dump()] == others_before


def test_successful_edit_keeps_earlier_edit_error():
    gateway = FakeGateway(edit_error=RuntimeError("flaky"))
    session = _generated_session(gateway, "Ramen")
    dish_id = session.dishes[0].id
    asyncio.run(edit_dish(session, gateway, dish_id, "add steam"))

    gateway.edit_error = None
    edited = asyncio.run(edit_dish(session, gateway, dish_id))

    assert edited.error == EDIT_FAILED_MESSAGE
    assert _prompt_of(edited.image_url) == "edited:add steam"
    assert edited.edit_prompt == ""
    assert not edited.is_editing


def test_second_edit_while_first_in_flight_is_rejected():
    async def scenario():
        gateway = FakeGateway()
        session = _session("Ramen")
        await run_batch(session, gateway)
        dish_id = session.dishes[0].id

        gateway.edit_gate = asyncio.Event()
        gateway.edit_started = asyncio.Event()
        first = asyncio.create_task(edit_dish(session, gateway, dish_id, "add steam"))
        await gateway.edit_started.wait()
        assert session.dishes[0].is_editing

        with pytest.raises(EditInProgress):
            await edit_dish(session, gateway, dish_id, "add basil")

        gateway.edit_gate.set()
        await first
        return gateway, session

    gateway, session = asyncio.run(scenario())

    assert len(gateway.edit_calls) == 1
    assert not session.dishes[0].is_editing


def test_edit_requires_instruction_and_image():
    gateway = FakeGateway(fail_for=["Gyoza"])
    session = _generated_session(gateway, "Ramen\nGyoza")
    ramen, gyoza = session.dishes

    with pytest.raises(InputValidationError) as excinfo:
        asyncio.run(edit_dish(session, gateway, ramen.id, "   "))
    assert excinfo.value.code == ErrorCode.EMPTY_INSTRUCTION

    with pytest.raises(InputValidationError) as excinfo:
        asyncio.run(edit_dish(session, gateway, gyoza.id, "add steam"))
    assert excinfo.value.code == ErrorCode.MISSING_IMAGE

    assert gateway.edit_calls == []


def test_edit_unknown_dish_raises():
    gateway = FakeGateway()
    session = _generated_session(gateway, "Ramen")
    with pytest.raises(DishNotFound):
        asyncio.run(edit_dish(session, gateway, "no-such-dish", "add steam"))


# -----------------------------------------------------------------------------
# Free prompt image
# -----------------------------------------------------------------------------
def test_prompt_image_uses_square_aspect_ratio():
    gateway = FakeGateway()
    session = _session("")

    state = asyncio.run(generate_prompt_image(session, gateway, "A gourmet burger on a black slate plate"))

    assert _prompt_of(state.image_url) == "A gourmet burger on a black slate plate"
    assert not state.is_loading
    assert state.error is None
    assert gateway.generate_calls == [("A gourmet burger on a black slate plate", "1:1")]


def test_prompt_image_rejects_empty_prompt():
    gateway = FakeGateway()
    session = _session("")
    with pytest.raises(InputValidationError) as excinfo:
        asyncio.run(generate_prompt_image(session, gateway, "  "))
    assert excinfo.value.code == ErrorCode.EMPTY_PROMPT
    assert session.prompt_image.error == EMPTY_PROMPT_MESSAGE
    assert gateway.generate_calls == []


def test_prompt_image_failure_clears_previous_image():
    gateway = FakeGateway()
    session = _session("")
    asyncio.run(generate_prompt_image(session, gateway, "burger"))

    gateway.prompt_error = RuntimeError("quota")
    state = asyncio.run(generate_prompt_image(session, gateway, "fries"))

    assert state.image_url is None
    assert state.error == PROMPT_IMAGE_FAILED_MESSAGE
    assert not state.is_loading
    assert state.prompt == "fries"


def test_second_prompt_image_while_first_in_flight_is_rejected():
    async def scenario():
        gateway = FakeGateway()
        gateway.generate_gate = asyncio.Event()
        gateway.generate_started = asyncio.Event()
        session = _session("")

        first = asyncio.create_task(generate_prompt_image(session, gateway, "burger"))
        await gateway.generate_started.wait()

        with pytest.raises(PromptImageInProgress):
            await generate_prompt_image(session, gateway, "fries")
        with pytest.raises(PromptImageInProgress):
            await generate_prompt_image(session, gateway, "  ")
        assert session.prompt_image.prompt == "burger"
        assert session.prompt_image.is_loading

        gateway.generate_gate.set()
        return await first, gateway

    state, gateway = asyncio.run(scenario())

    assert _prompt_of(state.image_url) == "burger"
    assert not state.is_loading
    assert state.error is None
    assert gateway.generate_calls == [("burger", "1:1")]
