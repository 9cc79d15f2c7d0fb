import pytest

from app.agent.state import AnalysisProfile, InMemoryProfileStore, PromptRequest


def test_profile_completeness_only_counts_filled_slots():
    assert not AnalysisProfile().is_complete()
    assert not AnalysisProfile(data_source="Check-in Data").is_complete()
    assert not AnalysisProfile(data_source="", time_period="March 2024").is_complete()
    assert AnalysisProfile("Check-in Data", "March 2024").is_complete()


def test_profile_from_seed():
    assert AnalysisProfile.from_value(None) == AnalysisProfile()
    assert AnalysisProfile.from_value(
        {"data_source": "Occupancy Data", "time_period": ""}
    ) == AnalysisProfile(data_source="Occupancy Data")

    seed = AnalysisProfile("Occupancy Data", "Q1 2024")
    copied = AnalysisProfile.from_value(seed)
    assert copied == seed and copied is not seed

    with pytest.raises(TypeError):
        AnalysisProfile.from_value(42)


@pytest.mark.asyncio
async def test_store_never_shares_instances():
    """Two sessions, or a caller and the store, never alias one profile"""
    store = InMemoryProfileStore()
    profile = AnalysisProfile(data_source="Occupancy Data")
    await store.set("a", profile)
    await store.set("b", profile)

    profile.time_period = "March 2024"
    loaded = await store.get("a")
    loaded.data_source = "changed"

    assert await store.get("a") == AnalysisProfile(data_source="Occupancy Data")
    assert await store.get("b") == AnalysisProfile(data_source="Occupancy Data")

    await store.delete("a")
    assert await store.get("a") is None
    assert "b" in store


def test_prompt_render():
    plain = PromptRequest(field_id="time_period", text="When?")
    assert plain.render() == "When?"
    assert plain.render(retry=True) == "When?"

    choice = PromptRequest(
        field_id="data_source",
        text="Which?",
        choices=["Occupancy Data", "Check-in Data"],
        retry_text="Pick one.",
    )
    assert choice.render() == "Which?\n- Occupancy Data\n- Check-in Data"
    assert choice.render(retry=True) == "Pick one.\n- Occupancy Data\n- Check-in Data"
