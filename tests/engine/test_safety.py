from __future__ import annotations

import pytest

from catalog_sync.config import FilterStrictness, ProviderDirectory
from catalog_sync.engine import CancelToken, Cancelled, ContentSafetyFilter, TransientNetwork
from catalog_sync.engine.safety import NSFW_TAG


class StubGateway:
    def __init__(self, *answers) -> None:
        self.answers = list(answers)
        self.prompts: list[str] = []

    async def complete_json(self, provider_key, config, system_prompt, user_prompt, cancel_token=None):
        self.prompts.append(user_prompt)
        answer = self.answers.pop(0)
        if isinstance(answer, BaseException):
            raise answer
        return answer


PROVIDERS = ProviderDirectory.model_validate({"openai": {"enabled": True, "api_key": "sk"}})


def test_blocklisted_description_is_always_flagged(sample_record) -> None:
    safety = ContentSafetyFilter(FilterStrictness.BLOCK)
    risky = sample_record(id="risky", description="Photoreal NUDE portraits", tags=["sfw"], downloads=10_000)
    clean = sample_record(id="clean")

    result = safety.apply_lexical([risky, clean])

    assert [record.id for record in result.complete] == ["clean"]
    assert [record.id for record in result.flagged] == ["risky"]
    flagged = result.flagged[0]
    assert flagged.safety.stage == "lexical"
    assert flagged.safety.detail == "nude"
    assert flagged.has_tag(NSFW_TAG)


def test_title_match_and_extra_terms(sample_record) -> None:
    safety = ContentSafetyFilter("block", extra_terms=["  GoreCore "])
    records = [sample_record(id="a", name="Hentai Diffusion"), sample_record(id="b", name="gorecore mix")]

    result = safety.apply_lexical(records)

    assert [record.id for record in result.flagged] == ["a", "b"]
    assert result.flagged[1].safety.detail == "gorecore"


def test_off_passes_everything(sample_record) -> None:
    safety = ContentSafetyFilter(FilterStrictness.OFF)
    result = safety.apply_lexical([sample_record(description="nsfw checkpoint")])
    assert len(result.complete) == 1
    assert result.flagged == []


def test_tag_mode_keeps_record_with_marker(sample_record) -> None:
    safety = ContentSafetyFilter(FilterStrictness.TAG)
    result = safety.apply_lexical([sample_record(description="erotic art style")])
    assert result.flagged == []
    assert result.complete[0].has_tag(NSFW_TAG)


def test_ambiguous_words_are_not_blocked(sample_record) -> None:
    safety = ContentSafetyFilter()
    result = safety.apply_lexical([sample_record(name="Assistant Sextant Navigator", description="Cockpit HUD model")])
    assert len(result.complete) == 1


@pytest.mark.asyncio
async def test_assisted_stage_flags_classifier_hits(sample_record) -> None:
    gateway = StubGateway({"a": {"isNSFW": True, "reason": "explicit imagery"}, "b": {"isNSFW": False}})
    safety = ContentSafetyFilter(FilterStrictness.STRICT, gateway=gateway, providers=PROVIDERS)

    result = await safety.apply([sample_record(id="a"), sample_record(id="b"), sample_record(id="c", name="porn mix")])

    assert [record.id for record in result.complete] == ["b"]
    assert sorted(record.id for record in result.flagged) == ["a", "c"]
    assisted = next(record for record in result.flagged if record.id == "a")
    assert assisted.safety.stage == "assisted"
    assert assisted.safety.detail == "explicit imagery"
    assert '"id": "c"' not in gateway.prompts[0]


@pytest.mark.asyncio
async def test_assisted_failure_keeps_batch_complete(sample_record) -> None:
    gateway = StubGateway(TransientNetwork("down"), [{"id": "d", "isNSFW": True}])
    safety = ContentSafetyFilter(FilterStrictness.STRICT, gateway=gateway, providers=PROVIDERS, batch_size=1)

    result = await safety.apply_assisted([sample_record(id="c"), sample_record(id="d")])

    assert [record.id for record in result.complete] == ["c"]
    assert [record.id for record in result.flagged] == ["d"]


@pytest.mark.asyncio
async def test_assisted_cancellation_propagates(sample_record) -> None:
    gateway = StubGateway(Cancelled("stop"))
    safety = ContentSafetyFilter(FilterStrictness.STRICT, gateway=gateway, providers=PROVIDERS)

    with pytest.raises(Cancelled):
        await safety.apply_assisted([sample_record()], CancelToken())


@pytest.mark.asyncio
async def test_assisted_skipped_without_provider(sample_record) -> None:
    gateway = StubGateway()
    safety = ContentSafetyFilter(FilterStrictness.STRICT, gateway=gateway, providers=ProviderDirectory())

    result = await safety.apply_assisted([sample_record()])

    assert len(result.complete) == 1
    assert gateway.prompts == []
