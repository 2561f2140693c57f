"""End-to-end run of every pipeline stage against SQLite, fake storage and a mocked model.

The packet has ten pages: page 3 is the main contract at $500,000 and
page 9 is a seller counter-offer at $510,000.
"""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from app.core.exceptions import RunConflictError
from app.models.parse import ParseStatus
from app.pipeline import ParsePipeline
from app.services.classification import PageClassifier
from app.services.extraction import PageExtractor
from app.services.lifecycle import classification_cache_key
from app.services.rendering import RenderBackend, Renderer
from app.services.storage_service import preview_archive_key, render_archive_key

MAIN_CONTRACT_REPLY = {
    "buyerNames": ["Alice Buyer"],
    "sellerNames": ["Sam Seller"],
    "propertyAddress": "123 Main Street, Springfield",
    "purchasePrice": "$500,000",
    "buyerSignatureDates": ["01/10/2025"],
    "confidence": {
        "overall": 80,
        "fieldScores": {"buyerNames": 95, "sellerNames": 80, "propertyAddress": 80, "purchasePrice": 92},
    },
}

COUNTER_OFFER_REPLY = {
    "purchasePrice": "$510,000",
    "sellerSignatureDates": ["01/12/2025"],
    "confidence": {"overall": 80, "fieldScores": {"purchasePrice": 90}},
}


class TenPageBackend(RenderBackend):
    name = "test"

    def __init__(self, make_pages):
        self.make_pages = make_pages

    async def render(self, document_bytes, resolution):
        return self.make_pages(10, resolution)


def classification_reply(prompt, images):
    entries = []
    for image in images:
        if image.page_number == 3:
            entries.append({"pdf_page": 3, "critical": True, "role": "main_contract", "form_code": "RPA",
                            "form_page": 1, "title": "Residential Purchase Agreement"})
        elif image.page_number == 9:
            entries.append({"pdf_page": 9, "critical": True, "role": "counter_offer", "party": "seller",
                            "form_code": "SCO", "form_page": 1, "title": "Seller Counter Offer"})
        else:
            entries.append({"pdf_page": image.page_number, "critical": False})
    return "<json>" + json.dumps({"pages": entries}) + "</json>"


def extraction_reply(prompt, images):
    replies = {3: MAIN_CONTRACT_REPLY, 9: COUNTER_OFFER_REPLY}
    return "```json\n" + json.dumps(replies[images[0].page_number]) + "\n```"


@pytest.fixture
def classifier_llm():
    client = MagicMock()
    client.generate_from_images = AsyncMock(side_effect=classification_reply)
    return client


@pytest.fixture
def extractor_llm():
    client = MagicMock()
    client.generate_from_images = AsyncMock(side_effect=extraction_reply)
    return client


@pytest.fixture
def pipeline(db_session, fake_storage, memory_store, make_pages, classifier_llm, extractor_llm):
    return ParsePipeline(
        db_session,
        fake_storage,
        memory_store,
        renderer=Renderer(backend=TenPageBackend(make_pages)),
        classifier=PageClassifier(llm_client=classifier_llm),
        extractor=PageExtractor(llm_client=extractor_llm),
    )


async def test_ten_page_packet_resolves_counter_offer(pipeline, fake_storage, memory_store, sample_pdf_content, extractor_llm):
    parse, run_id = await pipeline.lifecycle.create_parse("owner-1", "packet.pdf", sample_pdf_content)

    rendered = await pipeline.render(parse.id, run_id)
    classified = await pipeline.classify(parse.id, run_id)
    extracted = await pipeline.extract(parse.id, run_id)
    finalized = await pipeline.reconcile_and_finalize(parse.id, run_id)

    assert rendered == {"page_count": 10}
    assert render_archive_key(str(parse.id)) in fake_storage.objects
    assert preview_archive_key(str(parse.id)) in fake_storage.objects
    assert classified["critical_pages"] == [3, 9]
    assert extracted == {"extracted_pages": 2, "dropped_pages": 0}
    assert [call.args[1][0].page_number for call in extractor_llm.generate_from_images.await_args_list] == [3, 9]

    assert finalized == {"status": ParseStatus.COMPLETED.value, "needs_review": False, "overall_confidence": 85.0}

    stored = await pipeline.lifecycle.get_parse(parse.id, "owner-1")
    assert stored.status == ParseStatus.COMPLETED.value
    assert stored.canonical_extraction["purchase_price"] == 510000
    assert stored.canonical_extraction["buyer_names"] == ["Alice Buyer"]
    assert stored.canonical_extraction["effective_date"] == "2025-01-12"
    assert stored.confidence_summary["provenance"]["purchase_price"] == 9
    assert stored.overall_confidence == 85.0
    assert stored.raw_document_key is None

    progress = await pipeline.progress.get(str(parse.id))
    assert progress.phase == "completed"
    assert progress.done is True

    report = await pipeline.cleanup.cleanup(parse.id)
    assert report.succeeded
    assert render_archive_key(str(parse.id)) not in fake_storage.objects
    assert await memory_store.get(classification_cache_key(str(parse.id))) is None


async def test_expired_classification_is_recomputed(pipeline, memory_store, sample_pdf_content, classifier_llm):
    parse, run_id = await pipeline.lifecycle.create_parse("owner-1", "packet.pdf", sample_pdf_content)
    await pipeline.render(parse.id, run_id)
    await pipeline.classify(parse.id, run_id)
    await memory_store.delete(classification_cache_key(str(parse.id)))

    extracted = await pipeline.extract(parse.id, run_id)

    assert extracted["extracted_pages"] == 2
    assert classifier_llm.generate_from_images.await_count == 2


async def test_superseded_run_cannot_write(pipeline, sample_pdf_content):
    parse, first_run = await pipeline.lifecycle.create_parse("owner-1", "packet.pdf", sample_pdf_content)
    await pipeline.mark_failed(parse.id, first_run, ParseStatus.RENDER_FAILED, "render service unavailable")
    _, second_run = await pipeline.lifecycle.retry(parse.id, "owner-1")

    with pytest.raises(RunConflictError):
        await pipeline.render(parse.id, first_run)

    assert await pipeline.render(parse.id, second_run) == {"page_count": 10}


async def test_failure_is_published(pipeline, sample_pdf_content):
    parse, run_id = await pipeline.lifecycle.create_parse("owner-1", "packet.pdf", sample_pdf_content)

    await pipeline.mark_failed(parse.id, run_id, ParseStatus.RENDER_FAILED, "Document is not a PDF")

    progress = await pipeline.progress.get(str(parse.id))
    assert progress.phase == "failed"
    assert progress.message == "Processing failed: Document is not a PDF"
    assert (await pipeline.lifecycle.get_parse(parse.id)).error_message == "Document is not a PDF"


async def test_cleanup_from_superseded_run_spares_the_retry(pipeline, fake_storage, memory_store, sample_pdf_content):
    parse, first_run = await pipeline.lifecycle.create_parse("owner-1", "packet.pdf", sample_pdf_content)
    await pipeline.render(parse.id, first_run)
    await pipeline.mark_failed(parse.id, first_run, ParseStatus.EXTRACT_FAILED, "LLM API returned 503")
    _, second_run = await pipeline.lifecycle.retry(parse.id, "owner-1")
    await pipeline.render(parse.id, second_run)
    await pipeline.classify(parse.id, second_run)

    report = await pipeline.cleanup.cleanup(parse.id, run_id=first_run)

    assert report.skipped_reason == "superseded"
    assert report.deleted_paths == []
    assert render_archive_key(str(parse.id)) in fake_storage.objects
    assert await memory_store.get(classification_cache_key(str(parse.id))) is not None
    stored = await pipeline.lifecycle.get_parse(parse.id)
    assert stored.render_key == render_archive_key(str(parse.id))

    extracted = await pipeline.extract(parse.id, second_run)
    assert extracted["extracted_pages"] == 2


async def test_failure_cleanup_runs_before_retry_is_possible(pipeline, fake_storage, sample_pdf_content):
    parse, run_id = await pipeline.lifecycle.create_parse("owner-1", "packet.pdf", sample_pdf_content)
    await pipeline.render(parse.id, run_id)

    report = await pipeline.cleanup.cleanup(parse.id, run_id=run_id)
    await pipeline.mark_failed(parse.id, run_id, ParseStatus.EXTRACT_FAILED, "LLM API returned 503")

    assert report.succeeded and not report.skipped
    assert render_archive_key(str(parse.id)) not in fake_storage.objects
    stored = await pipeline.lifecycle.get_parse(parse.id)
    assert stored.status == ParseStatus.EXTRACT_FAILED.value
    assert stored.raw_document_key is not None
    assert stored.render_key is None


async def test_unreadable_price_is_recovered_by_second_turn(
    db_session, fake_storage, memory_store, make_pages, classifier_llm, sample_pdf_content
):
    unpriced_main = {key: value for key, value in MAIN_CONTRACT_REPLY.items() if key != "purchasePrice"}
    unpriced_counter = {key: value for key, value in COUNTER_OFFER_REPLY.items() if key != "purchasePrice"}

    def reply(prompt, images):
        page_number = images[0].page_number
        if "failed validation" in prompt:
            if page_number == 3:
                return json.dumps(
                    {"purchasePrice": "$500,000", "confidence": {"overall": 90, "fieldScores": {"purchasePrice": 94}}}
                )
            return '{"purchasePrice": null}'
        return json.dumps(unpriced_main if page_number == 3 else unpriced_counter)

    extractor_llm = MagicMock()
    extractor_llm.generate_from_images = AsyncMock(side_effect=reply)
    pipeline = ParsePipeline(
        db_session,
        fake_storage,
        memory_store,
        renderer=Renderer(backend=TenPageBackend(make_pages)),
        classifier=PageClassifier(llm_client=classifier_llm),
        extractor=PageExtractor(llm_client=extractor_llm),
    )
    parse, run_id = await pipeline.lifecycle.create_parse("owner-1", "packet.pdf", sample_pdf_content)
    await pipeline.render(parse.id, run_id)
    await pipeline.classify(parse.id, run_id)
    await pipeline.extract(parse.id, run_id)

    await pipeline.reconcile_and_finalize(parse.id, run_id)

    stored = await pipeline.lifecycle.get_parse(parse.id)
    assert stored.canonical_extraction["purchase_price"] == 500000
    assert stored.confidence_summary["provenance"]["purchase_price"] == 3
    assert "Missing or invalid purchase price" not in stored.validation_warnings
    assert [entry.get("second_turn", False) for entry in stored.raw_extractions] == [True, False]
    assert extractor_llm.generate_from_images.await_count == 4
